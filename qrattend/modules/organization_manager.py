"""
Organization Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module handles organizations and their memberships. An organization
owns the attendance settings (geofence, QR validity, scan limits, late
threshold) that QR sessions inherit, and a member list with per-organization
roles.

Features:
- Organization creation with unique codes
- Attendance settings validation and updates
- Membership management (join by code, add, promote, remove)
- Manager checks used by QR generation and reporting
- Demo organization seeding
"""

from datetime import datetime
from typing import Dict, List, Any, Optional
import logging
from dataclasses import dataclass, asdict

from config import SecurityConfig
from .geofence import parse_location, LocationError


@dataclass
class OrganizationSettings:
    """Attendance settings stored on an organization."""
    location_name: Optional[str] = None
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None
    location_radius: float = 100
    qr_validity_minutes: int = 15
    max_scans: int = 0
    allow_multiple_scans: bool = False
    require_location: bool = False
    late_threshold_minutes: int = 15


DEMO_ORGANIZATIONS = [
    {
        'name': 'Manav Rachna International University',
        'code': 'MRIU',
        'description': 'A leading private university in Faridabad, Haryana',
        'location_name': 'Sector 43, Faridabad, Haryana 121004',
    },
    {
        'name': 'Delhi Public School',
        'code': 'DPS',
        'description': 'One of the largest chains of private schools in India',
        'location_name': 'Mathura Road, New Delhi 110003',
    },
    {
        'name': 'Indian Institute of Technology Delhi',
        'code': 'IITD',
        'description': 'Premier engineering and research institution',
        'location_name': 'Hauz Khas, New Delhi 110016',
    },
    {
        'name': 'All India Institute of Medical Sciences',
        'code': 'AIIMS',
        'description': 'Premier medical education and research institution',
        'location_name': 'Ansari Nagar, New Delhi 110029',
    },
    {
        'name': 'Jamia Millia Islamia',
        'code': 'JMI',
        'description': 'Central university in New Delhi',
        'location_name': 'Jamia Nagar, New Delhi 110025',
    },
]


class OrganizationManager:
    """
    Organization and membership management for the attendance API.
    """

    SETTING_FIELDS = tuple(OrganizationSettings.__dataclass_fields__)

    def __init__(self, database_manager, default_radius: float = 100,
                 default_validity_minutes: int = 15):
        """
        Initialize the organization manager with database connection.

        Args:
            database_manager: Database manager instance
            default_radius (float): Geofence radius for new organizations
            default_validity_minutes (int): QR validity for new organizations
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)
        self.default_radius = default_radius
        self.default_validity_minutes = default_validity_minutes

        self.logger.info("Organization manager initialized")

    def create_organization(self, name: str, code: str, created_by: int,
                            description: str = None,
                            settings: Dict[str, Any] = None) -> Dict[str, Any]:
        """
        Create a new organization and make its creator the owner.

        Args:
            name (str): Organization name
            code (str): Unique organization code
            created_by (int): ID of the creating user
            description (str): Optional description
            settings (Dict[str, Any]): Optional attendance settings

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            name = str(name or '').strip()
            code = str(code or '').strip().upper()
            if not name or not code:
                return {
                    'success': False,
                    'error': 'Organization name and code are required',
                    'error_type': 'validation'
                }

            existing = self.db.execute_query(
                "SELECT id FROM organizations WHERE code = ?", (code,), fetch_all=False
            )
            if existing:
                return {
                    'success': False,
                    'error': 'Organization with this code already exists',
                    'error_type': 'conflict',
                    'field': 'code'
                }

            values = asdict(OrganizationSettings(
                location_radius=self.default_radius,
                qr_validity_minutes=self.default_validity_minutes
            ))
            if settings is not None and not isinstance(settings, dict):
                return {'success': False, 'error': 'settings must be an object', 'error_type': 'validation'}
            if settings:
                validation = self._validate_settings(settings)
                if not validation['valid']:
                    return {
                        'success': False,
                        'error': validation['error'],
                        'error_type': 'validation'
                    }
                values.update(validation['values'])

            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute(f"""
                    INSERT INTO organizations (name, code, description, created_by,
                                               {', '.join(values)})
                    VALUES (?, ?, ?, ?, {', '.join('?' for _ in values)})
                """, (name, code, description, created_by) + tuple(values.values()))
                organization_id = cursor.lastrowid

                if created_by:
                    cursor.execute("""
                        INSERT INTO organization_members (organization_id, user_id, role)
                        VALUES (?, ?, 'owner')
                    """, (organization_id, created_by))

            self.logger.info(f"Organization created successfully: {code} (ID: {organization_id})")

            return {
                'success': True,
                'message': 'Organization created successfully',
                'organization': self.get_organization(organization_id)
            }

        except Exception as e:
            self.logger.error(f"Organization creation failed for {code}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create organization',
                'error_type': 'server_error'
            }

    def get_organization(self, organization_id: int) -> Optional[Dict[str, Any]]:
        """
        Get an organization with its settings and member count.

        Args:
            organization_id (int): Organization ID

        Returns:
            Optional[Dict[str, Any]]: Organization or None
        """
        organization = self.db.execute_query("""
            SELECT o.*,
                   (SELECT COUNT(*) FROM organization_members m
                    WHERE m.organization_id = o.id) as member_count
            FROM organizations o
            WHERE o.id = ?
        """, (organization_id,), fetch_all=False)
        return self._format_organization(organization) if organization else None

    def get_organization_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        organization = self.db.execute_query(
            "SELECT id FROM organizations WHERE code = ?",
            (str(code or '').strip().upper(),),
            fetch_all=False
        )
        return self.get_organization(organization['id']) if organization else None

    def list_public(self) -> List[Dict[str, Any]]:
        """Name and code of every active organization, for registration forms."""
        return self.db.execute_query(
            "SELECT id, name, code FROM organizations WHERE is_active = 1 ORDER BY name"
        )

    def get_user_organizations(self, user_id: int, is_admin: bool = False) -> List[Dict[str, Any]]:
        """
        Get organizations visible to a user.

        Args:
            user_id (int): User ID
            is_admin (bool): Global administrators see every organization

        Returns:
            List[Dict[str, Any]]: Organizations with the user's membership role
        """
        try:
            rows = self.db.execute_query("""
                SELECT o.*, m.role as member_role,
                       (SELECT COUNT(*) FROM organization_members mm
                        WHERE mm.organization_id = o.id) as member_count
                FROM organizations o
                LEFT JOIN organization_members m
                       ON m.organization_id = o.id AND m.user_id = ?
                WHERE o.is_active = 1 AND (m.user_id IS NOT NULL OR ?)
                ORDER BY m.joined_at IS NULL, m.joined_at, o.name
            """, (user_id, 1 if is_admin else 0))
            return [self._format_organization(row) for row in rows]

        except Exception as e:
            self.logger.error(f"Failed to get organizations for user {user_id}: {str(e)}")
            return []

    def update_organization(self, organization_id: int, data: Dict[str, Any],
                            updated_by: int = None) -> Dict[str, Any]:
        """
        Update an organization's details and attendance settings.

        Args:
            organization_id (int): Organization ID
            data (Dict[str, Any]): Updated fields; settings may also be nested
                under ``settings`` and coordinates under ``location``
            updated_by (int): ID of user making the update

        Returns:
            Dict[str, Any]: Update result
        """
        try:
            existing = self.db.execute_query(
                "SELECT id FROM organizations WHERE id = ?", (organization_id,), fetch_all=False
            )
            if not existing:
                return {'success': False, 'error': 'Organization not found', 'error_type': 'not_found'}

            nested = data.get('settings') or {}
            if not isinstance(nested, dict):
                return {'success': False, 'error': 'settings must be an object', 'error_type': 'validation'}
            merged = dict(nested)
            merged.update({key: value for key, value in data.items() if key != 'settings'})

            validation = self._validate_settings(merged)
            if not validation['valid']:
                return {'success': False, 'error': validation['error'], 'error_type': 'validation'}
            updates = validation['values']

            for field in ('name', 'description'):
                if field in merged:
                    updates[field] = merged[field]
            if 'name' in updates and not str(updates['name'] or '').strip():
                return {
                    'success': False,
                    'error': 'Organization name cannot be empty',
                    'error_type': 'validation'
                }

            if not updates:
                return {'success': False, 'error': 'No valid fields to update', 'error_type': 'validation'}

            set_clause = ', '.join(f"{key} = ?" for key in updates)
            self.db.execute_update(
                f"UPDATE organizations SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(updates.values()) + (organization_id,)
            )

            self.logger.info(f"Organization {organization_id} updated by {updated_by}: {', '.join(updates)}")
            return {
                'success': True,
                'message': 'Organization updated successfully',
                'organization': self.get_organization(organization_id)
            }

        except Exception as e:
            self.logger.error(f"Organization update failed for {organization_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update organization',
                'error_type': 'server_error'
            }

    def update_settings(self, organization_id: int, data: Dict[str, Any],
                        updated_by: int = None) -> Dict[str, Any]:
        """Update only the attendance settings of an organization."""
        settings = {key: value for key, value in data.items()
                    if key in self.SETTING_FIELDS or key in ('location', 'settings')}
        return self.update_organization(organization_id, settings, updated_by)

    def join_by_code(self, user_id: int, code: str) -> Dict[str, Any]:
        """
        Join an organization using its code.

        Args:
            user_id (int): Joining user ID
            code (str): Organization code

        Returns:
            Dict[str, Any]: Join result
        """
        organization = self.get_organization_by_code(code)
        if not organization or not organization['is_active']:
            return {'success': False, 'error': 'Organization not found', 'error_type': 'not_found'}

        if self.is_member(organization['id'], user_id):
            return {
                'success': False,
                'error': 'You are already a member of this organization',
                'error_type': 'conflict'
            }

        return self._insert_member(organization['id'], user_id, 'member')

    def add_member(self, organization_id: int, email: str, role: str = 'member',
                   added_by: int = None) -> Dict[str, Any]:
        """
        Add an existing user to an organization by email.

        Args:
            organization_id (int): Organization ID
            email (str): Email of the user to add
            role (str): Membership role
            added_by (int): ID of the acting manager

        Returns:
            Dict[str, Any]: Result with the new membership
        """
        if role not in SecurityConfig.MEMBER_ROLES:
            return {'success': False, 'error': f'Invalid role: {role}', 'error_type': 'validation'}
        if not email:
            return {'success': False, 'error': 'Email is required', 'error_type': 'validation'}

        user = self.db.execute_query(
            "SELECT id FROM users WHERE email = ? AND is_active = 1",
            (str(email).strip().lower(),),
            fetch_all=False
        )
        if not user:
            return {'success': False, 'error': 'User not found', 'error_type': 'not_found'}

        if self.is_member(organization_id, user['id']):
            return {
                'success': False,
                'error': 'User already belongs to this organization',
                'error_type': 'conflict'
            }

        result = self._insert_member(organization_id, user['id'], role)
        if result['success']:
            self.logger.info(f"User {user['id']} added to organization {organization_id} by {added_by}")
        return result

    def update_member_role(self, organization_id: int, user_id: int, role: str) -> Dict[str, Any]:
        """
        Change a member's role within an organization.

        Args:
            organization_id (int): Organization ID
            user_id (int): Member user ID
            role (str): New role

        Returns:
            Dict[str, Any]: Update result
        """
        if role not in SecurityConfig.MEMBER_ROLES:
            return {'success': False, 'error': f'Invalid role: {role}', 'error_type': 'validation'}

        try:
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT role FROM organization_members WHERE organization_id = ? AND user_id = ?",
                    (organization_id, user_id)
                )
                current = cursor.fetchone()
                if not current:
                    return {'success': False, 'error': 'Member not found', 'error_type': 'not_found'}

                if current['role'] == 'owner' and role != 'owner' and \
                        self._owner_count(cursor, organization_id) <= 1:
                    return {
                        'success': False,
                        'error': 'An organization must keep at least one owner',
                        'error_type': 'validation'
                    }

                cursor.execute(
                    "UPDATE organization_members SET role = ? WHERE organization_id = ? AND user_id = ?",
                    (role, organization_id, user_id)
                )

            self.logger.info(f"Member {user_id} of organization {organization_id} is now {role}")
            return {'success': True, 'message': 'Member role updated', 'role': role}

        except Exception as e:
            self.logger.error(f"Failed to update member role: {str(e)}")
            return {'success': False, 'error': 'Failed to update member role', 'error_type': 'server_error'}

    def remove_member(self, organization_id: int, user_id: int) -> Dict[str, Any]:
        """
        Remove a member from an organization. The last owner cannot be removed.

        Args:
            organization_id (int): Organization ID
            user_id (int): Member user ID

        Returns:
            Dict[str, Any]: Removal result
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT role FROM organization_members WHERE organization_id = ? AND user_id = ?",
                    (organization_id, user_id)
                )
                current = cursor.fetchone()
                if not current:
                    return {'success': False, 'error': 'Member not found', 'error_type': 'not_found'}

                if current['role'] == 'owner' and self._owner_count(cursor, organization_id) <= 1:
                    return {
                        'success': False,
                        'error': 'The last owner cannot be removed',
                        'error_type': 'validation'
                    }

                cursor.execute(
                    "DELETE FROM organization_members WHERE organization_id = ? AND user_id = ?",
                    (organization_id, user_id)
                )

            self.logger.info(f"Member {user_id} removed from organization {organization_id}")
            return {'success': True, 'message': 'Member removed'}

        except Exception as e:
            self.logger.error(f"Failed to remove member: {str(e)}")
            return {'success': False, 'error': 'Failed to remove member', 'error_type': 'server_error'}

    def get_members(self, organization_id: int) -> List[Dict[str, Any]]:
        """
        List members of an organization.

        Args:
            organization_id (int): Organization ID

        Returns:
            List[Dict[str, Any]]: Members with their profile basics
        """
        return self.db.execute_query("""
            SELECT u.id as user_id, u.full_name, u.email, u.phone, u.student_id,
                   u.course, u.semester, u.department, m.role, m.joined_at
            FROM organization_members m
            JOIN users u ON u.id = m.user_id
            WHERE m.organization_id = ?
            ORDER BY CASE m.role WHEN 'owner' THEN 0 WHEN 'admin' THEN 1 ELSE 2 END,
                     u.full_name
        """, (organization_id,))

    def get_manager_ids(self, organization_id: int) -> List[int]:
        rows = self.db.execute_query(
            "SELECT user_id FROM organization_members WHERE organization_id = ? AND role IN ('owner', 'admin')",
            (organization_id,)
        )
        return [row['user_id'] for row in rows]

    def get_member_role(self, organization_id: int, user_id: int) -> Optional[str]:
        member = self.db.execute_query(
            "SELECT role FROM organization_members WHERE organization_id = ? AND user_id = ?",
            (organization_id, user_id),
            fetch_all=False
        )
        return member['role'] if member else None

    def is_member(self, organization_id: int, user_id: int) -> bool:
        return self.get_member_role(organization_id, user_id) is not None

    def can_manage(self, organization_id: int, user: Dict[str, Any]) -> bool:
        """
        Check whether a user may manage an organization.

        Args:
            organization_id (int): Organization ID
            user (Dict[str, Any]): User with ``id`` and ``role``

        Returns:
            bool: True for global admins and organization owners/admins
        """
        if user.get('role') == 'admin':
            return True
        return self.get_member_role(organization_id, user['id']) in SecurityConfig.MANAGER_ROLES

    def can_view(self, organization_id: int, user: Dict[str, Any]) -> bool:
        return user.get('role') == 'admin' or self.is_member(organization_id, user['id'])

    def seed_demo_organizations(self, created_by: int = None) -> int:
        """
        Insert the demo organizations that do not exist yet.

        Args:
            created_by (int): Owner for the seeded organizations

        Returns:
            int: Number of organizations created
        """
        created = 0
        for organization in DEMO_ORGANIZATIONS:
            result = self.create_organization(
                organization['name'],
                organization['code'],
                created_by,
                description=organization['description'],
                settings={'location_name': organization['location_name']}
            )
            if result['success']:
                created += 1
            elif result.get('error_type') != 'conflict':
                self.logger.warning(f"Could not seed {organization['code']}: {result['error']}")
        return created

    def _insert_member(self, organization_id: int, user_id: int, role: str) -> Dict[str, Any]:
        try:
            self.db.execute_update(
                "INSERT INTO organization_members (organization_id, user_id, role) VALUES (?, ?, ?)",
                (organization_id, user_id, role)
            )
            return {
                'success': True,
                'message': 'Member added successfully',
                'membership': {
                    'organization_id': organization_id,
                    'user_id': user_id,
                    'role': role,
                    'joined_at': datetime.now().isoformat(timespec='seconds')
                }
            }
        except Exception as e:
            self.logger.error(f"Failed to add member {user_id} to {organization_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to add member', 'error_type': 'server_error'}

    def _owner_count(self, cursor, organization_id: int) -> int:
        cursor.execute(
            "SELECT COUNT(*) FROM organization_members WHERE organization_id = ? AND role = 'owner'",
            (organization_id,)
        )
        return cursor.fetchone()[0]

    def _validate_settings(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate attendance settings.

        Args:
            data (Dict[str, Any]): Candidate settings

        Returns:
            Dict[str, Any]: ``valid`` flag with either ``error`` or cleaned ``values``
        """
        values = {}
        try:
            if isinstance(data.get('location'), dict):
                location = data['location']
                point = parse_location(location)
                if point:
                    values['location_latitude'] = point['latitude']
                    values['location_longitude'] = point['longitude']
                if location.get('name') is not None:
                    values['location_name'] = location['name']
                if location.get('radius') is not None:
                    values['location_radius'] = float(location['radius'])

            for field in ('location_latitude', 'location_longitude'):
                if field in data:
                    values[field] = None if data[field] is None else float(data[field])
            if 'location_name' in data:
                values['location_name'] = data['location_name']

            for field in ('location_radius', 'radius', 'locationRadius'):
                if field in data:
                    values['location_radius'] = float(data[field])
            for field in ('qr_validity_minutes', 'max_scans', 'late_threshold_minutes'):
                if field in data:
                    values[field] = int(data[field])
            for field in ('allow_multiple_scans', 'require_location'):
                if field in data:
                    values[field] = 1 if data[field] else 0

        except LocationError as e:
            return {'valid': False, 'error': str(e)}
        except (TypeError, ValueError):
            return {'valid': False, 'error': 'Settings values must be numeric'}

        latitude = values.get('location_latitude')
        longitude = values.get('location_longitude')
        if latitude is not None and not -90 <= latitude <= 90:
            return {'valid': False, 'error': 'Latitude must be between -90 and 90'}
        if longitude is not None and not -180 <= longitude <= 180:
            return {'valid': False, 'error': 'Longitude must be between -180 and 180'}
        if 'location_radius' in values and values['location_radius'] <= 0:
            return {'valid': False, 'error': 'Location radius must be greater than 0'}
        if 'qr_validity_minutes' in values and values['qr_validity_minutes'] <= 0:
            return {'valid': False, 'error': 'QR validity must be greater than 0 minutes'}
        if 'max_scans' in values and values['max_scans'] < 0:
            return {'valid': False, 'error': 'Max scans cannot be negative'}
        if 'late_threshold_minutes' in values and values['late_threshold_minutes'] < 0:
            return {'valid': False, 'error': 'Late threshold cannot be negative'}

        return {'valid': True, 'values': values}

    def _format_organization(self, organization: Dict[str, Any]) -> Dict[str, Any]:
        formatted = {
            'id': organization['id'],
            'name': organization['name'],
            'code': organization['code'],
            'description': organization.get('description'),
            'is_active': bool(organization.get('is_active')),
            'created_by': organization.get('created_by'),
            'created_at': organization.get('created_at'),
            'updated_at': organization.get('updated_at'),
            'member_count': organization.get('member_count', 0),
            'settings': {
                'location': {
                    'name': organization.get('location_name'),
                    'latitude': organization.get('location_latitude'),
                    'longitude': organization.get('location_longitude'),
                },
                'location_radius': organization.get('location_radius'),
                'qr_validity_minutes': organization.get('qr_validity_minutes'),
                'max_scans': organization.get('max_scans'),
                'allow_multiple_scans': bool(organization.get('allow_multiple_scans')),
                'require_location': bool(organization.get('require_location')),
                'late_threshold_minutes': organization.get('late_threshold_minutes'),
            }
        }
        if 'member_role' in organization:
            formatted['member_role'] = organization['member_role']
        return formatted
