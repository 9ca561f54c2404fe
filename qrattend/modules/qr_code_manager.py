"""
QR Code Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module manages time-boxed QR attendance sessions: issuing them for an
organization, listing and revoking them, expiring stale ones and reporting
who scanned each code.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
import logging
import re

from config import QRCodeConfig
from .geofence import parse_location, LocationError

BROWSER_PATTERN = re.compile(r'(Chrome|Firefox|Safari|Edge|Opera|MSIE|Trident)/?\s*(\d+(\.\d+)*)', re.I)


def describe_browser(device_info: Optional[str]) -> str:
    """Browser name and version parsed from a user agent string."""
    if not device_info:
        return 'Unknown'

    match = BROWSER_PATTERN.search(device_info)
    if not match:
        return 'Unknown browser'

    browser, version = match.group(1), match.group(2)
    if browser.lower() in ('trident', 'msie'):
        return f"Internet Explorer {version}"
    return f"{browser} {version}"


def describe_device(device_info: Optional[str]) -> str:
    if not device_info:
        return 'unknown'
    if 'Mobile' in device_info:
        return 'mobile'
    if 'Tablet' in device_info:
        return 'tablet'
    return 'desktop'


class QRCodeManager:
    """
    Lifecycle management for QR attendance sessions.
    """

    def __init__(self, database_manager, qr_generator, organization_manager,
                 max_validity_hours: int = 168):
        """
        Initialize the QR code manager.

        Args:
            database_manager: Database manager instance
            qr_generator: QRGenerator used for payloads and images
            organization_manager: OrganizationManager for settings and permissions
            max_validity_hours (int): Longest validity window a session may have
        """
        self.db = database_manager
        self.generator = qr_generator
        self.organizations = organization_manager
        self.max_validity_hours = max_validity_hours
        self.logger = logging.getLogger(__name__)

        self.logger.info("QR code manager initialized")

    def generate_qr_session(self, organization_id: int, user: Dict[str, Any],
                            options: Dict[str, Any] = None) -> Dict[str, Any]:
        """
        Issue a new QR attendance session for an organization.

        Args:
            organization_id (int): Organization ID
            user (Dict[str, Any]): Acting user (``id`` and ``role``)
            options (Dict[str, Any]): ``validity_minutes`` or ``validity_hours``,
                ``type``, ``event_name``, ``description``, ``allow_multiple_scans``,
                ``require_location``, ``max_scans``, ``location`` and
                ``location_radius``, also accepted in camelCase or nested under
                ``settings``; omitted values come from the organization

        Returns:
            Dict[str, Any]: Result with the session, its payload and PNG data URL
        """
        options = options or {}
        try:
            organization = self.organizations.get_organization(organization_id)
            if not organization:
                return {'success': False, 'error': 'Organization not found', 'error_type': 'not_found'}

            if not self.organizations.can_manage(organization_id, user):
                return {
                    'success': False,
                    'error': 'You do not have permission to generate QR codes for this organization',
                    'error_type': 'forbidden'
                }

            settings = organization['settings']
            nested = options.get('settings')
            if not isinstance(nested, dict):
                nested = {}

            def option(*names):
                for source in (options, nested):
                    for name in names:
                        if source.get(name) is not None:
                            return source[name]
                return None

            try:
                validity_minutes = option('validity_minutes', 'validityMinutes')
                validity_hours = option('validity_hours', 'validityHours')
                if validity_minutes is not None:
                    validity = timedelta(minutes=float(validity_minutes))
                elif validity_hours is not None:
                    validity = timedelta(hours=float(validity_hours))
                else:
                    validity = timedelta(minutes=settings['qr_validity_minutes'])

                radius = option('location_radius', 'locationRadius')
                radius = float(radius) if radius is not None else settings['location_radius']

                max_scans = option('max_scans', 'maxScans')
                max_scans = int(max_scans) if max_scans is not None else settings['max_scans']

                location = parse_location(options.get('location'))
            except LocationError as e:
                return {'success': False, 'error': str(e), 'error_type': 'validation'}
            except (TypeError, ValueError):
                return {
                    'success': False,
                    'error': 'Validity, radius and max scans must be numeric',
                    'error_type': 'validation'
                }

            if validity < timedelta(minutes=1) or validity > timedelta(hours=self.max_validity_hours):
                return {
                    'success': False,
                    'error': f'Validity must be between 1 minute and {self.max_validity_hours} hours',
                    'error_type': 'validation'
                }
            if radius <= 0:
                return {'success': False, 'error': 'Location radius must be greater than 0', 'error_type': 'validation'}
            if max_scans < 0:
                return {'success': False, 'error': 'Max scans cannot be negative', 'error_type': 'validation'}

            qr_type = options.get('type') or 'attendance'
            if qr_type not in QRCodeConfig.TYPES:
                return {'success': False, 'error': f'Invalid QR code type: {qr_type}', 'error_type': 'validation'}

            if location is None and settings['location']['latitude'] is not None:
                location = {
                    'latitude': settings['location']['latitude'],
                    'longitude': settings['location']['longitude']
                }
            location_name = (options.get('location') or {}).get('name') or settings['location']['name']

            allow_multiple = option('allow_multiple_scans', 'allowMultipleScans')
            if allow_multiple is None:
                allow_multiple = settings['allow_multiple_scans']
            require_location = option('require_location', 'requireLocation')
            if require_location is None:
                require_location = settings['require_location']

            valid_from = datetime.now()
            valid_until = valid_from + validity
            public_id = self.generator.generate_public_id()
            secret = self.generator.generate_secret()

            qr_code_id = self.db.execute_update("""
                INSERT INTO qr_codes (public_id, data, organization_id, created_by, type, status,
                                      valid_from, valid_until, allow_multiple_scans,
                                      require_location, max_scans, location_name, latitude,
                                      longitude, location_radius, event_name, description)
                VALUES (?, ?, ?, ?, ?, 'active', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                public_id, secret, organization_id, user['id'], qr_type,
                valid_from.isoformat(timespec='seconds'),
                valid_until.isoformat(timespec='seconds'),
                1 if allow_multiple else 0,
                1 if require_location else 0,
                max_scans,
                location_name,
                location['latitude'] if location else None,
                location['longitude'] if location else None,
                radius,
                option('event_name', 'eventName'),
                options.get('description')
            ))

            self.logger.info(
                f"QR session {public_id} (ID: {qr_code_id}) generated for organization "
                f"{organization_id} by user {user['id']}, valid until {valid_until:%Y-%m-%d %H:%M}"
            )

            return {
                'success': True,
                'message': 'QR code generated successfully',
                'qr_code': self.get_qr_code(public_id, include_secret=True)
            }

        except Exception as e:
            self.logger.error(f"QR code generation failed for organization {organization_id}: {str(e)}")
            return {
                'success': False,
                'error': 'An error occurred while generating the QR code',
                'error_type': 'server_error'
            }

    def get_qr_code_row(self, public_id: str) -> Optional[Dict[str, Any]]:
        """Raw stored session including its secret."""
        return self.db.execute_query(
            "SELECT * FROM qr_codes WHERE public_id = ?", (public_id,), fetch_all=False
        )

    def get_qr_code(self, public_id: str, include_secret: bool = False) -> Optional[Dict[str, Any]]:
        """
        Get a QR session by public id, expiring it first if its window has passed.

        Args:
            public_id (str): Public QR identifier
            include_secret (bool): Include the payload and rendered image

        Returns:
            Optional[Dict[str, Any]]: Formatted session or None
        """
        row = self.get_qr_code_row(public_id)
        if not row:
            return None

        if row['status'] == 'active' and self._is_past(row['valid_until']):
            self.mark_expired(row['id'])
            row['status'] = 'expired'

        return self._format_qr_code(row, include_secret)

    def list_for_organization(self, organization_id: int, status: str = None,
                              limit: int = 50) -> List[Dict[str, Any]]:
        """
        List QR sessions of an organization, newest first.

        Args:
            organization_id (int): Organization ID
            status (str): Optional status filter
            limit (int): Maximum number of sessions

        Returns:
            List[Dict[str, Any]]: Sessions without secrets
        """
        self.expire_stale_sessions()

        query = "SELECT * FROM qr_codes WHERE organization_id = ?"
        params = [organization_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        return [self._format_qr_code(row) for row in self.db.execute_query(query, tuple(params))]

    def list_for_user(self, user: Dict[str, Any], status: str = None,
                      limit: int = 50) -> List[Dict[str, Any]]:
        """
        List sessions of every organization the user manages.

        Args:
            user (Dict[str, Any]): Acting user
            status (str): Optional status filter
            limit (int): Maximum number of sessions

        Returns:
            List[Dict[str, Any]]: Sessions without secrets
        """
        self.expire_stale_sessions()

        query = """
            SELECT q.*, o.name as organization_name FROM qr_codes q
            JOIN organizations o ON o.id = q.organization_id
        """
        params = []
        if user.get('role') != 'admin':
            query += """
                WHERE (q.created_by = ? OR q.organization_id IN (
                    SELECT organization_id FROM organization_members
                    WHERE user_id = ? AND role IN ('owner', 'admin')))
            """
            params.extend([user['id'], user['id']])
            if status:
                query += " AND q.status = ?"
                params.append(status)
        elif status:
            query += " WHERE q.status = ?"
            params.append(status)

        query += " ORDER BY q.created_at DESC, q.id DESC LIMIT ?"
        params.append(limit)

        return [self._format_qr_code(row) for row in self.db.execute_query(query, tuple(params))]

    def deactivate(self, public_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Revoke a QR session so it can no longer be scanned.

        Args:
            public_id (str): Public QR identifier
            user (Dict[str, Any]): Acting user

        Returns:
            Dict[str, Any]: Result with the revoked session
        """
        row = self.get_qr_code_row(public_id)
        if not row:
            return {'success': False, 'error': 'QR code not found', 'error_type': 'not_found'}

        if not self.organizations.can_manage(row['organization_id'], user):
            return {
                'success': False,
                'error': 'You do not have permission to deactivate this QR code',
                'error_type': 'forbidden'
            }

        self.db.execute_update("UPDATE qr_codes SET status = 'revoked' WHERE id = ?", (row['id'],))
        self.logger.info(f"QR session {public_id} revoked by user {user['id']}")

        return {
            'success': True,
            'message': 'QR code deactivated',
            'qr_code': self.get_qr_code(public_id)
        }

    def get_scan_history(self, public_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Attendance records created by scans of one QR session.

        Args:
            public_id (str): Public QR identifier
            user (Dict[str, Any]): Acting user, must belong to the organization

        Returns:
            Dict[str, Any]: Result with ``scan_history`` entries
        """
        row = self.get_qr_code_row(public_id)
        if not row:
            return {'success': False, 'error': 'QR code not found', 'error_type': 'not_found'}

        if not self.organizations.can_view(row['organization_id'], user):
            return {
                'success': False,
                'error': 'You do not have permission to view this QR code',
                'error_type': 'forbidden'
            }

        scans = self.db.execute_query("""
            SELECT a.id, a.user_id, a.status, a.failure_reason, a.scanned_at,
                   a.distance_m, a.device_info, a.points_awarded,
                   u.full_name, u.email, u.student_id
            FROM attendance a
            LEFT JOIN users u ON u.id = a.user_id
            WHERE a.qr_code_id = ?
            ORDER BY a.scanned_at DESC, a.id DESC
        """, (row['id'],))

        history = []
        for scan in scans:
            history.append({
                'id': scan['id'],
                'status': scan['status'],
                'failure_reason': scan['failure_reason'],
                'scanned_at': scan['scanned_at'],
                'distance_m': scan['distance_m'],
                'points_awarded': scan['points_awarded'],
                'user': {
                    'id': scan['user_id'],
                    'name': scan['full_name'] or 'Unknown user',
                    'email': scan['email'] or '',
                    'student_id': scan['student_id']
                },
                'browser': describe_browser(scan['device_info']),
                'device': describe_device(scan['device_info'])
            })

        return {'success': True, 'scan_history': history, 'total': len(history)}

    def generate_printable_pdf(self, organization_id: int, user: Dict[str, Any],
                               public_ids: List[str] = None) -> Dict[str, Any]:
        """
        Write a printable PDF sheet of an organization's active QR codes.

        Args:
            organization_id (int): Organization ID
            user (Dict[str, Any]): Acting manager
            public_ids (List[str]): Restrict the sheet to these sessions

        Returns:
            Dict[str, Any]: Result with the PDF ``path``
        """
        organization = self.organizations.get_organization(organization_id)
        if not organization:
            return {'success': False, 'error': 'Organization not found', 'error_type': 'not_found'}
        if not self.organizations.can_manage(organization_id, user):
            return {'success': False, 'error': 'Access denied', 'error_type': 'forbidden'}

        self.expire_stale_sessions()
        rows = self.db.execute_query(
            "SELECT * FROM qr_codes WHERE organization_id = ? AND status = 'active' ORDER BY id",
            (organization_id,)
        )
        if public_ids:
            rows = [row for row in rows if row['public_id'] in public_ids]

        sheet = [{
            'payload': self.generator.build_payload(row['public_id'], row['data'], row['organization_id']),
            'event_name': row['event_name'],
            'organization_name': organization['name'],
            'valid_until': row['valid_until']
        } for row in rows]

        return self.generator.create_bulk_qr_pdf(
            sheet,
            f"qr_codes_{organization['code']}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
        )

    def expire_stale_sessions(self) -> int:
        """Mark active sessions whose window has passed as expired."""
        try:
            expired = self.db.execute_update(
                "UPDATE qr_codes SET status = 'expired' WHERE status = 'active' AND valid_until < ?",
                (datetime.now().isoformat(timespec='seconds'),)
            )
            if expired:
                self.logger.info(f"Expired {expired} QR sessions")
            return expired
        except Exception as e:
            self.logger.error(f"Failed to expire QR sessions: {str(e)}")
            return 0

    def mark_expired(self, qr_code_id: int) -> None:
        self.db.execute_update(
            "UPDATE qr_codes SET status = 'expired' WHERE id = ? AND status = 'active'",
            (qr_code_id,)
        )

    def _is_past(self, timestamp: str) -> bool:
        return datetime.fromisoformat(timestamp) < datetime.now()

    def _format_qr_code(self, row: Dict[str, Any], include_secret: bool = False) -> Dict[str, Any]:
        formatted = {
            'id': row['public_id'],
            'organization_id': row['organization_id'],
            'organization_name': row.get('organization_name'),
            'created_by': row['created_by'],
            'type': row['type'],
            'status': row['status'],
            'valid_from': row['valid_from'],
            'valid_until': row['valid_until'],
            'allow_multiple_scans': bool(row['allow_multiple_scans']),
            'require_location': bool(row['require_location']),
            'max_scans': row['max_scans'],
            'scan_count': row['scan_count'],
            'unique_scans': row['unique_scans'],
            'last_scan_at': row['last_scan_at'],
            'location': {
                'name': row['location_name'],
                'latitude': row['latitude'],
                'longitude': row['longitude'],
                'radius': row['location_radius']
            },
            'event_name': row['event_name'],
            'description': row['description'],
            'created_at': row['created_at']
        }

        if include_secret:
            payload = self.generator.build_payload(row['public_id'], row['data'], row['organization_id'])
            formatted['payload'] = payload
            formatted['qr_image'] = self.generator.render_image(payload)['data_url']

        return formatted
