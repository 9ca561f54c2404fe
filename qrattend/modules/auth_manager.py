"""
Authentication Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module handles user registration, authentication and authorization
for the attendance API. It validates registration data, hashes passwords,
tracks failed login attempts and exposes the role permission table used by
the HTTP layer.

Features:
- User registration with field validation and duplicate detection
- Password hashing and verification (werkzeug)
- Role-based permissions (admin / member / student)
- Login attempt tracking and temporary lockout
- Profile and password management
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
import logging
import math
import re
import threading

from config import SecurityConfig


class AuthManager:
    """
    Authentication and authorization management system.
    Handles registration, login, lockout and profile updates.
    """

    # Fields a user may change on their own profile
    PROFILE_FIELDS = ('full_name', 'phone', 'department', 'course', 'semester', 'student_id')

    def __init__(self, database_manager, max_login_attempts: int = 5,
                 lockout_duration: timedelta = timedelta(minutes=15)):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            max_login_attempts (int): Consecutive failures before lockout
            lockout_duration (timedelta): How long a locked account stays locked
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        # Permission levels
        self.PERMISSIONS = {
            'admin': [
                'view_all_attendance', 'manage_users', 'manage_organizations',
                'generate_qr_codes', 'generate_reports', 'system_settings',
                'view_analytics', 'export_data', 'scan_qr_codes', 'view_own_attendance'
            ],
            'member': [
                'view_own_attendance', 'scan_qr_codes', 'claim_rewards',
                'view_organization'
            ],
            'student': [
                'view_own_attendance', 'scan_qr_codes', 'claim_rewards'
            ]
        }

        self.security_config = {
            'max_login_attempts': max_login_attempts,
            'lockout_duration': lockout_duration,
        }

        # Failed login attempts tracking, keyed by lowercased email
        self.failed_attempts = {}
        self._attempts_lock = threading.Lock()

        self.logger.info("Authentication manager initialized")

    def register_user(self, data: Dict[str, Any], allow_admin_role: bool = False) -> Dict[str, Any]:
        """
        Register a new user account.

        Args:
            data (Dict[str, Any]): Registration fields (full_name, email, password,
                phone, role, department, student_id, course, semester,
                organization_code)
            allow_admin_role (bool): Accept the global ``admin`` role

        Returns:
            Dict[str, Any]: Registration result with the public user record
        """
        try:
            validation = self._validate_registration(data, allow_admin_role)
            if not validation['valid']:
                return {
                    'success': False,
                    'error': validation['error'],
                    'error_type': 'validation',
                    'field': validation.get('field')
                }

            email = data['email'].strip().lower()
            phone = self._normalize_phone(data['phone'])
            role = data.get('role') or 'student'

            if self.email_exists(email):
                return self._conflict('Email is already registered', 'email')

            existing_phone = self.db.execute_query(
                "SELECT id FROM users WHERE phone = ?", (phone,), fetch_all=False
            )
            if existing_phone:
                return self._conflict('Phone number is already registered', 'phone')

            organization = None
            organization_code = str(data.get('organization_code') or '').strip().upper()
            if organization_code:
                organization = self.db.execute_query(
                    "SELECT id, name, code FROM organizations WHERE code = ? AND is_active = 1",
                    (organization_code,),
                    fetch_all=False
                )
                if not organization:
                    return {
                        'success': False,
                        'error': f'Organization with code {organization_code} not found',
                        'error_type': 'not_found',
                        'field': 'organization_code'
                    }

                if data.get('student_id'):
                    duplicate_student = self.db.execute_query("""
                        SELECT u.id FROM users u
                        JOIN organization_members m ON m.user_id = u.id
                        WHERE u.student_id = ? AND m.organization_id = ?
                    """, (str(data['student_id']).strip(), organization['id']), fetch_all=False)
                    if duplicate_student:
                        return self._conflict(
                            'Student ID is already registered in this organization', 'student_id'
                        )

            semester = data.get('semester')
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO users (email, password_hash, full_name, phone, role,
                                       department, student_id, course, semester)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    email,
                    generate_password_hash(data['password']),
                    data['full_name'].strip(),
                    phone,
                    role,
                    data.get('department'),
                    str(data['student_id']).strip() if data.get('student_id') else None,
                    data.get('course'),
                    int(semester) if semester not in (None, '') else None
                ))
                user_id = cursor.lastrowid

                if organization:
                    cursor.execute("""
                        INSERT INTO organization_members (organization_id, user_id, role)
                        VALUES (?, ?, 'member')
                    """, (organization['id'], user_id))

            self.logger.info(f"User registered successfully: {email} (ID: {user_id})")

            return {
                'success': True,
                'message': 'Registration successful',
                'user': self.get_user(user_id),
                'organization': organization
            }

        except Exception as e:
            self.logger.error(f"Registration failed for {data.get('email')}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create user account',
                'error_type': 'server_error'
            }

    def authenticate_user(self, email: str, password: str,
                          ip_address: str = None) -> Dict[str, Any]:
        """
        Authenticate user with email and password.

        Args:
            email (str): Email address
            password (str): Password
            ip_address (str): Client IP address

        Returns:
            Dict[str, Any]: Result with user information and permissions on success
        """
        email = str(email or '').strip().lower()
        if not email or not isinstance(password, str) or not password:
            return {
                'success': False,
                'error': 'Email and password are required',
                'error_type': 'validation'
            }

        try:
            remaining = self._lockout_remaining(email)
            if remaining:
                wait_minutes = max(1, math.ceil(remaining.total_seconds() / 60))
                self.logger.warning(f"Authentication attempt for locked account: {email} from {ip_address}")
                return {
                    'success': False,
                    'error': f'Account is locked. Please try again in {wait_minutes} minutes',
                    'error_type': 'account_locked'
                }

            user = self.db.execute_query(
                "SELECT * FROM users WHERE email = ?", (email,), fetch_all=False
            )

            if not user or not check_password_hash(user['password_hash'], password):
                self._record_failed_attempt(email, ip_address)
                return {
                    'success': False,
                    'error': 'Invalid email or password',
                    'error_type': 'invalid_credentials'
                }

            if not user['is_active']:
                self.logger.warning(f"Authentication refused for inactive account: {email}")
                return {
                    'success': False,
                    'error': 'Account is inactive. Please contact support.',
                    'error_type': 'invalid_credentials'
                }

            self._clear_failed_attempts(email)

            self.db.execute_update(
                "UPDATE users SET last_login = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (datetime.now().isoformat(timespec='seconds'), user['id'])
            )

            self.logger.info(f"User authenticated successfully: {email} from {ip_address}")

            profile = self._public_user(user)
            profile['permissions'] = self.get_user_permissions(user['role'])
            return {'success': True, 'user': profile}

        except Exception as e:
            self.logger.error(f"Authentication error for user {email}: {str(e)}")
            return {
                'success': False,
                'error': 'Authentication failed',
                'error_type': 'server_error'
            }

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """
        Get a user's public record.

        Args:
            user_id (int): User ID

        Returns:
            Optional[Dict[str, Any]]: User record without password hash
        """
        user = self.db.execute_query(
            "SELECT * FROM users WHERE id = ?", (user_id,), fetch_all=False
        )
        return self._public_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        user = self.db.execute_query(
            "SELECT * FROM users WHERE email = ?", ((email or '').strip().lower(),), fetch_all=False
        )
        return self._public_user(user) if user else None

    def email_exists(self, email: str) -> bool:
        """
        Check whether an email address is already registered.

        Args:
            email (str): Email address

        Returns:
            bool: True if registered
        """
        existing = self.db.execute_query(
            "SELECT id FROM users WHERE email = ?",
            ((email or '').strip().lower(),),
            fetch_all=False
        )
        return existing is not None

    def update_profile(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update whitelisted profile fields.

        Args:
            user_id (int): User ID
            data (Dict[str, Any]): Fields to update

        Returns:
            Dict[str, Any]: Update result with the refreshed profile
        """
        try:
            updates = {key: data[key] for key in self.PROFILE_FIELDS if key in data}
            if not updates:
                return {
                    'success': False,
                    'error': 'No valid fields to update',
                    'error_type': 'validation'
                }

            if 'full_name' in updates and not str(updates['full_name'] or '').strip():
                return {
                    'success': False,
                    'error': 'Full name cannot be empty',
                    'error_type': 'validation',
                    'field': 'full_name'
                }

            if 'phone' in updates:
                phone = self._normalize_phone(updates['phone'])
                if len(phone) != SecurityConfig.PHONE_DIGITS:
                    return {
                        'success': False,
                        'error': 'Phone number must be 10 digits',
                        'error_type': 'validation',
                        'field': 'phone'
                    }
                taken = self.db.execute_query(
                    "SELECT id FROM users WHERE phone = ? AND id != ?",
                    (phone, user_id),
                    fetch_all=False
                )
                if taken:
                    return self._conflict('Phone number is already registered', 'phone')
                updates['phone'] = phone

            set_clause = ', '.join(f"{key} = ?" for key in updates)
            affected_rows = self.db.execute_update(
                f"UPDATE users SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(updates.values()) + (user_id,)
            )

            if affected_rows == 0:
                return {'success': False, 'error': 'User not found', 'error_type': 'not_found'}

            self.logger.info(f"Profile updated for user {user_id}: {', '.join(updates)}")
            return {
                'success': True,
                'message': 'Profile updated successfully',
                'user': self.get_user(user_id)
            }

        except Exception as e:
            self.logger.error(f"Profile update failed for user {user_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update profile',
                'error_type': 'server_error'
            }

    def change_password(self, user_id: int, current_password: str,
                        new_password: str) -> Dict[str, Any]:
        """
        Update user password with validation.

        Args:
            user_id (int): User ID
            current_password (str): Current password
            new_password (str): New password

        Returns:
            Dict[str, Any]: Update result
        """
        try:
            user = self.db.execute_query(
                "SELECT * FROM users WHERE id = ? AND is_active = 1",
                (user_id,),
                fetch_all=False
            )

            if not user:
                return {
                    'success': False,
                    'error': 'User not found or inactive',
                    'error_type': 'not_found'
                }

            if not check_password_hash(user['password_hash'], str(current_password or '')):
                self.logger.warning(f"Password update failed - incorrect current password for user {user_id}")
                return {
                    'success': False,
                    'error': 'Current password is incorrect',
                    'error_type': 'validation'
                }

            if not self._is_strong_password(new_password):
                return {
                    'success': False,
                    'error': 'Password must be at least 6 characters and contain '
                             'uppercase, lowercase and a number',
                    'error_type': 'validation'
                }

            self.db.execute_update(
                "UPDATE users SET password_hash = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (generate_password_hash(new_password), user_id)
            )

            self.logger.info(f"Password updated successfully for user {user_id}")
            return {'success': True, 'message': 'Password updated successfully'}

        except Exception as e:
            self.logger.error(f"Password update failed for user {user_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update password',
                'error_type': 'server_error'
            }

    def get_user_permissions(self, role: str) -> List[str]:
        """
        Get permissions for a role.

        Args:
            role (str): User role

        Returns:
            List[str]: List of permissions
        """
        return self.PERMISSIONS.get(role, self.PERMISSIONS['student'])

    def has_permission(self, role: str, permission: str) -> bool:
        """
        Check if a role has a specific permission.

        Args:
            role (str): User role
            permission (str): Permission to check

        Returns:
            bool: True if the role has the permission
        """
        return permission in self.get_user_permissions(role)

    def get_all_users(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        """
        Get all users in the system.

        Args:
            include_inactive (bool): Include inactive users

        Returns:
            List[Dict[str, Any]]: List of users
        """
        try:
            where_clause = "" if include_inactive else "WHERE is_active = 1"

            return self.db.execute_query(f"""
                SELECT id, email, full_name, phone, role, department, student_id,
                       course, semester, points, is_active, last_login, created_at
                FROM users
                {where_clause}
                ORDER BY role, full_name
            """)

        except Exception as e:
            self.logger.error(f"Failed to get users: {str(e)}")
            return []

    def deactivate_user(self, user_id: int, deactivated_by: int = None) -> bool:
        """
        Deactivate user account.

        Args:
            user_id (int): User ID to deactivate
            deactivated_by (int): ID of user performing deactivation

        Returns:
            bool: Success status
        """
        try:
            affected_rows = self.db.execute_update(
                "UPDATE users SET is_active = 0, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (user_id,)
            )

            if affected_rows > 0:
                self.logger.info(f"User {user_id} deactivated by {deactivated_by}")
                return True

            return False

        except Exception as e:
            self.logger.error(f"Failed to deactivate user {user_id}: {str(e)}")
            return False

    def _validate_registration(self, data: Dict[str, Any], allow_admin_role: bool = False) -> Dict[str, Any]:
        """
        Validate user registration data.

        Args:
            data (Dict[str, Any]): Registration fields

        Returns:
            Dict[str, Any]: Validation result naming the offending field
        """
        for field in ('full_name', 'email', 'password', 'phone'):
            if not str(data.get(field) or '').strip():
                return {'valid': False, 'error': f'{field} is required', 'field': field}
        for field in ('full_name', 'email', 'password'):
            if not isinstance(data[field], str):
                return {'valid': False, 'error': f'{field} must be text', 'field': field}

        role = data.get('role') or 'student'
        if role not in SecurityConfig.USER_ROLES:
            return {'valid': False, 'error': f'Invalid role: {role}', 'field': 'role'}
        if role == 'admin' and not allow_admin_role:
            return {'valid': False, 'error': 'Admin accounts cannot be self-registered', 'field': 'role'}

        if role == 'student':
            for field in ('student_id', 'course', 'semester'):
                if not str(data.get(field) or '').strip():
                    return {'valid': False, 'error': f'{field} is required for students', 'field': field}

        if data.get('semester') not in (None, ''):
            try:
                if int(data['semester']) < 1:
                    raise ValueError(data['semester'])
            except (TypeError, ValueError):
                return {'valid': False, 'error': 'Semester must be a positive number', 'field': 'semester'}

        if not re.match(SecurityConfig.EMAIL_PATTERN, data['email'].strip()):
            return {'valid': False, 'error': 'Invalid email address format', 'field': 'email'}

        if not self._is_strong_password(data['password']):
            return {
                'valid': False,
                'error': 'Password must be at least 6 characters and contain '
                         'uppercase, lowercase and a number',
                'field': 'password'
            }

        if len(self._normalize_phone(data['phone'])) != SecurityConfig.PHONE_DIGITS:
            return {'valid': False, 'error': 'Phone number must be 10 digits', 'field': 'phone'}

        return {'valid': True}

    def _is_strong_password(self, password: str) -> bool:
        return isinstance(password, str) and bool(password) and re.match(SecurityConfig.PASSWORD_PATTERN, password) is not None

    def _normalize_phone(self, phone) -> str:
        return re.sub(r'\D', '', str(phone or ''))

    def _conflict(self, message: str, field: str) -> Dict[str, Any]:
        return {
            'success': False,
            'error': message,
            'error_type': 'conflict',
            'field': field
        }

    def _public_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        profile = dict(user)
        profile.pop('password_hash', None)
        profile['is_active'] = bool(profile.get('is_active'))
        return profile

    def _lockout_remaining(self, email: str) -> Optional[timedelta]:
        """
        Check if account is locked due to failed login attempts.

        Args:
            email (str): Email to check

        Returns:
            Optional[timedelta]: Remaining lockout time, None if not locked
        """
        with self._attempts_lock:
            attempt_data = self.failed_attempts.get(email)
            if not attempt_data:
                return None

            elapsed = datetime.now() - attempt_data['last_attempt']
            if elapsed > self.security_config['lockout_duration']:
                # Lockout period has expired
                del self.failed_attempts[email]
                return None

            if attempt_data['count'] >= self.security_config['max_login_attempts']:
                return self.security_config['lockout_duration'] - elapsed
            return None

    def _record_failed_attempt(self, email: str, ip_address: str = None) -> None:
        """
        Record failed login attempt.

        Args:
            email (str): Email address
            ip_address (str): Client IP address
        """
        with self._attempts_lock:
            self._prune_failed_attempts()
            attempt_data = self.failed_attempts.setdefault(
                email, {'count': 0, 'last_attempt': datetime.now()}
            )
            attempt_data['count'] += 1
            attempt_data['last_attempt'] = datetime.now()
            count = attempt_data['count']

        self.logger.warning(f"Failed login attempt {count} for {email} from {ip_address}")
        if count == self.security_config['max_login_attempts']:
            self.logger.warning(f"Account locked after {count} failed attempts: {email}")

    def _prune_failed_attempts(self) -> None:
        """Drop entries whose lockout window has passed. Caller holds the lock."""
        cutoff = datetime.now() - self.security_config['lockout_duration']
        expired = [email for email, attempt_data in self.failed_attempts.items()
                   if attempt_data['last_attempt'] < cutoff]
        for email in expired:
            del self.failed_attempts[email]

    def _clear_failed_attempts(self, email: str) -> None:
        with self._attempts_lock:
            self.failed_attempts.pop(email, None)
