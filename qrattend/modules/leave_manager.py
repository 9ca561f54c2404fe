"""
Leave Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module handles leave requests. Members ask for leave over a date range
in one of their organizations; organization managers approve or reject the
request. Approved days are written to the attendance table as ``excused``
so reports and statistics show them.

Features:
- Leave submission with date range validation
- Personal leave list and pending count
- Cancellation of pending requests
- Organization review queue with approve and reject
- Excused attendance for approved days
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Any, Optional
import logging

from config import LeaveConfig


def parse_leave_date(value) -> Optional[date]:
    """Date from an ISO string (a time part is ignored), or None."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


class LeaveManager:
    """
    Leave requests and their review.
    """

    def __init__(self, database_manager, organization_manager, notification_system=None):
        """
        Initialize the leave manager.

        Args:
            database_manager: Database manager instance
            organization_manager: OrganizationManager for membership checks
            notification_system: Optional NotificationSystem for review notices
        """
        self.db = database_manager
        self.organizations = organization_manager
        self.notifications = notification_system
        self.logger = logging.getLogger(__name__)

        self.logger.info("Leave manager initialized")

    def submit_leave(self, user_id: int, data: Dict[str, Any], organization_id: int = None,
                     today: date = None) -> Dict[str, Any]:
        """
        Submit a leave request.

        Args:
            user_id (int): Requesting user
            data (Dict[str, Any]): ``start_date``, ``end_date``, ``type``, ``reason``
                and optionally ``organization_id`` (camelCase keys are accepted)
            organization_id (int): Fallback organization, e.g. the active one
            today (date): Reference day for the past date check

        Returns:
            Dict[str, Any]: Result with the stored leave request
        """
        today = today or date.today()

        start = parse_leave_date(data.get('start_date', data.get('startDate')))
        end = parse_leave_date(data.get('end_date', data.get('endDate')))
        if start is None or end is None:
            return self._failure('Start and end dates must be valid dates (YYYY-MM-DD)', 'validation')
        if start > end:
            return self._failure('Start date cannot be after end date', 'validation')
        if start < today:
            return self._failure('Cannot request leave for past dates', 'validation')
        if (end - start).days + 1 > LeaveConfig.MAX_DAYS:
            return self._failure(f'A leave request cannot exceed {LeaveConfig.MAX_DAYS} days', 'validation')

        leave_type = data.get('type') or 'sick'
        if leave_type not in LeaveConfig.TYPES:
            return self._failure(
                f"Invalid leave type: {leave_type}. Use one of {', '.join(LeaveConfig.TYPES)}",
                'validation'
            )

        reason = data.get('reason')
        reason = str(reason).strip() if reason is not None else ''
        if not reason:
            return self._failure('A reason is required', 'validation')
        if len(reason) > LeaveConfig.REASON_MAX_LENGTH:
            return self._failure(
                f'Reason cannot exceed {LeaveConfig.REASON_MAX_LENGTH} characters', 'validation'
            )

        try:
            requested = data.get('organization_id', data.get('organizationId'))
            if requested is not None:
                try:
                    organization_id = int(requested)
                except (TypeError, ValueError):
                    return self._failure('organization_id must be a number', 'validation')
            if organization_id is None:
                memberships = self.organizations.get_user_organizations(user_id)
                if not memberships:
                    return self._failure('You are not associated with any organization', 'not_found')
                organization_id = memberships[0]['id']

            if not self.organizations.is_member(organization_id, user_id):
                return self._failure('You are not a member of this organization', 'not_member')

            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id FROM leaves
                    WHERE user_id = ? AND organization_id = ?
                      AND status IN ('pending', 'approved')
                      AND start_date <= ? AND end_date >= ?
                """, (user_id, organization_id, end.isoformat(), start.isoformat()))
                if cursor.fetchone():
                    return self._failure('You already have a leave request covering these dates', 'conflict')

                cursor.execute("""
                    INSERT INTO leaves (user_id, organization_id, start_date, end_date, type, reason)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (user_id, organization_id, start.isoformat(), end.isoformat(), leave_type, reason))
                leave_id = cursor.lastrowid

            self.logger.info(
                f"Leave {leave_id} requested by user {user_id} for {start.isoformat()} to {end.isoformat()}"
            )
            return {
                'success': True,
                'message': 'Leave request submitted successfully',
                'leave': self.get_leave(leave_id)
            }

        except Exception as e:
            self.logger.error(f"Failed to submit leave for user {user_id}: {str(e)}")
            return self._failure('Failed to submit leave request', 'server_error')

    def get_leave(self, leave_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.execute_query("""
            SELECT l.*, o.name AS organization_name, u.full_name, u.email
            FROM leaves l
            JOIN organizations o ON o.id = l.organization_id
            JOIN users u ON u.id = l.user_id
            WHERE l.id = ?
        """, (leave_id,), fetch_all=False)
        return self._format_leave(row) if row else None

    def get_user_leaves(self, user_id: int, status: str = None) -> List[Dict[str, Any]]:
        """
        Leave requests of a user, newest first.

        Args:
            user_id (int): User ID
            status (str): Optional status filter

        Returns:
            List[Dict[str, Any]]: Leave requests
        """
        query = """
            SELECT l.*, o.name AS organization_name, u.full_name, u.email
            FROM leaves l
            JOIN organizations o ON o.id = l.organization_id
            JOIN users u ON u.id = l.user_id
            WHERE l.user_id = ?
        """
        params = [user_id]
        if status:
            query += " AND l.status = ?"
            params.append(status)
        query += " ORDER BY l.created_at DESC, l.id DESC"

        return [self._format_leave(row) for row in self.db.execute_query(query, tuple(params))]

    def get_pending_count(self, user_id: int) -> int:
        row = self.db.execute_query(
            "SELECT COUNT(*) AS count FROM leaves WHERE user_id = ? AND status = 'pending'",
            (user_id,), fetch_all=False
        )
        return row['count'] if row else 0

    def cancel_leave(self, user_id: int, leave_id: int) -> Dict[str, Any]:
        """
        Withdraw a pending leave request of the user.

        Args:
            user_id (int): Requesting user
            leave_id (int): Leave request ID

        Returns:
            Dict[str, Any]: Cancellation result
        """
        try:
            deleted = self.db.execute_update(
                "DELETE FROM leaves WHERE id = ? AND user_id = ? AND status = 'pending'",
                (leave_id, user_id)
            )
            if not deleted:
                return self._failure('Leave request not found or cannot be cancelled', 'not_found')

            self.logger.info(f"Leave {leave_id} cancelled by user {user_id}")
            return {'success': True, 'message': 'Leave request cancelled successfully'}

        except Exception as e:
            self.logger.error(f"Failed to cancel leave {leave_id}: {str(e)}")
            return self._failure('Failed to cancel leave request', 'server_error')

    def get_organization_leaves(self, organization_id: int, status: str = None) -> List[Dict[str, Any]]:
        """
        Leave requests of an organization for its managers.

        Args:
            organization_id (int): Organization ID
            status (str): Optional status filter

        Returns:
            List[Dict[str, Any]]: Leave requests, earliest start first
        """
        query = """
            SELECT l.*, o.name AS organization_name, u.full_name, u.email
            FROM leaves l
            JOIN organizations o ON o.id = l.organization_id
            JOIN users u ON u.id = l.user_id
            WHERE l.organization_id = ?
        """
        params = [organization_id]
        if status:
            query += " AND l.status = ?"
            params.append(status)
        query += " ORDER BY l.start_date, l.id"

        return [self._format_leave(row) for row in self.db.execute_query(query, tuple(params))]

    def review_leave(self, leave_id: int, reviewer_id: int, approve: bool,
                     rejection_reason: str = None) -> Dict[str, Any]:
        """
        Approve or reject a pending leave request.

        Approval marks every day of the range as ``excused`` attendance in the
        leave's organization. Days the member already attended keep their
        record; ``absent`` records become ``excused``.

        Args:
            leave_id (int): Leave request ID
            reviewer_id (int): Reviewing manager
            approve (bool): Approve when True, reject otherwise
            rejection_reason (str): Optional note shown to the member

        Returns:
            Dict[str, Any]: Review result with the updated leave and, on
            approval, the number of ``excused_days`` written
        """
        new_status = 'approved' if approve else 'rejected'
        reviewed_at = datetime.now().isoformat(timespec='seconds')

        try:
            leave = self.get_leave(leave_id)
            if not leave:
                return self._failure('Leave request not found', 'not_found')

            excused_days = 0
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    UPDATE leaves
                    SET status = ?, reviewed_by = ?, reviewed_at = ?, rejection_reason = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = 'pending'
                """, (new_status, reviewer_id, reviewed_at,
                      None if approve else (rejection_reason or None), leave_id))
                if cursor.rowcount == 0:
                    return self._failure(f"Leave request is already {leave['status']}", 'conflict')

                if approve:
                    excused_days = self._mark_excused(cursor, leave, reviewer_id, reviewed_at)

            self.logger.info(f"Leave {leave_id} {new_status} by user {reviewer_id}")
            self._notify_review(leave, new_status, rejection_reason)

            result = {
                'success': True,
                'message': f'Leave request {new_status}',
                'leave': self.get_leave(leave_id)
            }
            if approve:
                result['excused_days'] = excused_days
            return result

        except Exception as e:
            self.logger.error(f"Failed to review leave {leave_id}: {str(e)}")
            return self._failure('Failed to review leave request', 'server_error')

    def _mark_excused(self, cursor, leave: Dict[str, Any], reviewer_id: int, marked_at: str) -> int:
        start = date.fromisoformat(leave['start_date'])
        end = date.fromisoformat(leave['end_date'])
        note = f"Approved {leave['type']} leave #{leave['id']}"

        marked = 0
        for offset in range((end - start).days + 1):
            day = (start + timedelta(days=offset)).isoformat()
            cursor.execute("""
                SELECT status FROM attendance
                WHERE user_id = ? AND organization_id = ? AND scan_date = ?
                  AND status IN ('present', 'late', 'excused')
            """, (leave['user_id'], leave['organization_id'], day))
            if cursor.fetchone():
                continue

            cursor.execute("""
                UPDATE attendance
                SET status = 'excused', notes = ?, marked_by = ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ? AND organization_id = ? AND scan_date = ? AND status = 'absent'
            """, (note, reviewer_id, leave['user_id'], leave['organization_id'], day))
            if cursor.rowcount == 0:
                cursor.execute("""
                    INSERT INTO attendance (user_id, organization_id, scan_date, scan_time,
                                            scanned_at, status, notes, marked_by)
                    VALUES (?, ?, ?, '00:00:00', ?, 'excused', ?, ?)
                """, (leave['user_id'], leave['organization_id'], day, marked_at, note, reviewer_id))
            marked += 1
        return marked

    def _notify_review(self, leave: Dict[str, Any], status: str, rejection_reason: str = None) -> None:
        if not self.notifications:
            return
        message = (f"Your {leave['type']} leave from {leave['start_date']} to {leave['end_date']} "
                   f"was {status}.")
        if status == 'rejected' and rejection_reason:
            message += f" Reason: {rejection_reason}"
        self.notifications.send_system_alert(
            f'Leave {status}', message,
            severity='success' if status == 'approved' else 'warning',
            user_id=leave['user_id'],
            organization_id=leave['organization_id']
        )

    def _format_leave(self, row: Dict[str, Any]) -> Dict[str, Any]:
        start = date.fromisoformat(row['start_date'])
        end = date.fromisoformat(row['end_date'])
        return {
            'id': row['id'],
            'user_id': row['user_id'],
            'full_name': row['full_name'],
            'email': row['email'],
            'organization_id': row['organization_id'],
            'organization_name': row['organization_name'],
            'start_date': row['start_date'],
            'end_date': row['end_date'],
            'days': (end - start).days + 1,
            'type': row['type'],
            'reason': row['reason'],
            'status': row['status'],
            'reviewed_by': row['reviewed_by'],
            'reviewed_at': row['reviewed_at'],
            'rejection_reason': row['rejection_reason'],
            'created_at': row['created_at']
        }

    def _failure(self, message: str, error_type: str) -> Dict[str, Any]:
        return {'success': False, 'error': message, 'error_type': error_type}
