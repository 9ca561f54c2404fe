"""
Attendance Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module records attendance from QR code scans and answers the attendance
queries used by members, organization managers and administrators.

A scan is accepted only when the payload matches a stored QR session, the
scanner belongs to the session's organization, the session is inside its
validity window, the scanner has not already used it (unless repeat scans are
allowed), the scan happened inside the session's geofence and the session's
scan limit has not been reached. Duplicate, location and limit checks run in
one database transaction together with the insert so concurrent scans cannot
both pass them.

Features:
- QR scan processing with geofence validation
- Late arrival detection
- Reward points on the first attendance of each day
- Personal history, today view and statistics
- Organization attendance, summaries and trends
- Manual status corrections
"""

from datetime import datetime, date, timedelta
from typing import Dict, List, Any, Optional
import logging
import hmac

from .geofence import parse_location, haversine_distance, LocationError
from .rewards_manager import ATTENDED_STATUSES, calculate_streaks


class AttendanceManager:
    """
    QR code based attendance processing and analytics.
    """

    def __init__(self, database_manager, qr_generator, qr_code_manager,
                 organization_manager, rewards_manager, notification_system=None,
                 history_limit: int = 100):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Database manager instance
            qr_generator: QRGenerator used to parse payloads
            qr_code_manager: QRCodeManager for stored sessions
            organization_manager: OrganizationManager for membership and settings
            rewards_manager: RewardsManager awarding points
            notification_system: Optional NotificationSystem
            history_limit (int): Maximum rows returned by history queries
        """
        self.db = database_manager
        self.qr_generator = qr_generator
        self.qr_codes = qr_code_manager
        self.organizations = organization_manager
        self.rewards = rewards_manager
        self.notifications = notification_system
        self.history_limit = history_limit
        self.logger = logging.getLogger(__name__)

        # Attendance status constants
        self.STATUS_PRESENT = 'present'
        self.STATUS_LATE = 'late'
        self.STATUS_ABSENT = 'absent'
        self.STATUS_EXCUSED = 'excused'
        self.STATUS_FAILED = 'failed'

        self.logger.info("Attendance manager initialized")

    def process_scan(self, user_id: int, raw_payload, organization_id: int = None,
                     location: Dict[str, Any] = None, device_info: str = None) -> Dict[str, Any]:
        """
        Process a QR code scan for attendance recording.

        Args:
            user_id (int): Scanning user
            raw_payload: Payload read from the QR code (JSON string or dict)
            organization_id (int): Organization the scanner expects, if known
            location (Dict[str, Any]): Scanner location
            device_info (str): User agent of the scanning device

        Returns:
            Dict[str, Any]: Scan processing result
        """
        try:
            parsed = self.qr_generator.parse_payload(raw_payload)
            if not parsed['valid']:
                return self._failure(parsed['error'], parsed['error_type'])
            payload = parsed['data']

            qr_code = self.qr_codes.get_qr_code_row(payload['id'])
            if not qr_code:
                return self._failure('QR code not found', 'not_found')

            if not hmac.compare_digest(str(qr_code['data']), payload['data']):
                self.logger.warning(f"QR secret mismatch for {payload['id']} scanned by user {user_id}")
                return self._failure('Invalid QR code', 'invalid_qr')

            if payload['org'] is not None and payload['org'] != qr_code['organization_id']:
                return self._failure('Invalid QR code', 'invalid_qr')

            if organization_id is not None and int(organization_id) != qr_code['organization_id']:
                return self._failure('This QR code belongs to a different organization', 'wrong_organization')

            if not self.organizations.is_member(qr_code['organization_id'], user_id):
                return self._failure('You are not a member of this organization', 'not_member')

            if qr_code['status'] == 'revoked':
                return self._failure('This QR code has been deactivated', 'revoked')

            now = datetime.now()
            if now < datetime.fromisoformat(qr_code['valid_from']):
                return self._failure('This QR code is not valid yet', 'not_yet_valid')

            if qr_code['status'] == 'expired' or now > datetime.fromisoformat(qr_code['valid_until']):
                self.qr_codes.mark_expired(qr_code['id'])
                return self._failure('QR code has expired', 'expired')

            organization = self.organizations.get_organization(qr_code['organization_id'])
            late_threshold = timedelta(minutes=organization['settings']['late_threshold_minutes'] or 0)

            scan_date = now.date().isoformat()
            scan_time = now.strftime('%H:%M:%S')
            scanned_at = now.isoformat(timespec='seconds')

            with self.db.transaction() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    "SELECT id FROM attendance WHERE qr_code_id = ? AND user_id = ? AND status != 'failed'",
                    (qr_code['id'], user_id)
                )
                previous_scan = cursor.fetchone()
                if previous_scan and not qr_code['allow_multiple_scans']:
                    return self._failure('You have already scanned this QR code', 'already_scanned')

                try:
                    point = parse_location(location)
                except LocationError as e:
                    return self._failure(str(e), 'invalid_location')

                if qr_code['require_location'] and point is None:
                    return self._failure('Location is required to scan this QR code', 'location_required')

                distance = None
                if point and qr_code['latitude'] is not None and qr_code['longitude'] is not None:
                    distance = haversine_distance(
                        qr_code['latitude'], qr_code['longitude'],
                        point['latitude'], point['longitude']
                    )
                    if distance > qr_code['location_radius']:
                        cursor.execute("""
                            INSERT INTO attendance (user_id, organization_id, qr_code_id, scan_date,
                                                    scan_time, scanned_at, status, failure_reason,
                                                    latitude, longitude, distance_m, device_info)
                            VALUES (?, ?, ?, ?, ?, ?, 'failed', 'location_mismatch', ?, ?, ?, ?)
                        """, (user_id, qr_code['organization_id'], qr_code['id'], scan_date, scan_time,
                              scanned_at, point['latitude'], point['longitude'], round(distance, 1),
                              device_info))
                        self.logger.warning(
                            f"Location mismatch for user {user_id} on {qr_code['public_id']}: "
                            f"{distance:.0f}m > {qr_code['location_radius']:.0f}m"
                        )
                        failure = self._failure(
                            'You are not within the allowed location for this QR code',
                            'location_mismatch'
                        )
                        failure['distance'] = round(distance)
                        failure['allowed_radius'] = qr_code['location_radius']
                        return failure

                cursor.execute("""
                    UPDATE qr_codes
                    SET scan_count = scan_count + 1, last_scan_at = ?
                    WHERE id = ? AND (max_scans = 0 OR scan_count < max_scans)
                """, (scanned_at, qr_code['id']))
                if cursor.rowcount == 0:
                    return self._failure('This QR code has reached its scan limit', 'scan_limit_reached')

                valid_from = datetime.fromisoformat(qr_code['valid_from'])
                status = self.STATUS_LATE if now > valid_from + late_threshold else self.STATUS_PRESENT

                cursor.execute("""
                    INSERT INTO attendance (user_id, organization_id, qr_code_id, scan_date, scan_time,
                                            scanned_at, status, latitude, longitude, distance_m,
                                            device_info)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (user_id, qr_code['organization_id'], qr_code['id'], scan_date, scan_time,
                      scanned_at, status,
                      point['latitude'] if point else None,
                      point['longitude'] if point else None,
                      round(distance, 1) if distance is not None else None,
                      device_info))
                attendance_id = cursor.lastrowid

                if not previous_scan:
                    cursor.execute(
                        "UPDATE qr_codes SET unique_scans = unique_scans + 1 WHERE id = ?",
                        (qr_code['id'],)
                    )

                reward = self.rewards.award_attendance(cursor, user_id, status, now.date())
                cursor.execute(
                    "UPDATE attendance SET points_awarded = ? WHERE id = ?",
                    (reward['points'], attendance_id)
                )

                cursor.execute("SELECT full_name FROM users WHERE id = ?", (user_id,))
                user_row = cursor.fetchone()

            attendance = {
                'id': attendance_id,
                'user_id': user_id,
                'user_name': user_row['full_name'] if user_row else None,
                'organization_id': organization['id'],
                'organization_name': organization['name'],
                'qr_code_id': qr_code['public_id'],
                'event_name': qr_code['event_name'],
                'date': scan_date,
                'time': scan_time,
                'scanned_at': scanned_at,
                'status': status,
                'distance_m': round(distance, 1) if distance is not None else None,
                'points_awarded': reward['points']
            }

            self.logger.info(
                f"Attendance recorded: user {user_id}, organization {organization['code']}, "
                f"QR {qr_code['public_id']}, status {status}, points {reward['points']}"
            )

            self._notify(attendance)

            return {
                'success': True,
                'message': 'Attendance marked successfully',
                'attendance': attendance,
                'rewards': reward
            }

        except Exception as e:
            self.logger.error(f"Attendance scan processing failed for user {user_id}: {str(e)}")
            return self._failure('An error occurred while processing the scan', 'server_error')

    def get_user_history(self, user_id: int, start_date: str = None,
                         end_date: str = None) -> Dict[str, Any]:
        """
        Get a user's attendance history, newest first.

        Args:
            user_id (int): User ID
            start_date (str): Start date (YYYY-MM-DD); requires end_date
            end_date (str): End date (YYYY-MM-DD); requires start_date

        Returns:
            Dict[str, Any]: Result with ``records``
        """
        if bool(start_date) != bool(end_date):
            missing = 'End date' if start_date else 'Start date'
            other = 'start date' if start_date else 'end date'
            return self._failure(f'{missing} is required when {other} is provided', 'validation')

        query = """
            SELECT a.id, a.organization_id, o.name as organization_name, q.public_id as qr_code_id,
                   q.event_name, a.scan_date, a.scan_time, a.scanned_at, a.status,
                   a.failure_reason, a.distance_m, a.points_awarded, a.notes
            FROM attendance a
            JOIN organizations o ON o.id = a.organization_id
            LEFT JOIN qr_codes q ON q.id = a.qr_code_id
            WHERE a.user_id = ?
        """
        params = [user_id]

        if start_date:
            try:
                start = date.fromisoformat(start_date)
                end = date.fromisoformat(end_date)
            except ValueError:
                return self._failure('Dates must use the YYYY-MM-DD format', 'validation')
            if start > end:
                return self._failure('Start date must be before end date', 'validation')
            query += " AND a.scan_date BETWEEN ? AND ?"
            params.extend([start.isoformat(), end.isoformat()])

        query += " ORDER BY a.scanned_at DESC, a.id DESC LIMIT ?"
        params.append(self.history_limit)

        try:
            return {'success': True, 'records': self.db.execute_query(query, tuple(params))}
        except Exception as e:
            self.logger.error(f"Failed to get attendance history for user {user_id}: {str(e)}")
            return self._failure('Error fetching attendance history', 'server_error')

    def get_today(self, user_id: int) -> List[Dict[str, Any]]:
        """Today's attendance records of a user, oldest first."""
        return self.db.execute_query("""
            SELECT a.id, a.organization_id, o.name as organization_name, q.public_id as qr_code_id,
                   q.event_name, a.scan_time, a.scanned_at, a.status, a.failure_reason,
                   a.points_awarded
            FROM attendance a
            JOIN organizations o ON o.id = a.organization_id
            LEFT JOIN qr_codes q ON q.id = a.qr_code_id
            WHERE a.user_id = ? AND a.scan_date = ?
            ORDER BY a.scanned_at, a.id
        """, (user_id, date.today().isoformat()))

    def get_user_stats(self, user_id: int) -> Dict[str, Any]:
        """
        Attendance statistics for a user's dashboard.

        Args:
            user_id (int): User ID

        Returns:
            Dict[str, Any]: ``today_status``, ``weekly_attendance``,
            ``monthly_attendance``, streaks and a 30 day ``daily_breakdown``
        """
        today = date.today()
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)
        window_start = today - timedelta(days=29)

        placeholders = ','.join('?' for _ in ATTENDED_STATUSES)

        today_record = self.db.execute_query(f"""
            SELECT status FROM attendance
            WHERE user_id = ? AND scan_date = ? AND status IN ({placeholders}, 'excused')
            ORDER BY CASE status WHEN 'present' THEN 0 WHEN 'late' THEN 1 ELSE 2 END
            LIMIT 1
        """, (user_id, today.isoformat()) + ATTENDED_STATUSES, fetch_all=False)

        def attended_days(start: date) -> int:
            result = self.db.execute_query(f"""
                SELECT COUNT(DISTINCT scan_date) as days FROM attendance
                WHERE user_id = ? AND scan_date BETWEEN ? AND ? AND status IN ({placeholders})
            """, (user_id, start.isoformat(), today.isoformat()) + ATTENDED_STATUSES, fetch_all=False)
            return result['days'] if result else 0

        daily_breakdown = self.db.execute_query(f"""
            SELECT scan_date as date, MIN(scan_time) as first_scan, MAX(scan_time) as last_scan,
                   COUNT(*) as scans,
                   SUM(CASE WHEN status = 'late' THEN 1 ELSE 0 END) as late_scans
            FROM attendance
            WHERE user_id = ? AND scan_date >= ? AND status IN ({placeholders})
            GROUP BY scan_date
            ORDER BY scan_date DESC
        """, (user_id, window_start.isoformat()) + ATTENDED_STATUSES)

        all_dates = self.db.execute_query(f"""
            SELECT DISTINCT scan_date FROM attendance
            WHERE user_id = ? AND status IN ({placeholders})
        """, (user_id,) + ATTENDED_STATUSES)
        streaks = calculate_streaks([row['scan_date'] for row in all_dates], today)

        return {
            'today_status': today_record['status'] if today_record else self.STATUS_ABSENT,
            'weekly_attendance': attended_days(week_start),
            'monthly_attendance': attended_days(month_start),
            'total_days': len(all_dates),
            'current_streak': streaks['current_streak'],
            'longest_streak': streaks['longest_streak'],
            'daily_breakdown': daily_breakdown
        }

    def get_recent_activity(self, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        return self.db.execute_query("""
            SELECT a.id, 'attendance' as type, a.scanned_at as date, o.name as organization,
                   a.status, a.scan_time
            FROM attendance a
            JOIN organizations o ON o.id = a.organization_id
            WHERE a.user_id = ?
            ORDER BY a.scanned_at DESC, a.id DESC
            LIMIT ?
        """, (user_id, limit))

    def get_attendance(self, attendance_id: int) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM attendance WHERE id = ?", (attendance_id,), fetch_all=False
        )

    def get_organization_attendance(self, organization_id: int, on_date: str = None,
                                    include_failed: bool = False) -> Dict[str, Any]:
        """
        Attendance of an organization for one day.

        Args:
            organization_id (int): Organization ID
            on_date (str): Day (YYYY-MM-DD), defaults to today
            include_failed (bool): Include rejected geofence attempts

        Returns:
            Dict[str, Any]: Result with ``records`` and a status ``summary``
        """
        try:
            day = date.fromisoformat(on_date) if on_date else date.today()
        except ValueError:
            return self._failure('Dates must use the YYYY-MM-DD format', 'validation')

        query = """
            SELECT a.id, a.user_id, u.full_name, u.email, u.student_id, u.course, u.semester,
                   q.public_id as qr_code_id, q.event_name, a.scan_time, a.scanned_at, a.status,
                   a.failure_reason, a.distance_m, a.points_awarded, a.notes
            FROM attendance a
            JOIN users u ON u.id = a.user_id
            LEFT JOIN qr_codes q ON q.id = a.qr_code_id
            WHERE a.organization_id = ? AND a.scan_date = ?
        """
        if not include_failed:
            query += " AND a.status != 'failed'"
        query += " ORDER BY a.scanned_at, a.id"

        records = self.db.execute_query(query, (organization_id, day.isoformat()))

        summary = {status: 0 for status in ('present', 'late', 'absent', 'excused', 'failed')}
        for record in records:
            summary[record['status']] = summary.get(record['status'], 0) + 1

        attended = {record['user_id'] for record in records if record['status'] in ATTENDED_STATUSES}
        member_count = len(self.organizations.get_members(organization_id))

        return {
            'success': True,
            'date': day.isoformat(),
            'records': records,
            'summary': summary,
            'members_attended': len(attended),
            'member_count': member_count,
            'attendance_rate': round(len(attended) / member_count * 100, 1) if member_count else 0.0
        }

    def get_qr_statistics(self, organization_id: int = None) -> Dict[str, Any]:
        """
        Aggregate QR session statistics.

        Args:
            organization_id (int): Restrict to one organization

        Returns:
            Dict[str, Any]: Session counts by status and scan totals
        """
        self.qr_codes.expire_stale_sessions()

        where, params = "", ()
        if organization_id is not None:
            where, params = "WHERE organization_id = ?", (organization_id,)

        totals = self.db.execute_query(f"""
            SELECT COUNT(*) as total_sessions,
                   SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END) as active_sessions,
                   SUM(CASE WHEN status = 'expired' THEN 1 ELSE 0 END) as expired_sessions,
                   SUM(CASE WHEN status = 'revoked' THEN 1 ELSE 0 END) as revoked_sessions,
                   COALESCE(SUM(scan_count), 0) as total_scans,
                   COALESCE(SUM(unique_scans), 0) as unique_scans
            FROM qr_codes {where}
        """, params, fetch_all=False)

        failed = self.db.execute_query(f"""
            SELECT COUNT(*) as count FROM attendance
            WHERE status = 'failed' {'AND organization_id = ?' if organization_id is not None else ''}
        """, params, fetch_all=False)

        stats = {key: value or 0 for key, value in totals.items()}
        stats['failed_scans'] = failed['count'] if failed else 0
        return stats

    def update_attendance_status(self, attendance_id: int, new_status: str,
                                 notes: str = None, updated_by: int = None) -> Dict[str, Any]:
        """
        Update attendance record status and add notes.

        Args:
            attendance_id (int): Attendance record ID
            new_status (str): New attendance status
            notes (str): Optional notes
            updated_by (int): ID of user making the update

        Returns:
            Dict[str, Any]: Update result with the updated record
        """
        valid_statuses = [self.STATUS_PRESENT, self.STATUS_LATE, self.STATUS_ABSENT, self.STATUS_EXCUSED]
        if new_status not in valid_statuses:
            return self._failure(
                f"Invalid attendance status: {new_status}. Use one of {', '.join(valid_statuses)}",
                'validation'
            )

        try:
            affected_rows = self.db.execute_update("""
                UPDATE attendance
                SET status = ?, notes = COALESCE(?, notes), marked_by = ?,
                    failure_reason = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (new_status, notes, updated_by, attendance_id))

            if affected_rows == 0:
                self.logger.warning(f"No attendance record found with ID: {attendance_id}")
                return self._failure('Attendance record not found', 'not_found')

            self.logger.info(f"Attendance record {attendance_id} updated to {new_status} by {updated_by}")
            return {
                'success': True,
                'message': 'Attendance status updated',
                'attendance': self.get_attendance(attendance_id)
            }

        except Exception as e:
            self.logger.error(f"Failed to update attendance status: {str(e)}")
            return self._failure('Failed to update attendance status', 'server_error')

    def get_recent_attendance(self, organization_id: int = None, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Get recent successful attendance records.

        Args:
            organization_id (int): Restrict to one organization
            limit (int): Number of records to retrieve

        Returns:
            List[Dict[str, Any]]: Recent attendance records
        """
        try:
            query = """
                SELECT a.id, a.user_id, u.full_name, u.student_id, a.organization_id,
                       o.name as organization_name, a.scan_date, a.scan_time, a.status,
                       a.points_awarded
                FROM attendance a
                JOIN users u ON u.id = a.user_id
                JOIN organizations o ON o.id = a.organization_id
                WHERE a.status != 'failed'
            """
            params = []
            if organization_id is not None:
                query += " AND a.organization_id = ?"
                params.append(organization_id)
            query += " ORDER BY a.scanned_at DESC, a.id DESC LIMIT ?"
            params.append(limit)

            return self.db.execute_query(query, tuple(params))
        except Exception as e:
            self.logger.error(f"Failed to get recent attendance: {str(e)}")
            return []

    def get_today_attendance_summary(self, organization_id: int = None) -> Dict[str, Any]:
        """
        Get attendance summary for today.

        Args:
            organization_id (int): Restrict to one organization

        Returns:
            Dict[str, Any]: Today's attendance summary
        """
        today = date.today().isoformat()
        org_filter = " AND a.organization_id = ?" if organization_id is not None else ""
        params = (today, organization_id) if organization_id is not None else (today,)

        try:
            total_scans = self.db.execute_query(
                f"SELECT COUNT(*) as count FROM attendance a WHERE a.scan_date = ?{org_filter}",
                params,
                fetch_all=False
            )['count']

            status_breakdown = self.db.execute_query(f"""
                SELECT a.status, COUNT(*) as count
                FROM attendance a
                WHERE a.scan_date = ?{org_filter}
                GROUP BY a.status
            """, params)

            organization_breakdown = self.db.execute_query(f"""
                SELECT o.id, o.name, o.code, COUNT(DISTINCT a.user_id) as attendance_count
                FROM organizations o
                JOIN attendance a ON a.organization_id = o.id
                WHERE a.scan_date = ? AND a.status IN ('present', 'late'){org_filter}
                GROUP BY o.id, o.name, o.code
                ORDER BY attendance_count DESC
            """, params)

            return {
                'date': today,
                'total_scans': total_scans,
                'status_breakdown': status_breakdown,
                'organization_breakdown': organization_breakdown
            }

        except Exception as e:
            self.logger.error(f"Failed to get today's attendance summary: {str(e)}")
            return {
                'date': today,
                'total_scans': 0,
                'status_breakdown': [],
                'organization_breakdown': []
            }

    def get_attendance_trends(self, organization_id: int = None, days: int = 30) -> Dict[str, Any]:
        """
        Get attendance trends for the specified number of days.

        Args:
            organization_id (int): Restrict to one organization
            days (int): Number of days to analyze

        Returns:
            Dict[str, Any]: Daily counts, hourly distribution and top attendees
        """
        days = max(1, min(int(days), 365))
        start_date = (date.today() - timedelta(days=days - 1)).isoformat()
        end_date = date.today().isoformat()

        org_filter = " AND organization_id = ?" if organization_id is not None else ""
        params = (start_date, end_date) + ((organization_id,) if organization_id is not None else ())

        try:
            daily_counts = self.db.execute_query(f"""
                SELECT scan_date, COUNT(*) as daily_count,
                       SUM(CASE WHEN status = 'present' THEN 1 ELSE 0 END) as present_count,
                       SUM(CASE WHEN status = 'late' THEN 1 ELSE 0 END) as late_count,
                       SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) as failed_count
                FROM attendance
                WHERE scan_date BETWEEN ? AND ?{org_filter}
                GROUP BY scan_date
                ORDER BY scan_date
            """, params)

            hourly_distribution = self.db.execute_query(f"""
                SELECT CAST(SUBSTR(scan_time, 1, 2) AS INTEGER) as hour, COUNT(*) as scan_count
                FROM attendance
                WHERE scan_date BETWEEN ? AND ? AND status != 'failed'{org_filter}
                GROUP BY hour
                ORDER BY hour
            """, params)

            top_attendees = self.db.execute_query(f"""
                SELECT a.user_id, u.full_name, COUNT(DISTINCT a.scan_date) as days_attended,
                       AVG(CASE WHEN a.status = 'late' THEN 1.0 ELSE 0.0 END) as late_rate
                FROM attendance a
                JOIN users u ON u.id = a.user_id
                WHERE a.scan_date BETWEEN ? AND ? AND a.status IN ('present', 'late'){org_filter.replace('organization_id', 'a.organization_id')}
                GROUP BY a.user_id, u.full_name
                ORDER BY days_attended DESC, u.full_name
                LIMIT 10
            """, params)

            return {
                'date_range': {
                    'start_date': start_date,
                    'end_date': end_date,
                    'days_analyzed': days
                },
                'daily_counts': daily_counts,
                'hourly_distribution': hourly_distribution,
                'top_attendees': top_attendees
            }

        except Exception as e:
            self.logger.error(f"Failed to get attendance trends: {str(e)}")
            return {
                'date_range': {'start_date': start_date, 'end_date': end_date, 'days_analyzed': days},
                'daily_counts': [],
                'hourly_distribution': [],
                'top_attendees': []
            }

    def get_dashboard_stats(self) -> Dict[str, Any]:
        """System wide figures for the admin dashboard."""
        users = self.db.execute_query("""
            SELECT COUNT(*) as total,
                   SUM(CASE WHEN role = 'admin' THEN 1 ELSE 0 END) as admins,
                   SUM(CASE WHEN role = 'member' THEN 1 ELSE 0 END) as members,
                   SUM(CASE WHEN role = 'student' THEN 1 ELSE 0 END) as students
            FROM users WHERE is_active = 1
        """, fetch_all=False)
        organizations = self.db.execute_query(
            "SELECT COUNT(*) as count FROM organizations WHERE is_active = 1", fetch_all=False
        )

        return {
            'users': {key: value or 0 for key, value in users.items()},
            'organizations': organizations['count'],
            'qr_codes': self.get_qr_statistics(),
            'today': self.get_today_attendance_summary(),
            'recent_attendance': self.get_recent_attendance(limit=10)
        }

    def _notify(self, attendance: Dict[str, Any]) -> None:
        if not self.notifications:
            return
        try:
            self.notifications.send_attendance_notification(attendance)
            if attendance['status'] == self.STATUS_LATE:
                self.notifications.send_late_arrival_alert(
                    attendance, self.organizations.get_manager_ids(attendance['organization_id'])
                )
        except Exception as e:
            self.logger.error(f"Failed to send attendance notifications: {str(e)}")

    def _failure(self, message: str, error_type: str) -> Dict[str, Any]:
        return {'success': False, 'error': message, 'error_type': error_type}
