"""
Notification System Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module stores in-app notifications and optionally mirrors them by email.
Notifications are written to the database so the frontend can poll them;
email delivery is best effort and only happens when SMTP settings are
configured.

Features:
- Attendance confirmations and late arrival alerts
- System alerts and organization broadcasts
- Read / unread tracking per user
- Email notifications rendered from jinja2 templates
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from datetime import datetime
from typing import Dict, List, Any, Optional
import logging
from dataclasses import dataclass, asdict
from jinja2 import Template
import ssl


@dataclass
class NotificationData:
    """Data structure for notification information."""
    type: str
    title: str
    message: str
    severity: str
    user_id: Optional[int]
    organization_id: Optional[int]
    data: Dict[str, Any]
    created_at: str


ATTENDANCE_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif;">
    <h2 style="color: #28a745;">Attendance Recorded</h2>

    <p><strong>Name:</strong> {{ notification.data.user_name }}</p>
    <p><strong>Organization:</strong> {{ notification.data.organization_name }}</p>
    <p><strong>Time:</strong> {{ notification.data.scanned_at }}</p>
    <p><strong>Status:</strong> {{ notification.data.status | title }}</p>
    {% if notification.data.points_awarded %}
    <p><strong>Points earned:</strong> {{ notification.data.points_awarded }}</p>
    {% endif %}

    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        Generated by {{ system_name }} on {{ notification.created_at }}
    </p>
</body>
</html>
"""

LATE_ARRIVAL_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif;">
    <h2 style="color: #ffc107;">Late Arrival Alert</h2>

    <p><strong>Name:</strong> {{ notification.data.user_name }}</p>
    <p><strong>Organization:</strong> {{ notification.data.organization_name }}</p>
    <p><strong>Session:</strong> {{ notification.data.event_name or 'Attendance' }}</p>
    <p><strong>Time:</strong> {{ notification.data.scanned_at }}</p>

    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        Generated by {{ system_name }} on {{ notification.created_at }}
    </p>
</body>
</html>
"""

SYSTEM_ALERT_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif;">
    <h2>{{ notification.title }}</h2>
    <p>{{ notification.message }}</p>

    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        Generated by {{ system_name }} on {{ notification.created_at }}
    </p>
</body>
</html>
"""


class NotificationSystem:
    """
    Persisted notifications with optional email delivery.
    """

    def __init__(self, database_manager, email_config: Dict[str, Any] = None,
                 system_name: str = 'QR Attendance'):
        """
        Initialize the notification system.

        Args:
            database_manager: Database manager instance
            email_config (Dict[str, Any]): SMTP settings (``enabled``,
                ``smtp_server``, ``smtp_port``, ``username``, ``password``,
                ``use_tls``, ``sender``)
            system_name (str): Name shown in email footers
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)
        self.system_name = system_name

        self.NOTIFICATION_TYPES = {
            'ATTENDANCE_SCAN': 'attendance_scan',
            'LATE_ARRIVAL': 'late_arrival',
            'SYSTEM_ALERT': 'system_alert',
            'ORGANIZATION': 'organization'
        }

        self.SEVERITY_LEVELS = ('info', 'success', 'warning', 'error')

        self.email_config = {
            'enabled': False,
            'smtp_server': None,
            'smtp_port': 587,
            'username': None,
            'password': None,
            'use_tls': True,
            'sender': None
        }
        if email_config:
            self.email_config.update(email_config)

        self.templates = {
            'attendance_scan': ATTENDANCE_TEMPLATE,
            'late_arrival': LATE_ARRIVAL_TEMPLATE,
            'system_alert': SYSTEM_ALERT_TEMPLATE,
            'organization': SYSTEM_ALERT_TEMPLATE
        }

        self.logger.info("Notification system initialized")

    def send_attendance_notification(self, attendance_data: Dict[str, Any]) -> Optional[int]:
        """
        Confirm a recorded attendance to the scanning user.

        Args:
            attendance_data (Dict[str, Any]): ``user_id``, ``user_name``,
                ``organization_id``, ``organization_name``, ``status``,
                ``scanned_at`` and ``points_awarded``

        Returns:
            Optional[int]: Notification ID
        """
        status = attendance_data.get('status', 'present')
        message = f"Attendance marked as {status} for {attendance_data.get('organization_name', 'your organization')}"
        if attendance_data.get('points_awarded'):
            message += f" (+{attendance_data['points_awarded']} points)"

        notification = NotificationData(
            type=self.NOTIFICATION_TYPES['ATTENDANCE_SCAN'],
            title='Attendance Recorded',
            message=message,
            severity='warning' if status == 'late' else 'success',
            user_id=attendance_data.get('user_id'),
            organization_id=attendance_data.get('organization_id'),
            data=attendance_data,
            created_at=datetime.now().isoformat(timespec='seconds')
        )
        return self._deliver(notification)

    def send_late_arrival_alert(self, attendance_data: Dict[str, Any],
                                recipient_ids: List[int]) -> int:
        """
        Alert organization managers about a late arrival.

        Args:
            attendance_data (Dict[str, Any]): Attendance details
            recipient_ids (List[int]): Managers to alert

        Returns:
            int: Number of alerts stored
        """
        sent = 0
        for recipient_id in recipient_ids:
            if recipient_id == attendance_data.get('user_id'):
                continue
            notification = NotificationData(
                type=self.NOTIFICATION_TYPES['LATE_ARRIVAL'],
                title=f"Late Arrival - {attendance_data.get('user_name', 'Unknown')}",
                message=(f"{attendance_data.get('user_name', 'A member')} arrived late at "
                         f"{attendance_data.get('scanned_at', '')}"),
                severity='warning',
                user_id=recipient_id,
                organization_id=attendance_data.get('organization_id'),
                data=attendance_data,
                created_at=datetime.now().isoformat(timespec='seconds')
            )
            if self._deliver(notification):
                sent += 1
        return sent

    def send_system_alert(self, title: str, message: str, severity: str = 'info',
                          user_id: int = None, organization_id: int = None) -> Optional[int]:
        """
        Store a system alert.

        Args:
            title (str): Alert title
            message (str): Alert message
            severity (str): Alert severity
            user_id (int): Recipient, None for a global alert
            organization_id (int): Related organization

        Returns:
            Optional[int]: Notification ID
        """
        notification = NotificationData(
            type=self.NOTIFICATION_TYPES['SYSTEM_ALERT'],
            title=title,
            message=message,
            severity=severity if severity in self.SEVERITY_LEVELS else 'info',
            user_id=user_id,
            organization_id=organization_id,
            data={},
            created_at=datetime.now().isoformat(timespec='seconds')
        )
        return self._deliver(notification)

    def notify_organization(self, organization_id: int, title: str, message: str,
                            severity: str = 'info', sent_by: int = None) -> int:
        """
        Broadcast a notification to every member of an organization.

        Args:
            organization_id (int): Organization ID
            title (str): Notification title
            message (str): Notification message
            severity (str): Notification severity
            sent_by (int): Sender, who does not receive a copy

        Returns:
            int: Number of members notified
        """
        members = self.db.execute_query(
            "SELECT user_id FROM organization_members WHERE organization_id = ?",
            (organization_id,)
        )

        sent = 0
        for member in members:
            if member['user_id'] == sent_by:
                continue
            notification = NotificationData(
                type=self.NOTIFICATION_TYPES['ORGANIZATION'],
                title=title,
                message=message,
                severity=severity if severity in self.SEVERITY_LEVELS else 'info',
                user_id=member['user_id'],
                organization_id=organization_id,
                data={'sent_by': sent_by},
                created_at=datetime.now().isoformat(timespec='seconds')
            )
            if self._deliver(notification):
                sent += 1

        self.logger.info(f"Broadcast to organization {organization_id} reached {sent} members")
        return sent

    def get_notifications(self, user_id: int, unread_only: bool = False,
                          limit: int = 20) -> List[Dict[str, Any]]:
        """
        Notifications addressed to a user, newest first.

        Args:
            user_id (int): User ID
            unread_only (bool): Only unread notifications
            limit (int): Maximum number of notifications

        Returns:
            List[Dict[str, Any]]: Notifications
        """
        try:
            query = """
                SELECT id, user_id, organization_id, title, message, type, severity,
                       is_read, created_at
                FROM notifications
                WHERE user_id = ?
            """
            if unread_only:
                query += " AND is_read = 0"
            query += " ORDER BY created_at DESC, id DESC LIMIT ?"

            notifications = self.db.execute_query(query, (user_id, limit))
            for notification in notifications:
                notification['is_read'] = bool(notification['is_read'])
            return notifications

        except Exception as e:
            self.logger.error(f"Failed to get notifications for user {user_id}: {str(e)}")
            return []

    def get_unread_count(self, user_id: int) -> int:
        result = self.db.execute_query(
            "SELECT COUNT(*) as count FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
            fetch_all=False
        )
        return result['count'] if result else 0

    def mark_notification_read(self, notification_id: int, user_id: int) -> bool:
        """
        Mark one of a user's notifications as read.

        Args:
            notification_id (int): Notification ID
            user_id (int): Owner of the notification

        Returns:
            bool: True if a notification was updated
        """
        try:
            affected_rows = self.db.execute_update(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id)
            )
            return affected_rows > 0
        except Exception as e:
            self.logger.error(f"Failed to mark notification {notification_id} as read: {str(e)}")
            return False

    def mark_all_read(self, user_id: int) -> int:
        try:
            return self.db.execute_update(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,)
            )
        except Exception as e:
            self.logger.error(f"Failed to mark notifications read for user {user_id}: {str(e)}")
            return 0

    def _deliver(self, notification: NotificationData) -> Optional[int]:
        notification_id = self._store_notification(notification)
        if notification_id and notification.user_id and self._is_email_configured():
            self._send_email_notification(notification)
        return notification_id

    def _store_notification(self, notification: NotificationData) -> Optional[int]:
        """
        Persist a notification.

        Args:
            notification (NotificationData): Notification to store

        Returns:
            Optional[int]: Notification ID, None if storing failed
        """
        try:
            return self.db.execute_update("""
                INSERT INTO notifications (user_id, organization_id, title, message,
                                           type, severity, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                notification.user_id,
                notification.organization_id,
                notification.title,
                notification.message,
                notification.type,
                notification.severity,
                notification.created_at
            ))
        except Exception as e:
            self.logger.error(f"Failed to store notification: {str(e)}")
            return None

    def _send_email_notification(self, notification: NotificationData) -> bool:
        """
        Send email notification to the recipient's address.

        Args:
            notification (NotificationData): Notification to send

        Returns:
            bool: Success status
        """
        try:
            recipient = self.db.execute_query(
                "SELECT email FROM users WHERE id = ?", (notification.user_id,), fetch_all=False
            )
            if not recipient:
                return False

            msg = MIMEMultipart()
            msg['From'] = self.email_config['sender'] or self.email_config['username']
            msg['To'] = recipient['email']
            msg['Subject'] = f"{self.system_name} - {notification.title}"

            template = Template(self.templates.get(notification.type, SYSTEM_ALERT_TEMPLATE))
            body = template.render(notification=asdict(notification), system_name=self.system_name)
            msg.attach(MIMEText(body, 'html'))

            with smtplib.SMTP(self.email_config['smtp_server'], self.email_config['smtp_port']) as server:
                if self.email_config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

                server.login(self.email_config['username'], self.email_config['password'])
                server.send_message(msg)

            self.logger.info(f"Email notification sent to {recipient['email']}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to send email notification: {str(e)}")
            return False

    def _is_email_configured(self) -> bool:
        """Check if email configuration is complete."""
        return bool(self.email_config['enabled']) and all([
            self.email_config['username'],
            self.email_config['password'],
            self.email_config['smtp_server']
        ])
