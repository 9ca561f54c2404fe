# QR Attendance API - Package
"""
Main package of the QR attendance API.
Holds the JSON blueprint, the shared Flask extensions and the manager modules.
"""

__version__ = "1.0.0"
__author__ = "QR Attendance Team"
__description__ = "Flask JSON API for QR code attendance with geofencing, rewards and reports"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.qr_generator import QRGenerator
from .modules.organization_manager import OrganizationManager
from .modules.qr_code_manager import QRCodeManager
from .modules.attendance_manager import AttendanceManager
from .modules.rewards_manager import RewardsManager
from .modules.report_generator import ReportGenerator
from .modules.notification_system import NotificationSystem
from .modules.auth_manager import AuthManager
from .modules.leave_manager import LeaveManager

__all__ = [
    'DatabaseManager',
    'QRGenerator',
    'OrganizationManager',
    'QRCodeManager',
    'AttendanceManager',
    'RewardsManager',
    'ReportGenerator',
    'NotificationSystem',
    'AuthManager',
    'LeaveManager'
]
