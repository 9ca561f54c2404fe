# QR Attendance API Configuration

import os
from datetime import timedelta
from pathlib import Path


# Repository root; default paths hang off it
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Settings shared by every environment"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'qr-attendance-api-secret-2026'

    # SQLite storage and first-run seeding
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance.db'
    SEED_DEFAULT_DATA = True
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL') or 'admin@attendance.local'
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD') or 'Admin123'

    # Report and printable QR output
    REPORTS_FOLDER = BASE_DIR / 'exports'
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max request size

    # QR sessions
    QR_CODE_DEFAULT_VALIDITY_MINUTES = 15
    QR_CODE_MAX_VALIDITY_HOURS = 24 * 7
    QR_CODE_DEFAULT_RADIUS_METERS = 100

    # Session cookie
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Login lockout
    MAX_LOGIN_ATTEMPTS = 5
    LOGIN_LOCKOUT_DURATION = timedelta(minutes=15)

    # SMTP mirror of notifications
    MAIL_SERVER = os.environ.get('MAIL_SERVER')
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@attendance.local'
    NOTIFICATIONS_EMAIL_ENABLED = _env_flag('NOTIFICATIONS_EMAIL_ENABLED')

    # Attendance
    ATTENDANCE_HISTORY_LIMIT = 100

    # Rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_DEFAULT = '100 per 15 minutes'
    RATELIMIT_HEADERS_ENABLED = True
    AUTH_RATE_LIMIT = '10 per 15 minutes'

    # CORS (Flask-CORS)
    CORS_ORIGINS = [
        origin.strip()
        for origin in (os.environ.get('FRONTEND_ORIGINS') or 'http://localhost:3000').split(',')
        if origin.strip()
    ]

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Debug flags
    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app, overrides=None):
        """Load the settings and overrides into the app and create the reports folder"""
        app.config.from_object(cls)
        if overrides:
            app.config.update(overrides)

        Path(app.config['REPORTS_FOLDER']).mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Local development: debug on, separate database file"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'

    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """pytest runs: no rate limits, no email"""
    TESTING = True
    DEBUG = True

    # Tests normally point this at a temporary file
    DATABASE_PATH = ':memory:'
    SEED_DEFAULT_DATA = False

    RATELIMIT_ENABLED = False
    NOTIFICATIONS_EMAIL_ENABLED = False


class ProductionConfig(Config):
    """Production: secure cookies, rotating log file"""
    DEBUG = False
    TESTING = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS
    SEED_DEFAULT_DATA = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance_prod.db')
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI') or 'memory://'

    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app, overrides=None):
        super().init_app(app, overrides)

        import logging
        from logging.handlers import RotatingFileHandler

        if not app.debug:
            log_file = Path(app.config['LOG_FILE'])
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=app.config['LOG_MAX_BYTES'],
                backupCount=app.config['LOG_BACKUP_COUNT']
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Attendance API startup')


# FLASK_ENV name -> config class
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Domain settings read directly by the managers
class QRCodeConfig:
    """QR image rendering and payload settings"""

    VERSION = 1  # Controls the size of the QR Code
    ERROR_CORRECTION = 'H'
    BOX_SIZE = 10
    BORDER = 2

    FILL_COLOR = "black"
    BACK_COLOR = "white"

    SECRET_BYTES = 16

    # Allowed session types and statuses
    TYPES = ('attendance', 'event', 'access')
    STATUSES = ('active', 'expired', 'revoked')

    # Printable sheets (2x3 grid per page)
    PDF_PER_ROW = 2
    PDF_PER_COLUMN = 3


class SecurityConfig:
    """Registration rules and role names"""

    # Registration policy
    PASSWORD_PATTERN = r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{6,}$'
    EMAIL_PATTERN = r'^[^\s@]+@[^\s@]+\.[^\s@]+$'
    PHONE_DIGITS = 10

    # Roles
    USER_ROLES = ('admin', 'member', 'student')
    MEMBER_ROLES = ('owner', 'admin', 'member')
    MANAGER_ROLES = ('owner', 'admin')


class LeaveConfig:
    """Leave request types and review states"""

    TYPES = ('sick', 'casual', 'emergency')
    STATUSES = ('pending', 'approved', 'rejected')
    MAX_DAYS = 30
    REASON_MAX_LENGTH = 500


class RewardsConfig:
    """Rewards, streak and achievement configuration"""

    # Daily attendance rewards
    BASE_TOKENS = 10
    ON_TIME_BONUS = 5
    STREAK_MULTIPLIERS = {
        3: 1.2,   # 3 day streak = 20% bonus
        5: 1.5,   # 5 day streak = 50% bonus
        10: 2.0,  # 10 day streak = 100% bonus
        20: 2.5,  # 20 day streak = 150% bonus
        30: 3.0,  # 30 day streak = 200% bonus
    }

    # Weekly rewards (Monday to Friday)
    WEEKLY_REWARDS = {
        'perfect_attendance': 50,
        'four_day_bonus': 20,
    }

    # Monthly rewards
    MONTHLY_REWARDS = {
        'perfect_attendance': 200,
        'high_attendance': 100,  # >90% attendance
        'consistency_bonus': 50,
    }

    # Level system
    EXPERIENCE_PER_TOKEN = 10
    LEVELS = {
        1: {'required': 0, 'title': 'Newcomer'},
        2: {'required': 1000, 'title': 'Regular'},
        3: {'required': 2500, 'title': 'Bronze'},
        4: {'required': 5000, 'title': 'Silver'},
        5: {'required': 10000, 'title': 'Gold'},
        6: {'required': 20000, 'title': 'Platinum'},
        7: {'required': 35000, 'title': 'Diamond'},
    }

    # Special achievements
    ACHIEVEMENTS = {
        'FIRST_DAY': {
            'title': 'First Day!',
            'description': 'Attend your first day',
            'reward': 20,
        },
        'WEEK_STREAK': {
            'title': 'Week Warrior',
            'description': 'Complete a full week streak',
            'reward': 50,
        },
        'MONTH_STREAK': {
            'title': 'Monthly Master',
            'description': 'Complete a full month streak',
            'reward': 200,
        },
        'PERFECT_QUARTER': {
            'title': 'Quarterly Quest',
            'description': 'Achieve 90% attendance in a quarter',
            'reward': 500,
        },
        'YEARLY_DEDICATION': {
            'title': 'Yearly Excellence',
            'description': 'Maintain 85% attendance for a year',
            'reward': 2000,
        },
    }

    # Redeemable catalog
    CLAIM_EXPIRY_DAYS = 30
    CATALOG = [
        {'id': 1, 'name': 'Extra Day Off', 'points': 1000, 'category': 'perk',
         'description': 'Get an extra day off'},
        {'id': 2, 'name': 'Flexible Hours', 'points': 500, 'category': 'perk',
         'description': 'Flexible working hours for a week'},
        {'id': 3, 'name': 'Lunch Voucher', 'points': 200, 'category': 'voucher',
         'description': 'Free lunch voucher'},
        {'id': 4, 'name': 'Early Leave', 'points': 100, 'category': 'perk',
         'description': 'Leave 2 hours early'},
        {'id': 5, 'name': 'Amazon Gift Card', 'points': 300, 'category': 'voucher',
         'description': 'USD 10 Amazon gift card'},
        {'id': 6, 'name': 'Starbucks Discount', 'points': 100, 'category': 'voucher',
         'description': '15% off at Starbucks'},
        {'id': 7, 'name': 'ETH Payout', 'points': 500, 'category': 'crypto',
         'description': '0.001 ETH sent to your wallet'},
        {'id': 8, 'name': 'MATIC Payout', 'points': 100, 'category': 'crypto',
         'description': '1 MATIC sent to your wallet'},
    ]


def get_config(config_name=None):
    """Get configuration based on name or the FLASK_ENV environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(app_config):
    """Return a list of problems with the loaded settings"""
    errors = []

    if app_config.get('NOTIFICATIONS_EMAIL_ENABLED'):
        if not app_config.get('MAIL_SERVER'):
            errors.append("MAIL_SERVER is required when email notifications are enabled")
        if not app_config.get('MAIL_USERNAME'):
            errors.append("MAIL_USERNAME is required when email notifications are enabled")

    if app_config.get('QR_CODE_DEFAULT_VALIDITY_MINUTES', 0) <= 0:
        errors.append("QR_CODE_DEFAULT_VALIDITY_MINUTES must be positive")

    if app_config.get('QR_CODE_DEFAULT_RADIUS_METERS', 0) <= 0:
        errors.append("QR_CODE_DEFAULT_RADIUS_METERS must be positive")

    return errors


def init_config(app, config_name=None, overrides=None):
    """Apply the selected config class plus overrides to the app and validate it"""
    config_class = get_config(config_name)
    config_class.init_app(app, overrides)

    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
