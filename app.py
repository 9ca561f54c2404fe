"""
QR Attendance API - Main Application
Author: QR Attendance Team
Date: October 2026

This module is the entry point of the QR attendance API. It builds the Flask
application, wires the managers together and registers the JSON blueprint.
Organizations publish short-lived QR sessions, members scan them to mark
attendance, and every successful day of attendance earns reward points.

Features:
- Session-cookie authentication with account lockout
- Organizations with geofenced attendance settings
- QR session generation and scan validation
- Attendance analytics and Excel/CSV/PDF reports
- Rewards, levels and achievements
- Persisted notifications with optional email delivery
"""

from flask import Flask, jsonify
from flask_cors import CORS
import logging
import os

import click

from config import init_config
from qrattend.api import api
from qrattend.extensions import limiter
from qrattend.modules.database_manager import DatabaseManager
from qrattend.modules.qr_generator import QRGenerator
from qrattend.modules.organization_manager import OrganizationManager
from qrattend.modules.qr_code_manager import QRCodeManager
from qrattend.modules.attendance_manager import AttendanceManager
from qrattend.modules.rewards_manager import RewardsManager
from qrattend.modules.report_generator import ReportGenerator
from qrattend.modules.notification_system import NotificationSystem
from qrattend.modules.auth_manager import AuthManager
from qrattend.modules.leave_manager import LeaveManager

logger = logging.getLogger(__name__)


def create_app(config_name=None, overrides=None):
    """
    Build the Flask application.

    Args:
        config_name (str): Key of the ``config`` map, defaults to FLASK_ENV
        overrides (dict): Settings applied on top of the configuration class

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    init_config(app, config_name, overrides)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    )

    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}},
         supports_credentials=True)
    limiter.init_app(app)

    init_managers(app)
    app.register_blueprint(api)
    register_error_handlers(app)
    register_commands(app)

    logger.info(f"QR Attendance API created with {app.config['DATABASE_PATH']}")
    return app


def init_managers(app):
    """Initialize system components and store them on the application."""
    db_manager = DatabaseManager(
        app.config['DATABASE_PATH'],
        seed_defaults=app.config['SEED_DEFAULT_DATA'],
        admin_email=app.config['DEFAULT_ADMIN_EMAIL'],
        admin_password=app.config['DEFAULT_ADMIN_PASSWORD']
    )

    notification_system = NotificationSystem(db_manager, email_config={
        'enabled': app.config['NOTIFICATIONS_EMAIL_ENABLED'],
        'smtp_server': app.config['MAIL_SERVER'],
        'smtp_port': app.config['MAIL_PORT'],
        'username': app.config['MAIL_USERNAME'],
        'password': app.config['MAIL_PASSWORD'],
        'use_tls': app.config['MAIL_USE_TLS'],
        'sender': app.config['MAIL_DEFAULT_SENDER']
    }, system_name=db_manager.get_system_setting('system_name', 'QR Attendance'))
    qr_generator = QRGenerator(app.config['REPORTS_FOLDER'])
    organization_manager = OrganizationManager(
        db_manager,
        default_radius=app.config['QR_CODE_DEFAULT_RADIUS_METERS'],
        default_validity_minutes=app.config['QR_CODE_DEFAULT_VALIDITY_MINUTES']
    )
    qr_code_manager = QRCodeManager(
        db_manager, qr_generator, organization_manager,
        max_validity_hours=app.config['QR_CODE_MAX_VALIDITY_HOURS']
    )
    rewards_manager = RewardsManager(db_manager, notification_system)
    attendance_manager = AttendanceManager(
        db_manager, qr_generator, qr_code_manager, organization_manager,
        rewards_manager, notification_system,
        history_limit=app.config['ATTENDANCE_HISTORY_LIMIT']
    )

    app.extensions['qrattend'] = {
        'database': db_manager,
        'auth': AuthManager(
            db_manager,
            max_login_attempts=app.config['MAX_LOGIN_ATTEMPTS'],
            lockout_duration=app.config['LOGIN_LOCKOUT_DURATION']
        ),
        'organizations': organization_manager,
        'qr_generator': qr_generator,
        'qr_codes': qr_code_manager,
        'attendance': attendance_manager,
        'rewards': rewards_manager,
        'reports': ReportGenerator(db_manager, app.config['REPORTS_FOLDER']),
        'leaves': LeaveManager(db_manager, organization_manager, notification_system),
        'notifications': notification_system,
    }


def register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Resource not found', 'error_type': 'not_found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed', 'error_type': 'method_not_allowed'}), 405

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({
            'success': False,
            'error': 'Too many requests, please try again later',
            'error_type': 'rate_limited'
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Unhandled server error: {str(error)}")
        return jsonify({'success': False, 'error': 'Internal server error', 'error_type': 'server_error'}), 500


def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create tables, indexes and default settings."""
        app.extensions['qrattend']['database'].initialize_database()
        click.echo('Database initialized successfully')

    @app.cli.command('seed-organizations')
    @click.option('--owner-email', default=None, help='Owner of the demo organizations')
    def seed_organizations_command(owner_email):
        """Insert the demo organizations."""
        managers = app.extensions['qrattend']
        owner = managers['auth'].get_user_by_email(owner_email or app.config['DEFAULT_ADMIN_EMAIL'])
        created = managers['organizations'].seed_demo_organizations(owner['id'] if owner else None)
        click.echo(f'{created} organizations created')


if __name__ == '__main__':
    app = create_app(os.environ.get('FLASK_ENV'))

    # Run the application
    app.run(
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 5000)),
        debug=app.config['DEBUG']
    )
