"""
JSON API Blueprint - QR Attendance API
Author: QR Attendance Team
Date: October 2026

HTTP surface of the attendance system. Every route lives under ``/api`` and
uses the session cookie set at login. Manager results carry an
``error_type`` that is mapped to the HTTP status code here.
"""

from flask import Blueprint, current_app, g, jsonify, request, send_file, session
from functools import wraps
import logging

from config import LeaveConfig, QRCodeConfig
from qrattend.extensions import limiter

api = Blueprint('api', __name__, url_prefix='/api')
logger = logging.getLogger(__name__)

STATUS_CODES = {
    'validation': 400,
    'invalid_format': 400,
    'invalid_qr': 400,
    'wrong_organization': 400,
    'revoked': 400,
    'not_yet_valid': 400,
    'expired': 400,
    'already_scanned': 400,
    'location_required': 400,
    'location_mismatch': 400,
    'invalid_location': 400,
    'scan_limit_reached': 400,
    'insufficient_points': 400,
    'invalid_credentials': 401,
    'account_locked': 401,
    'forbidden': 403,
    'not_member': 403,
    'not_found': 404,
    'no_data': 404,
    'conflict': 409,
    'server_error': 500,
}


def managers():
    """Managers created by the application factory."""
    return current_app.extensions['qrattend']


def respond(result, success_status=200):
    """Turn a manager result dict into a JSON response."""
    if result.get('success'):
        return jsonify(result), success_status
    return jsonify(result), STATUS_CODES.get(result.get('error_type'), 400)


def error_response(message, status, error_type):
    return jsonify({'success': False, 'error': message, 'error_type': error_type}), status


def auth_rate_limit():
    return current_app.config['AUTH_RATE_LIMIT']


def login_required(f):
    """Decorator to require a logged in, active user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = session.get('user_id')
        user = managers()['auth'].get_user(user_id) if user_id else None
        if not user or not user['is_active']:
            session.clear()
            return error_response('Authentication required', 401, 'unauthenticated')
        g.user = user
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin privileges"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if g.user['role'] != 'admin':
            return error_response('Admin privileges required', 403, 'forbidden')
        return f(*args, **kwargs)
    return decorated_function


def json_body():
    """Request JSON object, or an empty dict for missing or non-object bodies"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def text_field(data, key, strip=True):
    value = data.get(key)
    if value is None:
        return ''
    return str(value).strip() if strip else str(value)


def manager_or_403(organization_id):
    """Return an error response unless the current user manages the organization."""
    organizations = managers()['organizations']
    if not organizations.get_organization(organization_id):
        return error_response('Organization not found', 404, 'not_found')
    if not organizations.can_manage(organization_id, g.user):
        return error_response('Access denied', 403, 'forbidden')
    return None


def start_session(user):
    session.clear()
    session['user_id'] = user['id']
    session['role'] = user['role']
    session.permanent = True


# Authentication

@api.route('/auth/register', methods=['POST'])
@limiter.limit(auth_rate_limit)
def register():
    """Create an account and log it in"""
    result = managers()['auth'].register_user(json_body())
    if result['success']:
        start_session(result['user'])
        if result.get('organization'):
            session['active_organization_id'] = result['organization']['id']
        logger.info(f"User {result['user']['email']} registered")
    return respond(result, 201)


@api.route('/auth/login', methods=['POST'])
@limiter.limit(auth_rate_limit)
def login():
    """Authenticate with email and password"""
    data = json_body()
    result = managers()['auth'].authenticate_user(
        text_field(data, 'email'), text_field(data, 'password', strip=False), request.remote_addr
    )
    if result['success']:
        start_session(result['user'])
        logger.info(f"User {result['user']['email']} logged in successfully")
    return respond(result)


@api.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    session.clear()
    logger.info(f"User {g.user['email']} logged out")
    return jsonify({'success': True, 'message': 'Logged out successfully'})


@api.route('/auth/me', methods=['GET'])
@login_required
def me():
    """Current user with permissions and organizations"""
    user = dict(g.user)
    user['permissions'] = managers()['auth'].get_user_permissions(user['role'])
    organizations = managers()['organizations'].get_user_organizations(
        user['id'], is_admin=user['role'] == 'admin'
    )
    return jsonify({
        'success': True,
        'user': user,
        'organizations': organizations,
        'active_organization_id': session.get('active_organization_id')
    })


@api.route('/auth/profile', methods=['PUT'])
@login_required
def update_profile():
    return respond(managers()['auth'].update_profile(g.user['id'], json_body()))


@api.route('/auth/change-password', methods=['POST'])
@login_required
def change_password():
    data = json_body()
    return respond(managers()['auth'].change_password(
        g.user['id'], text_field(data, 'current_password', strip=False),
        text_field(data, 'new_password', strip=False)
    ))


@api.route('/auth/check-email', methods=['GET'])
def check_email():
    email = request.args.get('email', '').strip()
    if not email:
        return error_response('Email is required', 400, 'validation')
    return jsonify({'success': True, 'exists': managers()['auth'].email_exists(email)})


# Organizations

@api.route('/organizations/public', methods=['GET'])
def public_organizations():
    """Organization names and codes for registration forms"""
    return jsonify({'success': True, 'organizations': managers()['organizations'].list_public()})


@api.route('/organizations', methods=['POST'])
@admin_required
def create_organization():
    data = json_body()
    result = managers()['organizations'].create_organization(
        text_field(data, 'name'),
        text_field(data, 'code'),
        g.user['id'],
        description=data.get('description'),
        settings=data.get('settings')
    )
    return respond(result, 201)


@api.route('/organizations', methods=['GET'])
@login_required
def list_organizations():
    organizations = managers()['organizations'].get_user_organizations(
        g.user['id'], is_admin=g.user['role'] == 'admin'
    )
    return jsonify({'success': True, 'organizations': organizations})


@api.route('/organizations/<int:organization_id>', methods=['GET'])
@login_required
def get_organization(organization_id):
    organizations = managers()['organizations']
    organization = organizations.get_organization(organization_id)
    if not organization:
        return error_response('Organization not found', 404, 'not_found')
    if not organizations.can_view(organization_id, g.user):
        return error_response('Access denied', 403, 'forbidden')
    organization['my_role'] = organizations.get_member_role(organization_id, g.user['id'])
    return jsonify({'success': True, 'organization': organization})


@api.route('/organizations/<int:organization_id>', methods=['PUT'])
@login_required
def update_organization(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    return respond(managers()['organizations'].update_organization(
        organization_id, json_body(), g.user['id']
    ))


@api.route('/organizations/join', methods=['POST'])
@login_required
def join_organization():
    code = text_field(json_body(), 'code')
    if not code:
        return error_response('Organization code is required', 400, 'validation')
    result = managers()['organizations'].join_by_code(g.user['id'], code)
    if result['success'] and not session.get('active_organization_id'):
        session['active_organization_id'] = result['membership']['organization_id']
    return respond(result, 201)


@api.route('/organizations/<int:organization_id>/members', methods=['GET'])
@login_required
def list_members(organization_id):
    organizations = managers()['organizations']
    if not organizations.get_organization(organization_id):
        return error_response('Organization not found', 404, 'not_found')
    if not organizations.can_view(organization_id, g.user):
        return error_response('Access denied', 403, 'forbidden')
    return jsonify({'success': True, 'members': organizations.get_members(organization_id)})


@api.route('/organizations/<int:organization_id>/members', methods=['POST'])
@login_required
def add_member(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    data = json_body()
    return respond(managers()['organizations'].add_member(
        organization_id, text_field(data, 'email'), text_field(data, 'role') or 'member', g.user['id']
    ), 201)


@api.route('/organizations/<int:organization_id>/members/<int:user_id>', methods=['PUT'])
@login_required
def update_member(organization_id, user_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    return respond(managers()['organizations'].update_member_role(
        organization_id, user_id, text_field(json_body(), 'role')
    ))


@api.route('/organizations/<int:organization_id>/members/<int:user_id>', methods=['DELETE'])
@login_required
def remove_member(organization_id, user_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    return respond(managers()['organizations'].remove_member(organization_id, user_id))


def active_organization():
    """The organization remembered in the session, else the user's first one."""
    organizations = managers()['organizations']
    organization_id = session.get('active_organization_id')
    if organization_id and organizations.can_view(organization_id, g.user):
        organization = organizations.get_organization(organization_id)
        if organization:
            return organization

    mine = organizations.get_user_organizations(g.user['id'], is_admin=g.user['role'] == 'admin')
    if not mine:
        return None
    session['active_organization_id'] = mine[0]['id']
    return organizations.get_organization(mine[0]['id'])


@api.route('/organization', methods=['GET'])
@login_required
def get_active_organization():
    organization = active_organization()
    if not organization:
        return error_response('You do not belong to any organization', 404, 'not_found')
    organization['my_role'] = managers()['organizations'].get_member_role(organization['id'], g.user['id'])
    return jsonify({'success': True, 'organization': organization})


@api.route('/organization', methods=['PUT'])
@login_required
def update_active_organization():
    """Update the settings of the active organization"""
    organization = active_organization()
    if not organization:
        return error_response('You do not belong to any organization', 404, 'not_found')
    denied = manager_or_403(organization['id'])
    if denied:
        return denied
    return respond(managers()['organizations'].update_settings(
        organization['id'], json_body(), g.user['id']
    ))


@api.route('/organization/active', methods=['PUT'])
@login_required
def select_active_organization():
    organization_id = json_body().get('organization_id')
    if not isinstance(organization_id, int):
        return error_response('organization_id must be an integer', 400, 'validation')
    organizations = managers()['organizations']
    if not organizations.get_organization(organization_id):
        return error_response('Organization not found', 404, 'not_found')
    if not organizations.can_view(organization_id, g.user):
        return error_response('Access denied', 403, 'forbidden')
    session['active_organization_id'] = organization_id
    return jsonify({'success': True, 'organization': organizations.get_organization(organization_id)})


# QR codes

@api.route('/qr/generate/<int:organization_id>', methods=['POST'])
@login_required
def generate_qr(organization_id):
    """Generate a QR attendance session"""
    result = managers()['qr_codes'].generate_qr_session(organization_id, g.user, json_body())
    return respond(result, 201)


@api.route('/qr/scan', methods=['POST'])
@api.route('/qr/scan/<int:organization_id>', methods=['POST'])
@login_required
def scan_qr(organization_id=None):
    """Mark attendance from a scanned QR payload"""
    data = json_body()
    raw_payload = data.get('qrData', data.get('qr_data'))
    if not raw_payload:
        return error_response('No QR code data provided', 400, 'validation')

    result = managers()['attendance'].process_scan(
        g.user['id'],
        raw_payload,
        organization_id=organization_id,
        location=data.get('location'),
        device_info=data.get('device_info') or request.headers.get('User-Agent')
    )
    return respond(result)


@api.route('/qr', methods=['GET'])
@login_required
def list_qr_codes():
    status = request.args.get('status')
    if status and status not in QRCodeConfig.STATUSES:
        return error_response(f'Unknown status: {status}', 400, 'validation')
    qr_codes = managers()['qr_codes'].list_for_user(g.user, status=status)
    return jsonify({'success': True, 'qr_codes': qr_codes})


@api.route('/organizations/<int:organization_id>/qr-codes', methods=['GET'])
@login_required
def list_organization_qr_codes(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    status = request.args.get('status')
    if status and status not in QRCodeConfig.STATUSES:
        return error_response(f'Unknown status: {status}', 400, 'validation')
    qr_codes = managers()['qr_codes'].list_for_organization(organization_id, status=status)
    return jsonify({'success': True, 'qr_codes': qr_codes})


@api.route('/qr/<public_id>', methods=['GET'])
@login_required
def get_qr_code(public_id):
    qr_codes = managers()['qr_codes']
    organizations = managers()['organizations']
    row = qr_codes.get_qr_code_row(public_id)
    if not row:
        return error_response('QR code not found', 404, 'not_found')
    if not organizations.can_view(row['organization_id'], g.user):
        return error_response('Access denied', 403, 'forbidden')

    include_secret = organizations.can_manage(row['organization_id'], g.user)
    return jsonify({'success': True, 'qr_code': qr_codes.get_qr_code(public_id, include_secret=include_secret)})


@api.route('/qr/<public_id>/deactivate', methods=['POST'])
@login_required
def deactivate_qr_code(public_id):
    return respond(managers()['qr_codes'].deactivate(public_id, g.user))


@api.route('/qr/<public_id>/history', methods=['GET'])
@login_required
def qr_scan_history(public_id):
    return respond(managers()['qr_codes'].get_scan_history(public_id, g.user))


@api.route('/qr/pdf/<int:organization_id>', methods=['POST'])
@login_required
def printable_qr_codes(organization_id):
    """Download a printable PDF sheet of active QR codes"""
    result = managers()['qr_codes'].generate_printable_pdf(
        organization_id, g.user, json_body().get('qr_ids')
    )
    if not result['success']:
        return respond(result)
    return send_file(result['path'], mimetype='application/pdf',
                     as_attachment=True, download_name=result['filename'])


# Attendance

@api.route('/attendance/history', methods=['GET'])
@login_required
def attendance_history():
    return respond(managers()['attendance'].get_user_history(
        g.user['id'], request.args.get('start_date'), request.args.get('end_date')
    ))


@api.route('/attendance/today', methods=['GET'])
@login_required
def attendance_today():
    return jsonify({'success': True, 'records': managers()['attendance'].get_today(g.user['id'])})


@api.route('/attendance/stats', methods=['GET'])
@login_required
def attendance_stats():
    try:
        stats = managers()['attendance'].get_user_stats(g.user['id'])
        stats['recent_activity'] = managers()['attendance'].get_recent_activity(g.user['id'])
        return jsonify({'success': True, 'stats': stats})
    except Exception as e:
        logger.error(f"Attendance stats error: {str(e)}")
        return error_response('Error loading attendance statistics', 500, 'server_error')


@api.route('/organizations/<int:organization_id>/attendance', methods=['GET'])
@login_required
def organization_attendance(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    include_failed = request.args.get('include_failed', 'false').lower() == 'true'
    return respond(managers()['attendance'].get_organization_attendance(
        organization_id, request.args.get('date'), include_failed
    ))


@api.route('/attendance/<int:attendance_id>', methods=['PUT'])
@login_required
def update_attendance(attendance_id):
    """Manually correct an attendance record"""
    record = managers()['attendance'].get_attendance(attendance_id)
    if not record:
        return error_response('Attendance record not found', 404, 'not_found')
    denied = manager_or_403(record['organization_id'])
    if denied:
        return denied
    data = json_body()
    return respond(managers()['attendance'].update_attendance_status(
        attendance_id, data.get('status', ''), data.get('notes'), g.user['id']
    ))


# Analytics

@api.route('/organizations/<int:organization_id>/analytics', methods=['GET'])
@login_required
def organization_analytics(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    try:
        days = min(max(request.args.get('days', 30, type=int), 1), 365)
        attendance = managers()['attendance']
        return jsonify({
            'success': True,
            'today': attendance.get_today_attendance_summary(organization_id),
            'trends': attendance.get_attendance_trends(organization_id, days),
            'qr_statistics': attendance.get_qr_statistics(organization_id),
            'recent_activity': attendance.get_recent_attendance(organization_id, limit=20)
        })
    except Exception as e:
        logger.error(f"Organization analytics error: {str(e)}")
        return error_response('Error loading analytics', 500, 'server_error')


@api.route('/admin/dashboard', methods=['GET'])
@admin_required
def admin_dashboard():
    """System overview for administrators"""
    try:
        attendance = managers()['attendance']
        return jsonify({
            'success': True,
            'stats': attendance.get_dashboard_stats(),
            'attendance_trends': attendance.get_attendance_trends(days=7)
        })
    except Exception as e:
        logger.error(f"Admin dashboard error: {str(e)}")
        return error_response('Error loading admin dashboard', 500, 'server_error')


# Reports

@api.route('/reports/formats', methods=['GET'])
@login_required
def report_formats():
    return jsonify({'success': True, 'formats': managers()['reports'].get_available_formats()})


@api.route('/organizations/<int:organization_id>/reports', methods=['GET'])
@login_required
def download_report(organization_id):
    """Download an attendance report file"""
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    result = managers()['reports'].generate_attendance_report(
        organization_id,
        request.args.get('start_date'),
        request.args.get('end_date'),
        request.args.get('format', 'excel')
    )
    if not result['success']:
        return respond(result)
    return send_file(result['filepath'], mimetype=result['mimetype'],
                     as_attachment=True, download_name=result['filename'])


# Rewards

@api.route('/rewards', methods=['GET'])
@login_required
def rewards_summary():
    summary = managers()['rewards'].get_rewards_summary(g.user['id'])
    if summary is None:
        return error_response('Error loading rewards', 500, 'server_error')
    return jsonify({'success': True, 'rewards': summary})


@api.route('/rewards/available', methods=['GET'])
@login_required
def available_rewards():
    catalog = managers()['rewards'].get_catalog(request.args.get('category'))
    return jsonify({'success': True, 'rewards': catalog, 'points': g.user['points']})


@api.route('/rewards/claim', methods=['POST'])
@login_required
def claim_reward():
    data = json_body()
    reward_id = data.get('reward_id', data.get('rewardId'))
    if reward_id is None:
        return error_response('reward_id is required', 400, 'validation')
    return respond(managers()['rewards'].claim_reward(g.user['id'], reward_id), 201)


@api.route('/rewards/claims', methods=['GET'])
@login_required
def reward_claims():
    active_only = request.args.get('active', 'false').lower() == 'true'
    return jsonify({'success': True, 'claims': managers()['rewards'].get_claims(g.user['id'], active_only)})


# Leaves

@api.route('/leaves', methods=['GET'])
@api.route('/user/leaves', methods=['GET'])
@login_required
def list_leaves():
    status = request.args.get('status')
    if status and status not in LeaveConfig.STATUSES:
        return error_response(f'Unknown status: {status}', 400, 'validation')
    leaves = managers()['leaves']
    return jsonify({
        'success': True,
        'leaves': leaves.get_user_leaves(g.user['id'], status),
        'pending_count': leaves.get_pending_count(g.user['id'])
    })


@api.route('/leaves', methods=['POST'])
@api.route('/user/leaves', methods=['POST'])
@login_required
def submit_leave():
    """Request leave over a date range"""
    result = managers()['leaves'].submit_leave(
        g.user['id'], json_body(), organization_id=session.get('active_organization_id')
    )
    return respond(result, 201)


@api.route('/leaves/pending', methods=['GET'])
@api.route('/user/leaves/pending', methods=['GET'])
@login_required
def pending_leaves():
    return jsonify({'success': True, 'count': managers()['leaves'].get_pending_count(g.user['id'])})


@api.route('/leaves/<int:leave_id>', methods=['DELETE'])
@api.route('/user/leaves/<int:leave_id>', methods=['DELETE'])
@login_required
def cancel_leave(leave_id):
    return respond(managers()['leaves'].cancel_leave(g.user['id'], leave_id))


@api.route('/organizations/<int:organization_id>/leaves', methods=['GET'])
@login_required
def organization_leaves(organization_id):
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    status = request.args.get('status')
    if status and status not in LeaveConfig.STATUSES:
        return error_response(f'Unknown status: {status}', 400, 'validation')
    return jsonify({
        'success': True,
        'leaves': managers()['leaves'].get_organization_leaves(organization_id, status)
    })


@api.route('/leaves/<int:leave_id>/approve', methods=['POST'])
@api.route('/leaves/<int:leave_id>/reject', methods=['POST'])
@login_required
def review_leave(leave_id):
    """Approve or reject a leave request as an organization manager"""
    leaves = managers()['leaves']
    leave = leaves.get_leave(leave_id)
    if not leave:
        return error_response('Leave request not found', 404, 'not_found')
    denied = manager_or_403(leave['organization_id'])
    if denied:
        return denied

    approve = request.path.endswith('/approve')
    data = json_body()
    rejection_reason = text_field(data, 'rejection_reason') or text_field(data, 'rejectionReason')
    return respond(leaves.review_leave(leave_id, g.user['id'], approve, rejection_reason or None))


# Notifications

@api.route('/notifications', methods=['GET'])
@login_required
def list_notifications():
    notifications = managers()['notifications']
    unread_only = request.args.get('unread_only', 'false').lower() == 'true'
    limit = min(max(request.args.get('limit', 50, type=int), 1), 200)
    return jsonify({
        'success': True,
        'notifications': notifications.get_notifications(g.user['id'], unread_only, limit),
        'unread_count': notifications.get_unread_count(g.user['id'])
    })


@api.route('/notifications/<int:notification_id>/read', methods=['POST'])
@login_required
def read_notification(notification_id):
    if not managers()['notifications'].mark_notification_read(notification_id, g.user['id']):
        return error_response('Notification not found', 404, 'not_found')
    return jsonify({'success': True, 'message': 'Notification marked as read'})


@api.route('/notifications/read-all', methods=['POST'])
@login_required
def read_all_notifications():
    updated = managers()['notifications'].mark_all_read(g.user['id'])
    return jsonify({'success': True, 'updated': updated})


@api.route('/organizations/<int:organization_id>/notify', methods=['POST'])
@login_required
def notify_organization(organization_id):
    """Broadcast a notification to every member of an organization"""
    denied = manager_or_403(organization_id)
    if denied:
        return denied
    data = json_body()
    title = text_field(data, 'title')
    message = text_field(data, 'message')
    if not title or not message:
        return error_response('Title and message are required', 400, 'validation')

    sent = managers()['notifications'].notify_organization(
        organization_id, title, message, data.get('severity', 'info'), g.user['id']
    )
    return jsonify({'success': True, 'sent': sent}), 201


# Administration

@api.route('/admin/settings', methods=['GET'])
@admin_required
def get_settings():
    return jsonify({'success': True, 'settings': managers()['database'].get_all_system_settings()})


@api.route('/admin/settings', methods=['PUT'])
@admin_required
def update_settings():
    data = json_body()
    if not data:
        return error_response('No settings provided', 400, 'validation')

    database = managers()['database']
    for key, value in data.items():
        if not database.update_system_setting(key, value):
            return error_response(f'Failed to update setting: {key}', 500, 'server_error')

    logger.info(f"System settings {', '.join(data)} updated by {g.user['email']}")
    return jsonify({'success': True, 'settings': database.get_all_system_settings()})


@api.route('/admin/users', methods=['GET'])
@admin_required
def list_users():
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'
    return jsonify({'success': True, 'users': managers()['auth'].get_all_users(include_inactive)})


@api.route('/admin/users/<int:user_id>/deactivate', methods=['POST'])
@admin_required
def deactivate_user(user_id):
    if user_id == g.user['id']:
        return error_response('You cannot deactivate your own account', 400, 'validation')
    if not managers()['auth'].deactivate_user(user_id, g.user['id']):
        return error_response('User not found', 404, 'not_found')
    return jsonify({'success': True, 'message': 'User deactivated'})


@api.route('/health', methods=['GET'])
@limiter.exempt
def health():
    """Liveness check with a database round trip"""
    try:
        managers()['database'].execute_query("SELECT 1", fetch_all=False)
        return jsonify({'status': 'ok', 'database': 'ok'})
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return jsonify({'status': 'error', 'database': 'unavailable'}), 503
