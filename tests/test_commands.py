from app import create_app
from config import Config
from qrattend.modules.organization_manager import DEMO_ORGANIZATIONS

from conftest import ADMIN_EMAIL


def test_init_db_is_repeatable(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['init-db'])

    assert result.exit_code == 0
    assert 'Database initialized' in result.output


def test_seed_organizations(app, managers):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['seed-organizations', '--owner-email', ADMIN_EMAIL])
    assert result.exit_code == 0
    assert f'{len(DEMO_ORGANIZATIONS)} organizations created' in result.output

    # Existing codes are skipped
    result = runner.invoke(args=['seed-organizations'])
    assert '0 organizations created' in result.output

    admin = managers['auth'].get_user_by_email(ADMIN_EMAIL)
    organizations = managers['organizations'].get_user_organizations(admin['id'])
    assert {o['code'] for o in organizations} == {o['code'] for o in DEMO_ORGANIZATIONS}
    assert {o['member_role'] for o in organizations} == {'owner'}


def test_output_folders_follow_overrides(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, 'REPORTS_FOLDER', tmp_path / 'default-exports')
    monkeypatch.setattr(Config, 'LOG_FILE', tmp_path / 'logs' / 'attendance.log')

    app = create_app('testing', {
        'DATABASE_PATH': str(tmp_path / 'folders.db'),
        'REPORTS_FOLDER': str(tmp_path / 'exports'),
    })

    assert (tmp_path / 'exports').is_dir()
    assert not (tmp_path / 'default-exports').exists()
    assert not (tmp_path / 'logs').exists()

    # Keys keep their insertion order
    response = app.test_client().get('/api/health')
    assert list(response.get_json()) == ['status', 'database']
    app.extensions['qrattend']['database'].close_all_connections()
