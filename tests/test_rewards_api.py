from datetime import date, timedelta


def attend(client, generate_qr, organization):
    qr_code = generate_qr(organization['id'])
    response = client.post('/api/qr/scan', json={'qrData': qr_code['payload']})
    assert response.status_code == 200


def test_rewards_summary_after_first_attendance(organization, make_student, generate_qr):
    client, _ = make_student()
    attend(client, generate_qr, organization)

    rewards = client.get('/api/rewards').get_json()['rewards']

    assert rewards['points'] == 35
    assert rewards['experience'] == 350
    assert rewards['level']['title'] == 'Newcomer'
    assert rewards['current_streak'] == 1
    assert rewards['total_days'] == 1
    assert [a['achievement_id'] for a in rewards['achievements']] == ['FIRST_DAY']
    assert rewards['next_reward']['points_needed'] == 65
    assert rewards['weekly_progress']['target'] == 5
    assert rewards['monthly_progress']['days_attended'] == 1
    assert rewards['monthly_progress']['bonuses']['perfect_attendance'] == 200


def test_catalog(organization, make_student):
    client, _ = make_student()

    everything = client.get('/api/rewards/available').get_json()['rewards']
    vouchers = client.get('/api/rewards/available', query_string={'category': 'voucher'}).get_json()['rewards']

    assert len(everything) == 8
    assert {r['category'] for r in vouchers} == {'voucher'}


def test_claim_requires_enough_points(organization, make_student, generate_qr):
    client, _ = make_student()
    attend(client, generate_qr, organization)

    response = client.post('/api/rewards/claim', json={'reward_id': 4})

    assert response.status_code == 400
    body = response.get_json()
    assert body['error_type'] == 'insufficient_points'
    assert body['points'] == 35
    assert body['points_needed'] == 65


def test_claim_deducts_points(organization, make_student, managers):
    client, user = make_student()
    managers['database'].execute_update("UPDATE users SET points = 150 WHERE id = ?", (user['id'],))

    response = client.post('/api/rewards/claim', json={'reward_id': 4})

    assert response.status_code == 201
    body = response.get_json()
    assert body['points'] == 50
    assert body['claim']['name'] == 'Early Leave'
    assert body['claim']['expires_at'] > body['claim']['claimed_at']

    claims = client.get('/api/rewards/claims').get_json()['claims']
    assert [c['reward_id'] for c in claims] == [4]
    assert client.get('/api/rewards').get_json()['rewards']['rewards'][0]['reward_id'] == 4

    # Claim notice lands in the user's notifications
    titles = [n['title'] for n in client.get('/api/notifications').get_json()['notifications']]
    assert 'Reward claimed' in titles


def test_claim_accepts_camel_case_reward_id(organization, make_student, managers):
    client, user = make_student()
    managers['database'].execute_update("UPDATE users SET points = 150 WHERE id = ?", (user['id'],))

    response = client.post('/api/rewards/claim', json={'rewardId': 4})

    assert response.status_code == 201
    assert response.get_json()['claim']['reward_id'] == 4


def test_claim_unknown_reward(organization, make_student):
    client, _ = make_student()

    assert client.post('/api/rewards/claim', json={'reward_id': 99}).status_code == 404
    assert client.post('/api/rewards/claim', json={}).status_code == 400


def record_day(managers, user_id, organization_id, day, status='present'):
    with managers['database'].transaction() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO attendance (user_id, organization_id, scan_date, scan_time, scanned_at, status)
            VALUES (?, ?, ?, '09:00:00', ?, ?)
        """, (user_id, organization_id, day.isoformat(), f'{day.isoformat()}T09:00:00', status))
        return managers['rewards'].award_attendance(cursor, user_id, status, today=day)


def test_streak_multiplier_and_weekly_bonuses(organization, make_student, managers):
    _, user = make_student()
    monday = date(2026, 10, 12)

    awards = [record_day(managers, user['id'], organization['id'], monday + timedelta(days=offset))
              for offset in range(5)]

    assert [a['streak'] for a in awards] == [1, 2, 3, 4, 5]
    # 15 base, x1.2 from a three day streak, x1.5 from five
    assert [a['daily_points'] for a in awards] == [15, 15, 18, 18, 22]
    # First day achievement, then the four day and perfect week bonuses
    assert [a['bonus_points'] for a in awards] == [20, 0, 0, 20, 50]
    assert [a['id'] for a in awards[0]['achievements']] == ['FIRST_DAY']

    # The weekend breaks the streak and a late arrival loses the on-time bonus
    next_monday = record_day(managers, user['id'], organization['id'], monday + timedelta(days=7), 'late')
    assert next_monday['streak'] == 1
    assert next_monday['points'] == 10

    points = managers['database'].execute_query(
        "SELECT points FROM users WHERE id = ?", (user['id'],), fetch_all=False
    )['points']
    assert points == 35 + 15 + 18 + 38 + 72 + 10


def test_four_day_bonus_with_earlier_history(organization, make_student, managers):
    _, user = make_student()
    monday = date(2026, 10, 12)
    managers['database'].execute_many("""
        INSERT INTO attendance (user_id, organization_id, scan_date, scan_time, scanned_at, status)
        VALUES (?, ?, ?, '09:00:00', ?, 'present')
    """, [(user['id'], organization['id'], day.isoformat(), f'{day.isoformat()}T09:00:00')
          for day in (monday + timedelta(days=offset) for offset in range(3))])

    award = record_day(managers, user['id'], organization['id'], monday + timedelta(days=3))

    assert award['daily_points'] == 18
    # Four day bonus plus the first day achievement
    assert award['bonus_points'] == 40
    assert award['points'] == 58
