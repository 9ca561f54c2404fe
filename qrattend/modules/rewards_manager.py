"""
Rewards Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module turns attendance into points. Each first successful attendance
of a day earns tokens (base + on-time bonus, scaled by the current streak),
weekly bonuses and one-off achievements. Points are spent on catalog items.

Features:
- Daily reward, level and achievement calculations
- Attendance streak tracking
- Rewards summary with progress towards the next catalog item
- Atomic reward claims with 30 day expiry
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Any, Iterable, Optional
import logging
import math

from config import RewardsConfig

# Statuses that count as having attended a day
ATTENDED_STATUSES = ('present', 'late')


def calculate_daily_reward(on_time: bool, current_streak: int) -> int:
    """
    Tokens earned for one day of attendance.

    The largest streak multiplier whose threshold is met is applied to the
    base reward (plus the on-time bonus) and the result is floored.
    """
    reward = RewardsConfig.BASE_TOKENS
    if on_time:
        reward += RewardsConfig.ON_TIME_BONUS

    for threshold in sorted(RewardsConfig.STREAK_MULTIPLIERS, reverse=True):
        if current_streak >= threshold:
            reward *= RewardsConfig.STREAK_MULTIPLIERS[threshold]
            break

    return math.floor(reward)


def calculate_level(experience: int) -> Dict[str, Any]:
    """
    Level reached for an amount of experience.

    Returns:
        Dict[str, Any]: ``level``, ``title`` and, below the top level,
        ``next_level_at`` and ``experience_to_next``
    """
    current = {'level': 1, 'title': RewardsConfig.LEVELS[1]['title']}
    for level, data in sorted(RewardsConfig.LEVELS.items(), key=lambda item: item[1]['required'], reverse=True):
        if experience >= data['required']:
            current = {'level': level, 'title': data['title']}
            break

    next_level = RewardsConfig.LEVELS.get(current['level'] + 1)
    if next_level:
        current['next_level_at'] = next_level['required']
        current['experience_to_next'] = next_level['required'] - experience
    return current


def check_achievements(stats: Dict[str, Any]) -> List[str]:
    """
    Achievement ids earned by a set of attendance statistics.

    Args:
        stats (Dict[str, Any]): ``total_days``, ``current_streak`` and optionally
            ``quarter_rate`` / ``year_rate`` (percentages)

    Returns:
        List[str]: Achievement ids whose condition holds
    """
    earned = []
    if stats.get('total_days', 0) >= 1:
        earned.append('FIRST_DAY')
    if stats.get('current_streak', 0) >= 7:
        earned.append('WEEK_STREAK')
    if stats.get('current_streak', 0) >= 30:
        earned.append('MONTH_STREAK')
    if stats.get('quarter_rate', 0) >= 90:
        earned.append('PERFECT_QUARTER')
    if stats.get('year_rate', 0) >= 85:
        earned.append('YEARLY_DEDICATION')
    return earned


def calculate_streaks(dates: Iterable, today: date = None) -> Dict[str, int]:
    """
    Current and longest runs of consecutive attendance days.

    Args:
        dates: Attendance dates (``date`` objects or ISO strings), any order,
            duplicates allowed
        today (date): Reference day, defaults to today

    Returns:
        Dict[str, int]: ``current_streak`` (0 when the last attendance is older
        than yesterday) and ``longest_streak``
    """
    today = today or date.today()
    days = sorted({
        d if isinstance(d, date) else date.fromisoformat(str(d)[:10])
        for d in dates
    })
    if not days:
        return {'current_streak': 0, 'longest_streak': 0}

    longest = run = 1
    for previous, current in zip(days, days[1:]):
        if current - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    current_streak = run if (today - days[-1]).days <= 1 else 0
    return {'current_streak': current_streak, 'longest_streak': longest}


def weekday_count(start: date, end: date) -> int:
    """Number of Monday-Friday days between two dates, inclusive."""
    if end < start:
        return 0
    return sum(1 for offset in range((end - start).days + 1)
               if (start + timedelta(days=offset)).weekday() < 5)


class RewardsManager:
    """
    Points, streaks, achievements and reward claims.
    """

    def __init__(self, database_manager, notification_system=None):
        """
        Initialize the rewards manager.

        Args:
            database_manager: Database manager instance
            notification_system: Optional NotificationSystem for unlock notices
        """
        self.db = database_manager
        self.notifications = notification_system
        self.logger = logging.getLogger(__name__)
        self.catalog = {item['id']: item for item in RewardsConfig.CATALOG}

        self.logger.info("Rewards manager initialized")

    def award_attendance(self, cursor, user_id: int, status: str,
                         today: date = None) -> Dict[str, Any]:
        """
        Award points for a successful attendance inside an open transaction.

        Points are only granted for the first successful attendance of the day;
        later scans that day return zero points.

        Args:
            cursor: Cursor of the transaction that inserted the attendance row
            user_id (int): User ID
            status (str): ``present`` or ``late``
            today (date): Attendance day, defaults to today

        Returns:
            Dict[str, Any]: ``points``, ``streak`` and unlocked ``achievements``
        """
        today = today or date.today()

        cursor.execute(f"""
            SELECT DISTINCT scan_date FROM attendance
            WHERE user_id = ? AND status IN ({','.join('?' for _ in ATTENDED_STATUSES)})
        """, (user_id,) + ATTENDED_STATUSES)
        dates = [row[0] for row in cursor.fetchall()]

        cursor.execute(f"""
            SELECT COUNT(*) FROM attendance
            WHERE user_id = ? AND scan_date = ?
              AND status IN ({','.join('?' for _ in ATTENDED_STATUSES)})
        """, (user_id, today.isoformat()) + ATTENDED_STATUSES)
        if cursor.fetchone()[0] > 1:
            streaks = calculate_streaks(dates, today)
            return {'points': 0, 'streak': streaks['current_streak'], 'achievements': []}

        streaks = calculate_streaks(dates, today)
        points = calculate_daily_reward(status == 'present', streaks['current_streak'])

        # Weekly bonus once the fourth and fifth weekday of the week are attended
        bonus = 0
        if today.weekday() < 5:
            week_start = today - timedelta(days=today.weekday())
            attended_this_week = sum(
                1 for d in {date.fromisoformat(str(d)[:10]) for d in dates}
                if week_start <= d <= today and d.weekday() < 5
            )
            if attended_this_week == 4:
                bonus = RewardsConfig.WEEKLY_REWARDS['four_day_bonus']
            elif attended_this_week == 5:
                bonus = RewardsConfig.WEEKLY_REWARDS['perfect_attendance']

        stats = {
            'total_days': len(set(dates)),
            'current_streak': streaks['current_streak'],
        }
        stats.update(self._attendance_rates(dates, today))

        unlocked = []
        for achievement_id in check_achievements(stats):
            achievement = RewardsConfig.ACHIEVEMENTS[achievement_id]
            cursor.execute("""
                INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, reward)
                VALUES (?, ?, ?)
            """, (user_id, achievement_id, achievement['reward']))
            if cursor.rowcount == 1:
                bonus += achievement['reward']
                unlocked.append({'id': achievement_id, **achievement})

        total = points + bonus
        cursor.execute("""
            UPDATE users
            SET points = points + ?, experience = experience + ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (total, total * RewardsConfig.EXPERIENCE_PER_TOKEN, user_id))

        if unlocked:
            self.logger.info(f"User {user_id} unlocked {', '.join(a['id'] for a in unlocked)}")

        return {
            'points': total,
            'daily_points': points,
            'bonus_points': bonus,
            'streak': streaks['current_streak'],
            'achievements': unlocked
        }

    def get_rewards_summary(self, user_id: int) -> Optional[Dict[str, Any]]:
        """
        Points, level, streaks, claims and progress for a user.

        Args:
            user_id (int): User ID

        Returns:
            Optional[Dict[str, Any]]: Summary, or None for an unknown user
        """
        user = self.db.execute_query(
            "SELECT id, points, experience FROM users WHERE id = ?", (user_id,), fetch_all=False
        )
        if not user:
            return None

        dates = [row['scan_date'] for row in self.db.execute_query(f"""
            SELECT DISTINCT scan_date FROM attendance
            WHERE user_id = ? AND status IN ({','.join('?' for _ in ATTENDED_STATUSES)})
        """, (user_id,) + ATTENDED_STATUSES)]

        today = date.today()
        streaks = calculate_streaks(dates, today)
        points = user['points'] or 0

        week_start = today - timedelta(days=today.weekday())
        parsed = {date.fromisoformat(d) for d in dates}
        week_days = sum(1 for d in parsed if week_start <= d <= today and d.weekday() < 5)
        month_start = today.replace(day=1)
        month_days = sum(1 for d in parsed if month_start <= d <= today)

        achievements = self.db.execute_query(
            "SELECT achievement_id, reward, unlocked_at FROM user_achievements WHERE user_id = ? ORDER BY unlocked_at",
            (user_id,)
        )
        for achievement in achievements:
            config = RewardsConfig.ACHIEVEMENTS.get(achievement['achievement_id'], {})
            achievement['title'] = config.get('title')
            achievement['description'] = config.get('description')

        return {
            'points': points,
            'experience': user['experience'] or 0,
            'level': calculate_level(user['experience'] or 0),
            'current_streak': streaks['current_streak'],
            'longest_streak': streaks['longest_streak'],
            'total_days': len(parsed),
            'rewards': self.get_claims(user_id, active_only=True),
            'achievements': achievements,
            'next_reward': self.calculate_next_reward(points),
            'weekly_progress': {
                'days_attended': week_days,
                'target': 5,
                'four_day_bonus': RewardsConfig.WEEKLY_REWARDS['four_day_bonus'],
                'perfect_bonus': RewardsConfig.WEEKLY_REWARDS['perfect_attendance']
            },
            'monthly_progress': {
                'days_attended': month_days,
                'working_days': weekday_count(month_start, today),
                'bonuses': RewardsConfig.MONTHLY_REWARDS
            }
        }

    def calculate_next_reward(self, points: int) -> Optional[Dict[str, Any]]:
        """Cheapest catalog item the user cannot afford yet."""
        for reward in sorted(self.catalog.values(), key=lambda item: item['points']):
            if reward['points'] > points:
                return {'reward': reward, 'points_needed': reward['points'] - points}
        return None

    def get_catalog(self, category: str = None) -> List[Dict[str, Any]]:
        items = list(self.catalog.values())
        if category:
            items = [item for item in items if item['category'] == category]
        return items

    def claim_reward(self, user_id: int, reward_id) -> Dict[str, Any]:
        """
        Spend points on a catalog reward.

        Args:
            user_id (int): User ID
            reward_id: Catalog item id

        Returns:
            Dict[str, Any]: Result with the claim and remaining points
        """
        try:
            reward = self.catalog.get(int(reward_id))
        except (TypeError, ValueError):
            reward = None
        if not reward:
            return {'success': False, 'error': 'Reward not found', 'error_type': 'not_found'}

        try:
            claimed_at = datetime.now()
            expires_at = claimed_at + timedelta(days=RewardsConfig.CLAIM_EXPIRY_DAYS)

            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "UPDATE users SET points = points - ?, updated_at = CURRENT_TIMESTAMP "
                    "WHERE id = ? AND points >= ?",
                    (reward['points'], user_id, reward['points'])
                )
                if cursor.rowcount == 0:
                    cursor.execute("SELECT points FROM users WHERE id = ?", (user_id,))
                    row = cursor.fetchone()
                    if not row:
                        return {'success': False, 'error': 'User not found', 'error_type': 'not_found'}
                    return {
                        'success': False,
                        'error': 'Insufficient points',
                        'error_type': 'insufficient_points',
                        'points': row['points'],
                        'points_needed': reward['points'] - row['points']
                    }

                cursor.execute("""
                    INSERT INTO reward_claims (user_id, reward_id, reward_name, category,
                                               points_spent, status, claimed_at, expires_at)
                    VALUES (?, ?, ?, ?, ?, 'active', ?, ?)
                """, (user_id, reward['id'], reward['name'], reward['category'], reward['points'],
                      claimed_at.isoformat(timespec='seconds'), expires_at.isoformat(timespec='seconds')))
                claim_id = cursor.lastrowid

                cursor.execute("SELECT points FROM users WHERE id = ?", (user_id,))
                remaining = cursor.fetchone()['points']

            self.logger.info(f"User {user_id} claimed reward {reward['id']} for {reward['points']} points")

            if self.notifications:
                self.notifications.send_system_alert(
                    'Reward claimed',
                    f"You claimed {reward['name']}. It expires on {expires_at:%Y-%m-%d}.",
                    user_id=user_id
                )

            return {
                'success': True,
                'message': 'Reward claimed successfully',
                'claim': {
                    'id': claim_id,
                    'reward_id': reward['id'],
                    'name': reward['name'],
                    'category': reward['category'],
                    'points_spent': reward['points'],
                    'claimed_at': claimed_at.isoformat(timespec='seconds'),
                    'expires_at': expires_at.isoformat(timespec='seconds'),
                    'status': 'active'
                },
                'points': remaining
            }

        except Exception as e:
            self.logger.error(f"Reward claim failed for user {user_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to claim reward', 'error_type': 'server_error'}

    def get_claims(self, user_id: int, active_only: bool = False) -> List[Dict[str, Any]]:
        """
        Claims made by a user, newest first. Claims past their expiry are
        reported with status ``expired``.
        """
        claims = self.db.execute_query("""
            SELECT id, reward_id, reward_name as name, category, points_spent,
                   status, claimed_at, expires_at
            FROM reward_claims WHERE user_id = ?
            ORDER BY claimed_at DESC, id DESC
        """, (user_id,))

        now = datetime.now().isoformat(timespec='seconds')
        for claim in claims:
            if claim['status'] == 'active' and claim['expires_at'] and claim['expires_at'] < now:
                claim['status'] = 'expired'

        if active_only:
            claims = [claim for claim in claims if claim['status'] == 'active']
        return claims

    def _attendance_rates(self, dates: List[str], today: date) -> Dict[str, float]:
        parsed = {date.fromisoformat(str(d)[:10]) for d in dates}
        rates = {}
        for key, days in (('quarter_rate', 90), ('year_rate', 365)):
            start = today - timedelta(days=days - 1)
            working = weekday_count(start, today)
            attended = sum(1 for d in parsed if start <= d <= today and d.weekday() < 5)
            rates[key] = round(attended / working * 100, 1) if working else 0.0
        return rates
