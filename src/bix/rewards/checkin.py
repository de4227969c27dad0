"""Daily check-in with a consecutive-day streak multiplier."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bix.errors import BusinessRuleViolation
from bix.ledger.metrics import mark_active_user
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.profiles.service import require_profile
from bix.utils.dates import start_of_day, utc_today
from bix.utils.numbers import round_half_up

BASE_REWARD = 10
MAX_MULTIPLIER = 5.0
STREAK_STEP = 0.5
BASE_XP = 50
XP_PER_STREAK_DAY = 10


def next_streak(last_login: date | None, current_streak: int, today: date) -> int:
    """Continue the streak only when the previous check-in was yesterday."""
    if last_login is not None and last_login == today - timedelta(days=1):
        return (current_streak or 0) + 1
    return 1


def streak_multiplier(streak: int) -> float:
    return min(1 + (streak - 1) * STREAK_STEP, MAX_MULTIPLIER)


async def daily_checkin(db: AsyncSession, user_id: str, today: date | None = None) -> dict[str, Any]:
    if today is None:
        today = utc_today()

    profile = await require_profile(db, user_id)
    if profile.last_login == today:
        raise BusinessRuleViolation("Already checked in today")

    streak = next_streak(profile.last_login, profile.daily_streak, today)
    multiplier = streak_multiplier(streak)
    reward = round_half_up(BASE_REWARD * multiplier)
    xp = BASE_XP + streak * XP_PER_STREAK_DAY

    profile.last_login = today
    profile.daily_streak = streak
    await db.flush()

    now = start_of_day(today) if today != utc_today() else None
    credited = await apply_reward(
        db,
        user_id,
        RewardAmounts(balance=reward, earned=reward, xp=xp),
        AuditMeta(
            category="daily",
            transaction_type="daily",
            description=f"Daily check-in ({streak}-day streak, {multiplier:g}x multiplier)",
            source_id=today.isoformat(),
            source_type="daily_checkin",
        ),
        now,
    )
    await mark_active_user(db, now)

    return {
        "reward": reward,
        "streak": streak,
        "multiplier": multiplier,
        "xp": xp,
        "new_balance": credited.balance,
        "new_level": credited.level,
        "leveled_up": credited.leveled_up,
        "message": f"+{reward} BIX! {streak}-day streak ({multiplier:g}x)",
    }
