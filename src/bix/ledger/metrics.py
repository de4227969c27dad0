"""Daily platform metric rollups.

Metrics are observational: every write runs in a savepoint and failures are
logged and dropped, never surfaced to the reward flow.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import PlatformMetric
from bix.db.tx import best_effort
from bix.utils.dates import utc_today

logger = logging.getLogger(__name__)

CATEGORY_COLUMNS: dict[str, str] = {
    "task": "task_rewards_issued",
    "daily": "task_rewards_issued",
    "referral": "referral_rewards_issued",
    "quiz": "quiz_rewards_issued",
    "game": "game_rewards_issued",
    "code": "code_rewards_issued",
}


async def _get_or_create_day(db: AsyncSession, day: date) -> PlatformMetric:
    result = await db.execute(select(PlatformMetric).where(PlatformMetric.metric_date == day))
    metric = result.scalar_one_or_none()
    if metric is not None:
        return metric

    # Carry the all-time total over from the most recent earlier day.
    previous = await db.execute(
        select(PlatformMetric.total_rewards_issued)
        .where(PlatformMetric.metric_date < day)
        .order_by(PlatformMetric.metric_date.desc())
        .limit(1)
    )
    carried = previous.scalar_one_or_none() or 0

    metric = PlatformMetric(
        metric_date=day,
        total_rewards_issued=carried,
        total_daily_rewards=0,
        task_rewards_issued=0,
        referral_rewards_issued=0,
        quiz_rewards_issued=0,
        game_rewards_issued=0,
        code_rewards_issued=0,
        active_users_today=0,
    )
    db.add(metric)
    await db.flush()
    return metric


async def track_metric(db: AsyncSession, category: str, amount: int, now: datetime | None = None) -> None:
    """Add a reward to today's rollup under its category bucket."""
    column = CATEGORY_COLUMNS.get(category, "task_rewards_issued")
    async with best_effort(db, "metric_tracking_failed", category=category, amount=amount):
        metric = await _get_or_create_day(db, utc_today(now))
        metric.total_rewards_issued += amount
        metric.total_daily_rewards += amount
        setattr(metric, column, getattr(metric, column) + amount)
        await db.flush()


async def mark_active_user(db: AsyncSession, now: datetime | None = None) -> None:
    """Count a daily check-in towards today's active users."""
    async with best_effort(db, "active_user_tracking_failed"):
        metric = await _get_or_create_day(db, utc_today(now))
        metric.active_users_today += 1
        await db.flush()
    logger.debug("Active user counted for %s", utc_today(now))
