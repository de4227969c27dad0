"""Daily platform metric rollups."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import PlatformMetric
from bix.ledger.metrics import mark_active_user, track_metric


async def _metric(db: AsyncSession, day: date) -> PlatformMetric:
    result = await db.execute(
        select(PlatformMetric).where(PlatformMetric.metric_date == day).execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestTrackMetric:
    @pytest.mark.asyncio
    async def test_category_bucket_and_totals(self, db_session: AsyncSession):
        now = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        await track_metric(db_session, "code", 100, now)
        await track_metric(db_session, "quiz", 38, now)
        await track_metric(db_session, "daily", 10, now)

        metric = await _metric(db_session, date(2024, 3, 1))
        assert metric.code_rewards_issued == 100
        assert metric.quiz_rewards_issued == 38
        assert metric.task_rewards_issued == 10  # daily check-ins share the task bucket
        assert metric.total_daily_rewards == 148
        assert metric.total_rewards_issued == 148

    @pytest.mark.asyncio
    async def test_running_total_carries_over(self, db_session: AsyncSession):
        await track_metric(db_session, "task", 100, datetime(2024, 3, 1, 9, tzinfo=timezone.utc))
        await track_metric(db_session, "referral", 50, datetime(2024, 3, 2, 9, tzinfo=timezone.utc))

        day2 = await _metric(db_session, date(2024, 3, 2))
        assert day2.total_daily_rewards == 50
        assert day2.total_rewards_issued == 150
        assert day2.referral_rewards_issued == 50

    @pytest.mark.asyncio
    async def test_unknown_category_falls_back_to_task(self, db_session: AsyncSession):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        await track_metric(db_session, "mystery", 7, now)
        metric = await _metric(db_session, date(2024, 3, 1))
        assert metric.task_rewards_issued == 7


class TestActiveUsers:
    @pytest.mark.asyncio
    async def test_counts_active_users(self, db_session: AsyncSession):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        await mark_active_user(db_session, now)
        await mark_active_user(db_session, now)
        metric = await _metric(db_session, date(2024, 3, 1))
        assert metric.active_users_today == 2
