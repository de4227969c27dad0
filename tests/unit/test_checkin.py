"""Daily check-in streaks."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from bix.errors import BusinessRuleViolation
from bix.rewards.checkin import daily_checkin, next_streak, streak_multiplier
from tests.conftest import make_profile


class TestStreakRules:
    def test_first_checkin(self):
        assert next_streak(None, 0, date(2024, 1, 1)) == 1

    def test_consecutive_day_increments(self):
        assert next_streak(date(2024, 1, 1), 1, date(2024, 1, 2)) == 2

    def test_gap_resets(self):
        assert next_streak(date(2024, 1, 1), 1, date(2024, 1, 3)) == 1

    def test_month_boundary(self):
        assert next_streak(date(2024, 1, 31), 4, date(2024, 2, 1)) == 5

    @pytest.mark.parametrize(
        ("streak", "expected"),
        [(1, 1.0), (2, 1.5), (3, 2.0), (9, 5.0), (30, 5.0)],
    )
    def test_multiplier_capped(self, streak, expected):
        assert streak_multiplier(streak) == expected


class TestDailyCheckin:
    @pytest.mark.asyncio
    async def test_first_checkin_pays_base(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        result = await daily_checkin(db_session, "u1", date(2024, 1, 1))
        assert result["reward"] == 10
        assert result["streak"] == 1
        assert result["multiplier"] == 1.0
        assert result["xp"] == 60
        assert result["new_balance"] == 10

    @pytest.mark.asyncio
    async def test_consecutive_days_grow_streak(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        await daily_checkin(db_session, "u1", date(2024, 1, 1))
        result = await daily_checkin(db_session, "u1", date(2024, 1, 2))
        assert result["streak"] == 2
        assert result["multiplier"] == 1.5
        assert result["reward"] == 15
        assert result["new_balance"] == 25

    @pytest.mark.asyncio
    async def test_skipped_day_resets(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        await daily_checkin(db_session, "u1", date(2024, 1, 1))
        result = await daily_checkin(db_session, "u1", date(2024, 1, 3))
        assert result["streak"] == 1
        assert result["reward"] == 10

    @pytest.mark.asyncio
    async def test_twice_same_day_rejected(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        await daily_checkin(db_session, "u1", date(2024, 1, 1))
        with pytest.raises(BusinessRuleViolation, match="Already checked in today"):
            await daily_checkin(db_session, "u1", date(2024, 1, 1))

    @pytest.mark.asyncio
    async def test_long_streak_capped_at_5x(self, db_session: AsyncSession):
        await make_profile(db_session, "u1", last_login=date(2024, 1, 19), daily_streak=19)
        result = await daily_checkin(db_session, "u1", date(2024, 1, 20))
        assert result["streak"] == 20
        assert result["multiplier"] == 5.0
        assert result["reward"] == 50
        assert result["xp"] == 250
