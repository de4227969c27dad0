"""Behavioural throttle and abuse flags."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import AbuseFlag, Redemption
from bix.guard.abuse import MIN_MULTIPLIER, check_abuse_throttling, get_open_flags, raise_flag

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


async def _redemptions(db: AsyncSession, user_id: str, count: int, ip_hash: str = "ip_aaaaaa", ago=timedelta(minutes=1)):
    for i in range(count):
        db.add(Redemption(
            user_id=user_id,
            window_id=1000 + i,
            task_id="general",
            ip_hash=ip_hash,
            redeemed_at=NOW - ago,
        ))
    await db.flush()


class TestRaiseFlag:
    @pytest.mark.asyncio
    async def test_flag_is_open(self, db_session: AsyncSession):
        flag = await raise_flag(db_session, "u1", "suspicious_activity", "low", {"note": "x"})
        assert flag.resolved is False
        assert [f.id for f in await get_open_flags(db_session, "u1")] == [flag.id]

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, db_session: AsyncSession):
        with pytest.raises(ValueError):
            await raise_flag(db_session, "u1", "made_up", "low")

    @pytest.mark.asyncio
    async def test_unknown_severity_rejected(self, db_session: AsyncSession):
        with pytest.raises(ValueError):
            await raise_flag(db_session, "u1", "suspicious_activity", "extreme")


class TestThrottle:
    @pytest.mark.asyncio
    async def test_clean_user_full_multiplier(self, db_session: AsyncSession):
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.allowed is True
        assert decision.multiplier == 1.0

    @pytest.mark.parametrize("severity", ["high", "critical"])
    @pytest.mark.asyncio
    async def test_blocking_flag_denies(self, db_session: AsyncSession, severity):
        await raise_flag(db_session, "u1", "referral_same_ip", severity)
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.allowed is False
        assert decision.multiplier == 0.0
        assert decision.reason == "Account flagged for review"

    @pytest.mark.asyncio
    async def test_resolved_flag_no_longer_blocks(self, db_session: AsyncSession):
        flag = await raise_flag(db_session, "u1", "referral_same_ip", "high")
        flag.resolved = True
        await db_session.flush()
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.allowed is True
        assert decision.multiplier == 1.0

    @pytest.mark.asyncio
    async def test_velocity_halves(self, db_session: AsyncSession):
        await _redemptions(db_session, "u1", 5)
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.multiplier == 0.5

    @pytest.mark.asyncio
    async def test_old_redemptions_do_not_count(self, db_session: AsyncSession):
        await _redemptions(db_session, "u1", 5, ago=timedelta(minutes=30))
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.multiplier == 1.0

    @pytest.mark.asyncio
    async def test_open_low_flags_dampen(self, db_session: AsyncSession):
        await raise_flag(db_session, "u1", "referral_ip_match", "low")
        decision = await check_abuse_throttling(db_session, "u1", "ip_aaaaaa", NOW)
        assert decision.multiplier == 0.75

    @pytest.mark.asyncio
    async def test_shared_ip_cluster_flags_and_quarters(self, db_session: AsyncSession):
        for user in ("a", "b", "c", "d"):
            await _redemptions(db_session, user, 1, ip_hash="ip_shared")
        decision = await check_abuse_throttling(db_session, "u1", "ip_shared", NOW)
        assert decision.allowed is True
        assert decision.multiplier == 0.25

        flags = (await db_session.execute(select(AbuseFlag).where(AbuseFlag.user_id == "u1"))).scalars().all()
        assert [(f.flag_type, f.severity) for f in flags] == [("multi_account_ip", "medium")]
        assert flags[0].details["account_count"] == 4

    @pytest.mark.asyncio
    async def test_three_users_on_ip_is_fine(self, db_session: AsyncSession):
        for user in ("a", "b", "c"):
            await _redemptions(db_session, user, 1, ip_hash="ip_shared")
        decision = await check_abuse_throttling(db_session, "u1", "ip_shared", NOW)
        assert decision.multiplier == 1.0

    @pytest.mark.asyncio
    async def test_multiplier_floor(self, db_session: AsyncSession):
        await raise_flag(db_session, "u1", "referral_ip_match", "low")
        await _redemptions(db_session, "u1", 5, ip_hash="ip_shared")
        for user in ("a", "b", "c"):
            await _redemptions(db_session, user, 1, ip_hash="ip_shared")
        decision = await check_abuse_throttling(db_session, "u1", "ip_shared", NOW)
        assert decision.multiplier == MIN_MULTIPLIER
