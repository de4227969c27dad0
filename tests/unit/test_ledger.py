"""Ledger credits, losses and their audit trail."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import RewardLog, Transaction
from bix.errors import NotFoundError
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward, credit, record_loss
from bix.profiles.levels import XP_PER_LEVEL
from tests.conftest import make_profile

AUDIT = AuditMeta(
    category="task",
    transaction_type="task",
    description="Completed: test",
    source_id="task_social_1",
    source_type="social",
)


class TestCredit:
    @pytest.mark.asyncio
    async def test_credit_moves_all_counters(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        result = await credit(db_session, "u1", balance_change=50, earned_change=50, xp_change=25)
        assert result is not None
        assert result.balance == 50
        assert result.profile.total_earned == 50
        assert result.profile.xp == 25
        assert result.level == 1
        assert result.leveled_up is False

    @pytest.mark.asyncio
    async def test_level_up_detected(self, db_session: AsyncSession):
        await make_profile(db_session, "u1", xp=XP_PER_LEVEL - 10)
        result = await credit(db_session, "u1", xp_change=10)
        assert result is not None
        assert result.previous_level == 1
        assert result.level == 2
        assert result.leveled_up is True

    @pytest.mark.asyncio
    async def test_missing_profile_returns_none(self, db_session: AsyncSession):
        assert await credit(db_session, "ghost", balance_change=5) is None

    @pytest.mark.asyncio
    async def test_earned_and_xp_never_decrease(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        with pytest.raises(ValueError):
            await credit(db_session, "u1", earned_change=-1)
        with pytest.raises(ValueError):
            await credit(db_session, "u1", xp_change=-1)


class TestApplyReward:
    @pytest.mark.asyncio
    async def test_writes_transaction_and_reward_log(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        await apply_reward(db_session, "u1", RewardAmounts(balance=50, earned=50, xp=25), AUDIT)
        await db_session.commit()

        tx = (await db_session.execute(select(Transaction).where(Transaction.user_id == "u1"))).scalar_one()
        assert tx.amount == 50
        assert tx.type == "task"
        assert tx.description == "Completed: test"

        log = (await db_session.execute(select(RewardLog).where(RewardLog.user_id == "u1"))).scalar_one()
        assert log.reward_amount == 50
        assert log.source_id == "task_social_1"
        assert log.source_type == "social"

    @pytest.mark.asyncio
    async def test_long_description_truncated(self, db_session: AsyncSession):
        await make_profile(db_session, "u1")
        audit = AuditMeta(category="task", transaction_type="task", description="x" * 400)
        await apply_reward(db_session, "u1", RewardAmounts(balance=1, earned=1, xp=1), audit)
        tx = (await db_session.execute(select(Transaction))).scalar_one()
        assert len(tx.description) == 256

    @pytest.mark.asyncio
    async def test_missing_profile_raises(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await apply_reward(db_session, "ghost", RewardAmounts(balance=1, earned=1, xp=1), AUDIT)


class TestRecordLoss:
    @pytest.mark.asyncio
    async def test_loss_touches_balance_only(self, db_session: AsyncSession):
        await make_profile(db_session, "u1", balance=100, total_earned=100, xp=40)
        audit = AuditMeta(category="game", transaction_type="game", description="coinflip LOSS (0x)")
        profile = await record_loss(db_session, "u1", 30, audit)

        assert profile.balance == 70
        assert profile.total_earned == 100
        assert profile.xp == 40
        tx = (await db_session.execute(select(Transaction))).scalar_one()
        assert tx.amount == -30

    @pytest.mark.asyncio
    async def test_negative_loss_rejected(self, db_session: AsyncSession):
        await make_profile(db_session, "u1", balance=100)
        audit = AuditMeta(category="game", transaction_type="game", description="bad")
        with pytest.raises(ValueError):
            await record_loss(db_session, "u1", -5, audit)
