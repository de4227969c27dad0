"""Inline processing of the caller's due pending rewards and referral commissions.

There is no background worker: every authenticated engine request first
sweeps whatever has come due for the caller. Each item is paid in its own
savepoint after a conditional pending -> processed transition, so concurrent
sweeps cannot pay the same item twice and one bad item does not block the rest.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import PendingReward, ReferralCommission, ReferralHistory
from bix.db.tx import best_effort
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.utils.dates import as_utc, utcnow

logger = structlog.get_logger()

BATCH_SIZE = 20
COMMISSION_XP = 25
DEFAULT_PENDING_XP = 50


@dataclass(slots=True)
class PendingSummary:
    rewards_processed: int = 0
    commissions_processed: int = 0
    amount_credited: int = 0

    @property
    def total_processed(self) -> int:
        return self.rewards_processed + self.commissions_processed


async def schedule_pending_reward(
    db: AsyncSession,
    user_id: str,
    amount: int,
    xp: int = DEFAULT_PENDING_XP,
    *,
    process_at: datetime,
    reward_type: str = "verification",
    source_id: str | None = None,
    source_type: str | None = None,
    now: datetime | None = None,
) -> PendingReward:
    pending = PendingReward(
        user_id=user_id,
        reward_type=reward_type,
        reward_amount=amount,
        xp_amount=xp,
        source_id=source_id,
        source_type=source_type,
        status="pending",
        process_at=process_at,
        created_at=now or utcnow(),
    )
    db.add(pending)
    await db.flush()
    logger.info("pending_reward_scheduled", user_id=user_id, amount=amount, process_at=process_at.isoformat())
    return pending


async def _claim(
    db: AsyncSession,
    model: type[PendingReward] | type[ReferralCommission],
    item_id: int,
    now: datetime,
) -> bool:
    """Flip pending -> processed; False if another sweep got there first."""
    result = await db.execute(
        update(model)
        .where(model.id == item_id, model.status == "pending")
        .values(status="processed", processed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _pay_reward(db: AsyncSession, item: PendingReward, now: datetime) -> bool:
    if not await _claim(db, PendingReward, item.id, now):
        return False
    await apply_reward(
        db,
        item.user_id,
        RewardAmounts(balance=item.reward_amount, earned=item.reward_amount, xp=item.xp_amount),
        AuditMeta(
            category="task",
            transaction_type=item.reward_type or "verification",
            description="Delayed reward processed",
            source_id=item.source_id,
            source_type=item.source_type or "pending_reward",
        ),
        now,
    )
    return True


async def _pay_commission(db: AsyncSession, commission: ReferralCommission, now: datetime) -> bool:
    if not await _claim(db, ReferralCommission, commission.id, now):
        return False
    await apply_reward(
        db,
        commission.referrer_id,
        RewardAmounts(balance=commission.commission_amount, earned=commission.commission_amount, xp=COMMISSION_XP),
        AuditMeta(
            category="referral",
            transaction_type="referral_commission",
            description="Referral commission from user activity",
            source_id=commission.source_reward_id,
            source_type="referral_commission",
        ),
        now,
    )
    await db.execute(
        update(ReferralHistory)
        .where(
            ReferralHistory.referrer_id == commission.referrer_id,
            ReferralHistory.referred_id == commission.referred_id,
        )
        .values(reward_amount=ReferralHistory.reward_amount + commission.commission_amount)
        .execution_options(synchronize_session=False)
    )
    return True


async def process_due_work(db: AsyncSession, user_id: str, now: datetime | None = None) -> PendingSummary:
    """Pay out the caller's due pending rewards and, as referrer, due commissions."""
    if now is None:
        now = utcnow()
    summary = PendingSummary()

    rewards = await db.execute(
        select(PendingReward)
        .where(
            PendingReward.user_id == user_id,
            PendingReward.status == "pending",
            PendingReward.process_at <= now,
        )
        .order_by(PendingReward.process_at)
        .limit(BATCH_SIZE)
    )
    for item in rewards.scalars().all():
        paid = False
        async with best_effort(db, "pending_reward_failed", pending_id=item.id, user_id=user_id):
            paid = await _pay_reward(db, item, now)
        if paid:
            summary.rewards_processed += 1
            summary.amount_credited += item.reward_amount

    commissions = await db.execute(
        select(ReferralCommission)
        .where(
            ReferralCommission.referrer_id == user_id,
            ReferralCommission.status == "pending",
            ReferralCommission.eligible_at <= now,
        )
        .order_by(ReferralCommission.eligible_at)
        .limit(BATCH_SIZE)
    )
    for commission in commissions.scalars().all():
        paid = False
        async with best_effort(db, "commission_failed", commission_id=commission.id, user_id=user_id):
            paid = await _pay_commission(db, commission, now)
        if paid:
            summary.commissions_processed += 1
            summary.amount_credited += commission.commission_amount

    if summary.total_processed:
        logger.info(
            "pending_work_processed",
            user_id=user_id,
            rewards=summary.rewards_processed,
            commissions=summary.commissions_processed,
            amount=summary.amount_credited,
        )
    return summary


def _pending_to_dict(item: PendingReward) -> dict[str, Any]:
    return {
        "id": item.id,
        "reward_type": item.reward_type,
        "reward_amount": item.reward_amount,
        "xp_amount": item.xp_amount,
        "source_id": item.source_id,
        "source_type": item.source_type,
        "status": item.status,
        "process_at": as_utc(item.process_at).isoformat(),
        "processed_at": as_utc(item.processed_at).isoformat() if item.processed_at else None,
        "created_at": as_utc(item.created_at).isoformat(),
    }


def _commission_to_dict(item: ReferralCommission) -> dict[str, Any]:
    return {
        "id": item.id,
        "referred_id": item.referred_id,
        "source_reward_id": item.source_reward_id,
        "commission_amount": item.commission_amount,
        "status": item.status,
        "eligible_at": as_utc(item.eligible_at).isoformat(),
        "created_at": as_utc(item.created_at).isoformat(),
    }


async def list_pending(db: AsyncSession, user_id: str) -> dict[str, list[dict[str, Any]]]:
    """The caller's latest pending rewards and commissions still awaiting payout."""
    rewards = await db.execute(
        select(PendingReward)
        .where(PendingReward.user_id == user_id)
        .order_by(PendingReward.created_at.desc(), PendingReward.id.desc())
        .limit(BATCH_SIZE)
        .execution_options(populate_existing=True)
    )
    commissions = await db.execute(
        select(ReferralCommission)
        .where(ReferralCommission.referrer_id == user_id, ReferralCommission.status == "pending")
        .order_by(ReferralCommission.eligible_at)
        .limit(BATCH_SIZE)
        .execution_options(populate_existing=True)
    )
    return {
        "pending": [_pending_to_dict(r) for r in rewards.scalars().all()],
        "commissions": [_commission_to_dict(c) for c in commissions.scalars().all()],
    }
