"""Reward ledger: the only sanctioned path for balance, XP and level changes.

Reward sources call apply_reward(), which pairs every credit with a
Transaction, a RewardLog entry and a metric rollup so no audit step can be
skipped. Pure losses (a lost wager) go through record_loss(), which moves the
balance only and never touches total_earned or XP.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import RewardLog, Transaction, UserProfile
from bix.errors import NotFoundError
from bix.ledger.metrics import track_metric
from bix.profiles.levels import compute_level

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class RewardAmounts:
    balance: int
    earned: int
    xp: int


@dataclass(frozen=True, slots=True)
class AuditMeta:
    """What the reward was for, as recorded in the audit tables."""

    category: str  # metric bucket: task, daily, referral, quiz, game, code
    transaction_type: str
    description: str
    source_id: str | None = None
    source_type: str | None = None
    ip_hash: str | None = None


@dataclass(frozen=True, slots=True)
class CreditResult:
    profile: UserProfile
    previous_level: int
    leveled_up: bool

    @property
    def balance(self) -> int:
        return self.profile.balance

    @property
    def level(self) -> int:
        return self.profile.level


async def _locked_profile(db: AsyncSession, user_id: str) -> UserProfile | None:
    result = await db.execute(
        select(UserProfile)
        .where(UserProfile.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def credit(
    db: AsyncSession,
    user_id: str,
    *,
    balance_change: int = 0,
    earned_change: int = 0,
    xp_change: int = 0,
) -> CreditResult | None:
    """Apply balance/earned/XP deltas and recompute the level.

    Returns None when the user has no profile; callers treat that as a
    precondition failure, not something to retry.
    """
    if earned_change < 0 or xp_change < 0:
        raise ValueError("total_earned and xp only grow")

    profile = await _locked_profile(db, user_id)
    if profile is None:
        return None

    previous_level = profile.level or 1
    new_xp = (profile.xp or 0) + xp_change
    new_level = compute_level(new_xp)

    profile.balance = (profile.balance or 0) + balance_change
    profile.total_earned = (profile.total_earned or 0) + earned_change
    profile.xp = new_xp
    profile.level = new_level
    await db.flush()

    leveled_up = new_level > previous_level
    if leveled_up:
        logger.info("level_up", user_id=user_id, old_level=previous_level, new_level=new_level)
    return CreditResult(profile=profile, previous_level=previous_level, leveled_up=leveled_up)


async def debit_balance(db: AsyncSession, user_id: str, amount: int) -> UserProfile | None:
    """Subtract from the balance only. For losses that must not count as earnings."""
    if amount < 0:
        raise ValueError("Debit amount must be non-negative")
    profile = await _locked_profile(db, user_id)
    if profile is None:
        return None
    profile.balance = (profile.balance or 0) - amount
    await db.flush()
    return profile


async def log_transaction(db: AsyncSession, user_id: str, amount: int, type_: str, description: str) -> None:
    db.add(Transaction(user_id=user_id, amount=amount, type=type_, description=description[:256]))


async def apply_reward(
    db: AsyncSession,
    user_id: str,
    amounts: RewardAmounts,
    audit: AuditMeta,
    now: datetime | None = None,
) -> CreditResult:
    """Credit a reward and write its full audit trail.

    Raises:
        NotFoundError: If the user has no profile.
    """
    result = await credit(
        db,
        user_id,
        balance_change=amounts.balance,
        earned_change=amounts.earned,
        xp_change=amounts.xp,
    )
    if result is None:
        raise NotFoundError("Profile not found")

    await log_transaction(db, user_id, amounts.balance, audit.transaction_type, audit.description)
    db.add(RewardLog(
        user_id=user_id,
        reward_type=audit.transaction_type,
        reward_amount=amounts.balance,
        source_id=audit.source_id,
        source_type=audit.source_type,
        ip_hash=audit.ip_hash,
    ))
    await db.flush()

    await track_metric(db, audit.category, amounts.balance, now)

    logger.info(
        "reward_applied",
        user_id=user_id,
        category=audit.category,
        amount=amounts.balance,
        xp=amounts.xp,
        source_id=audit.source_id,
    )
    return result


async def record_loss(db: AsyncSession, user_id: str, amount: int, audit: AuditMeta) -> UserProfile:
    """Debit a pure loss and log it as a negative transaction.

    Raises:
        NotFoundError: If the user has no profile.
    """
    profile = await debit_balance(db, user_id, amount)
    if profile is None:
        raise NotFoundError("Profile not found")
    await log_transaction(db, user_id, -amount, audit.transaction_type, audit.description)
    await db.flush()
    logger.info("loss_recorded", user_id=user_id, category=audit.category, amount=amount)
    return profile
