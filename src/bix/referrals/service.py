"""Referral engine: signup referrals and delayed commissions for referrers.

A signup referral pays the new user immediately and schedules a fixed
commission for the referrer. Afterwards every reward the referred user earns
schedules a 10% commission, once the referred user has shown enough activity.
All commissions sit in referral_commissions for 24 hours before the
pending-work processor pays them out.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import ReferralCommission, ReferralHistory, Redemption, UserTask
from bix.db.tx import best_effort
from bix.errors import BusinessRuleViolation, ValidationError
from bix.guard.abuse import raise_flag
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.profiles.service import get_profile, get_profile_by_referral_code, require_profile
from bix.utils.dates import start_of_day, utc_today, utcnow
from bix.utils.numbers import round_half_up

logger = structlog.get_logger()

NEW_USER_REWARD = 50
NEW_USER_XP = 100
SIGNUP_COMMISSION = 100
SIGNUP_SOURCE_ID = "signup_referral"
COMMISSION_RATE = 0.10
COMMISSION_DELAY = timedelta(hours=24)
MIN_QUALIFYING_ACTIVITY = 2
IP_HISTORY_DEPTH = 5
REFERRER_DAILY_LIMIT = 10


async def recent_ip_hashes(db: AsyncSession, user_id: str, limit: int = IP_HISTORY_DEPTH) -> set[str]:
    """IP hashes of the user's most recent redemptions."""
    result = await db.execute(
        select(Redemption.ip_hash)
        .where(Redemption.user_id == user_id)
        .order_by(Redemption.redeemed_at.desc())
        .limit(limit)
    )
    return {ip for ip in result.scalars().all() if ip}


async def schedule_commission(
    db: AsyncSession,
    referrer_id: str,
    referred_id: str,
    amount: int,
    source_id: str,
    now: datetime,
) -> ReferralCommission:
    commission = ReferralCommission(
        referrer_id=referrer_id,
        referred_id=referred_id,
        source_reward_id=source_id,
        commission_amount=amount,
        status="pending",
        eligible_at=now + COMMISSION_DELAY,
        created_at=now,
    )
    db.add(commission)
    await db.flush()
    logger.info(
        "commission_scheduled",
        referrer_id=referrer_id,
        referred_id=referred_id,
        amount=amount,
        source_id=source_id,
    )
    return commission


async def process_referral(
    db: AsyncSession,
    new_user_id: str,
    referral_code: Any,
    ip_hash: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Attach the caller to a referrer and pay the signup bonus.

    A new user sharing an IP with the referrer's recent redemptions is
    rejected outright and receives a high referral_same_ip flag, which is
    committed before the rejection.
    """
    if now is None:
        now = utcnow()
    if not isinstance(referral_code, str) or not referral_code.strip():
        raise ValidationError("Invalid referral code")

    referrer = await get_profile_by_referral_code(db, referral_code)
    if referrer is None:
        raise BusinessRuleViolation("Invalid referral code - referrer not found")
    if referrer.user_id == new_user_id:
        raise BusinessRuleViolation("Cannot refer yourself")

    profile = await require_profile(db, new_user_id)
    if profile.referred_by:
        raise BusinessRuleViolation("User already has a referrer")

    existing = await db.scalar(
        select(ReferralHistory.id).where(ReferralHistory.referred_id == new_user_id).limit(1)
    )
    if existing is not None:
        raise BusinessRuleViolation("Referral already processed")

    if ip_hash in await recent_ip_hashes(db, referrer.user_id):
        await raise_flag(
            db,
            new_user_id,
            "referral_same_ip",
            "high",
            {"referrer_id": referrer.user_id, "ip_hash": ip_hash},
        )
        await db.commit()
        raise BusinessRuleViolation("Referral rejected: suspicious activity detected")

    todays = await db.scalar(
        select(func.count())
        .select_from(ReferralHistory)
        .where(
            ReferralHistory.referrer_id == referrer.user_id,
            ReferralHistory.created_at >= start_of_day(utc_today(now)),
        )
    )
    if (todays or 0) >= REFERRER_DAILY_LIMIT:
        raise BusinessRuleViolation("Referrer daily limit reached")

    try:
        async with db.begin_nested():
            db.add(ReferralHistory(
                referrer_id=referrer.user_id,
                referred_id=new_user_id,
                reward_amount=0,
                created_at=now,
            ))
    except IntegrityError as e:
        raise BusinessRuleViolation("Referral already processed") from e

    profile.referred_by = referrer.user_id
    await db.flush()

    credited = await apply_reward(
        db,
        new_user_id,
        RewardAmounts(balance=NEW_USER_REWARD, earned=NEW_USER_REWARD, xp=NEW_USER_XP),
        AuditMeta(
            category="referral",
            transaction_type="referral",
            description=f"Referral bonus: joined via {referrer.referral_code}",
            source_id=referrer.user_id,
            source_type="referral_signup",
            ip_hash=ip_hash,
        ),
        now,
    )
    await schedule_commission(db, referrer.user_id, new_user_id, SIGNUP_COMMISSION, SIGNUP_SOURCE_ID, now)

    logger.info("referral_processed", referrer_id=referrer.user_id, referred_id=new_user_id)
    return {
        "new_user_reward": NEW_USER_REWARD,
        "new_balance": credited.balance,
        "new_level": credited.level,
        "leveled_up": credited.leveled_up,
        "message": (
            f"Referral successful! You earned {NEW_USER_REWARD} BIX. "
            "Your referrer will be rewarded after verification."
        ),
    }


async def _activity_count(db: AsyncSession, user_id: str) -> int:
    tasks = await db.scalar(
        select(func.count())
        .select_from(UserTask)
        .where(UserTask.user_id == user_id, UserTask.status == "completed")
    )
    redemptions = await db.scalar(
        select(func.count()).select_from(Redemption).where(Redemption.user_id == user_id)
    )
    return (tasks or 0) + (redemptions or 0)


async def process_referral_commission(
    db: AsyncSession,
    user_id: str,
    earned_amount: int,
    source_id: str,
    now: datetime | None = None,
) -> ReferralCommission | None:
    """Schedule the referrer's cut of a reward the user just earned.

    Returns None when nothing was scheduled: no referrer, not enough
    activity yet, an IP overlap with the referrer (flagged low, skipped),
    or a commission that rounds below one BIX.
    """
    if now is None:
        now = utcnow()

    profile = await get_profile(db, user_id)
    if profile is None or not profile.referred_by:
        return None
    referrer_id = profile.referred_by

    if await _activity_count(db, user_id) < MIN_QUALIFYING_ACTIVITY:
        return None

    referrer_ips = await recent_ip_hashes(db, referrer_id)
    referred_ips = await recent_ip_hashes(db, user_id)
    if referrer_ips & referred_ips:
        await raise_flag(db, user_id, "referral_ip_match", "low", {"referrer_id": referrer_id})
        return None

    amount = round_half_up(earned_amount * COMMISSION_RATE)
    if amount < 1:
        return None

    return await schedule_commission(db, referrer_id, user_id, amount, source_id, now)


async def propagate_commission(
    db: AsyncSession,
    user_id: str,
    earned_amount: int,
    source_id: str,
    now: datetime | None = None,
) -> None:
    """process_referral_commission() in a savepoint; a failure never unwinds the caller's reward."""
    async with best_effort(db, "referral_commission_failed", user_id=user_id, source_id=source_id):
        await process_referral_commission(db, user_id, earned_amount, source_id, now)
