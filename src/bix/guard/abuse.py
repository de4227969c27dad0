"""Behavioural abuse throttling and abuse-flag bookkeeping.

The throttle is advisory: it only refuses outright when the user carries an
unresolved high/critical flag. Every other signal dampens the payout
multiplier, which never drops below MIN_MULTIPLIER.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import AbuseFlag, Redemption
from bix.utils.dates import utcnow

logger = structlog.get_logger()

FLAG_TYPES = frozenset({
    "multi_account_ip",
    "brute_force_codes",
    "referral_ip_match",
    "referral_same_ip",
    "suspicious_activity",
})
SEVERITIES = ("low", "medium", "high", "critical")
BLOCKING_SEVERITIES = frozenset({"high", "critical"})

VELOCITY_WINDOW = timedelta(minutes=10)
VELOCITY_LIMIT = 5
VELOCITY_PENALTY = 0.5

IP_CLUSTER_WINDOW = timedelta(hours=24)
IP_CLUSTER_MAX_USERS = 3
IP_CLUSTER_PENALTY = 0.25

OPEN_FLAG_PENALTY = 0.75
MIN_MULTIPLIER = 0.1


@dataclass(frozen=True, slots=True)
class ThrottleDecision:
    allowed: bool
    multiplier: float
    reason: str | None = None


async def raise_flag(
    db: AsyncSession,
    user_id: str,
    flag_type: str,
    severity: str,
    details: dict[str, Any] | None = None,
) -> AbuseFlag:
    """Create an unresolved abuse flag for review."""
    if flag_type not in FLAG_TYPES:
        raise ValueError(f"Unknown flag type: {flag_type}")
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity: {severity}")

    flag = AbuseFlag(
        user_id=user_id,
        flag_type=flag_type,
        severity=severity,
        details=details or {},
        resolved=False,
    )
    db.add(flag)
    await db.flush()
    logger.warning("abuse_flag_raised", user_id=user_id, flag_type=flag_type, severity=severity)
    return flag


async def get_open_flags(db: AsyncSession, user_id: str, limit: int = 10) -> list[AbuseFlag]:
    result = await db.execute(
        select(AbuseFlag)
        .where(AbuseFlag.user_id == user_id, AbuseFlag.resolved.is_(False))
        .order_by(AbuseFlag.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def check_abuse_throttling(
    db: AsyncSession,
    user_id: str,
    ip_hash: str,
    now: datetime | None = None,
) -> ThrottleDecision:
    """Decide whether a reward may be paid and at what multiplier.

    1. Any unresolved high/critical flag: refuse (multiplier 0).
    2. >= 5 redemptions in the last 10 minutes: x0.5.
    3. > 3 distinct users redeeming from this IP in 24h: medium
       multi_account_ip flag, x0.25.
    4. 1-2 open (low/medium) flags, counted before step 3: x0.75.
    5. Floor at 0.1.
    """
    if now is None:
        now = utcnow()

    flags = await get_open_flags(db, user_id)
    if any(f.severity in BLOCKING_SEVERITIES for f in flags):
        return ThrottleDecision(allowed=False, multiplier=0.0, reason="Account flagged for review")

    multiplier = 1.0

    recent_count = await db.scalar(
        select(func.count())
        .select_from(Redemption)
        .where(Redemption.user_id == user_id, Redemption.redeemed_at > now - VELOCITY_WINDOW)
    )
    if (recent_count or 0) >= VELOCITY_LIMIT:
        multiplier *= VELOCITY_PENALTY

    ip_users = await db.scalar(
        select(func.count(func.distinct(Redemption.user_id)))
        .where(Redemption.ip_hash == ip_hash, Redemption.redeemed_at > now - IP_CLUSTER_WINDOW)
    )
    ip_users = ip_users or 0
    if ip_users > IP_CLUSTER_MAX_USERS:
        await raise_flag(
            db,
            user_id,
            "multi_account_ip",
            "medium",
            {"ip_hash": ip_hash, "account_count": ip_users},
        )
        multiplier *= IP_CLUSTER_PENALTY

    if 0 < len(flags) < 3:
        multiplier *= OPEN_FLAG_PENALTY

    return ThrottleDecision(allowed=True, multiplier=max(multiplier, MIN_MULTIPLIER))
