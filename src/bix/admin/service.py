"""Admin console queries: platform metrics and abuse-flag review."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import AbuseFlag, PlatformMetric, UserProfile
from bix.errors import BusinessRuleViolation, NotFoundError
from bix.utils.dates import as_utc, utcnow

logger = structlog.get_logger()

METRIC_DAYS = 30
FLAG_LIMIT = 50


def metric_to_dict(metric: PlatformMetric) -> dict[str, Any]:
    return {
        "metric_date": metric.metric_date.isoformat(),
        "total_rewards_issued": metric.total_rewards_issued,
        "total_daily_rewards": metric.total_daily_rewards,
        "task_rewards_issued": metric.task_rewards_issued,
        "referral_rewards_issued": metric.referral_rewards_issued,
        "quiz_rewards_issued": metric.quiz_rewards_issued,
        "game_rewards_issued": metric.game_rewards_issued,
        "code_rewards_issued": metric.code_rewards_issued,
        "active_users_today": metric.active_users_today,
    }


def flag_to_dict(flag: AbuseFlag) -> dict[str, Any]:
    return {
        "id": flag.id,
        "user_id": flag.user_id,
        "flag_type": flag.flag_type,
        "severity": flag.severity,
        "details": flag.details or {},
        "resolved": flag.resolved,
        "resolved_by": flag.resolved_by,
        "resolved_at": as_utc(flag.resolved_at).isoformat() if flag.resolved_at else None,
        "created_at": as_utc(flag.created_at).isoformat(),
    }


async def get_metrics(db: AsyncSession) -> dict[str, Any]:
    """Last 30 daily rollups plus headline counts."""
    result = await db.execute(
        select(PlatformMetric).order_by(PlatformMetric.metric_date.desc()).limit(METRIC_DAYS)
    )
    total_users = await db.scalar(select(func.count()).select_from(UserProfile))
    flagged = await db.scalar(
        select(func.count()).select_from(AbuseFlag).where(AbuseFlag.resolved.is_(False))
    )
    return {
        "metrics": [metric_to_dict(m) for m in result.scalars().all()],
        "total_users": total_users or 0,
        "flagged_accounts": flagged or 0,
    }


async def list_flags(db: AsyncSession, unresolved_only: bool = False) -> list[dict[str, Any]]:
    stmt = select(AbuseFlag).order_by(AbuseFlag.created_at.desc(), AbuseFlag.id.desc()).limit(FLAG_LIMIT)
    if unresolved_only:
        stmt = stmt.where(AbuseFlag.resolved.is_(False))
    result = await db.execute(stmt)
    return [flag_to_dict(f) for f in result.scalars().all()]


async def resolve_flag(
    db: AsyncSession,
    admin_id: str,
    flag_id: int,
    now: datetime | None = None,
) -> AbuseFlag:
    """Mark a flag reviewed. Resolving lifts any block it imposed."""
    flag = await db.get(AbuseFlag, flag_id)
    if flag is None:
        raise NotFoundError("Flag not found")
    if flag.resolved:
        raise BusinessRuleViolation("Flag already resolved")

    flag.resolved = True
    flag.resolved_by = admin_id
    flag.resolved_at = now or utcnow()
    await db.flush()
    logger.info("abuse_flag_resolved", flag_id=flag_id, admin_id=admin_id, user_id=flag.user_id)
    return flag
