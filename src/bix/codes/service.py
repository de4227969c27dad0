"""Code window registry: admin generation and the user redemption pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bix.codes.generator import generate_code, is_well_formed, normalize_code
from bix.db.models import CodeWindow, Redemption, Task
from bix.errors import BusinessRuleViolation, NotFoundError
from bix.guard.abuse import check_abuse_throttling, raise_flag
from bix.guard.rate_limiter import RateLimiter
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.referrals.service import propagate_commission
from bix.utils.dates import as_utc, start_of_day, utc_today, utcnow
from bix.utils.numbers import round_half_up

logger = structlog.get_logger()

GENERAL_TASK_ID = "general"
DEFAULT_CODE_REWARD = 100
CODE_XP_REWARD = 100
MAX_WINDOWS_PER_TASK_PER_DAY = 4
MAX_CODE_ATTEMPTS = 10
BRUTE_FORCE_FLAG_THRESHOLD = 8
LIST_LIMIT = 50


def lockout_key(user_id: str) -> str:
    return f"lockout:{user_id}"


def window_to_dict(window: CodeWindow) -> dict[str, Any]:
    return {
        "id": window.id,
        "task_id": window.task_id,
        "code": window.code,
        "valid_from": as_utc(window.valid_from).isoformat(),
        "valid_until": as_utc(window.valid_until).isoformat(),
        "max_redemptions": window.max_redemptions,
        "current_redemptions": window.current_redemptions,
        "is_active": window.is_active,
        "created_by_admin": window.created_by_admin,
        "created_at": as_utc(window.created_at).isoformat(),
    }


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


async def _unique_active_code(db: AsyncSession) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_code()
        clash = await db.scalar(
            select(CodeWindow.id).where(CodeWindow.code == code, CodeWindow.is_active.is_(True)).limit(1)
        )
        if clash is None:
            return code
    raise RuntimeError(f"Failed to generate unique code after {MAX_CODE_ATTEMPTS} attempts")


async def generate_window(
    db: AsyncSession,
    admin_id: str,
    task_id: str | None = None,
    valid_hours: float = 3,
    max_redemptions: int | None = None,
    now: datetime | None = None,
) -> CodeWindow:
    """Open a new redemption window, optionally bound to a task.

    Task-bound windows are capped at four active windows created per UTC day.
    """
    if now is None:
        now = utcnow()
    if valid_hours <= 0:
        raise BusinessRuleViolation("validHours must be positive")
    if max_redemptions is not None and max_redemptions < 1:
        raise BusinessRuleViolation("maxRedemptions must be at least 1")

    if task_id:
        task = await db.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task not found")

        todays = await db.scalar(
            select(func.count())
            .select_from(CodeWindow)
            .where(
                CodeWindow.task_id == task_id,
                CodeWindow.is_active.is_(True),
                CodeWindow.created_at >= start_of_day(utc_today(now)),
            )
        )
        if (todays or 0) >= MAX_WINDOWS_PER_TASK_PER_DAY:
            raise BusinessRuleViolation(
                f"Maximum {MAX_WINDOWS_PER_TASK_PER_DAY} code windows per task per day"
            )

    window = CodeWindow(
        task_id=task_id or GENERAL_TASK_ID,
        code=await _unique_active_code(db),
        valid_from=now,
        valid_until=now + timedelta(hours=valid_hours),
        max_redemptions=max_redemptions,
        current_redemptions=0,
        is_active=True,
        created_by_admin=admin_id,
        created_at=now,
    )
    db.add(window)
    await db.flush()
    logger.info("code_window_created", window_id=window.id, task_id=window.task_id, admin_id=admin_id)
    return window


async def list_windows(
    db: AsyncSession,
    active_only: bool = True,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Newest windows first, with remaining time and utilization."""
    if now is None:
        now = utcnow()
    stmt = select(CodeWindow).order_by(CodeWindow.created_at.desc(), CodeWindow.id.desc()).limit(LIST_LIMIT)
    if active_only:
        stmt = stmt.where(CodeWindow.is_active.is_(True))
    result = await db.execute(stmt)

    windows = []
    for window in result.scalars().all():
        remaining = max((as_utc(window.valid_until) - now).total_seconds(), 0.0)
        entry = window_to_dict(window)
        entry["remaining_minutes"] = round_half_up(remaining / 60)
        entry["expired"] = remaining == 0
        entry["utilization_percent"] = (
            round_half_up(window.current_redemptions / window.max_redemptions * 100)
            if window.max_redemptions
            else None
        )
        windows.append(entry)
    return windows


async def disable_window(db: AsyncSession, window_id: int) -> CodeWindow:
    window = await db.get(CodeWindow, window_id)
    if window is None:
        raise NotFoundError("Code window not found")
    window.is_active = False
    await db.flush()
    logger.info("code_window_disabled", window_id=window_id)
    return window


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------


async def _claim_slot(db: AsyncSession, window: CodeWindow) -> bool:
    """Bump current_redemptions, refusing when the window is already full."""
    stmt = (
        update(CodeWindow)
        .where(CodeWindow.id == window.id)
        .values(current_redemptions=CodeWindow.current_redemptions + 1)
        .execution_options(synchronize_session=False)
    )
    if window.max_redemptions is not None:
        stmt = stmt.where(CodeWindow.current_redemptions < CodeWindow.max_redemptions)
    result = await db.execute(stmt)
    await db.refresh(window)
    return result.rowcount == 1


async def redeem(
    db: AsyncSession,
    limiter: RateLimiter,
    user_id: str,
    code: Any,
    ip_hash: str,
    device_hash: str = "",
    user_agent: str = "",
    now: datetime | None = None,
    brute_force_threshold: int = BRUTE_FORCE_FLAG_THRESHOLD,
) -> dict[str, Any]:
    """Redeem a code for the caller.

    Checks run fail-fast in order: format, lookup, validity window, capacity,
    duplicate, abuse throttle. Format, lookup and validity failures count
    towards the caller's lockout. Repeated lookup failures raise a
    brute_force_codes flag which is committed before the rejection.
    """
    if now is None:
        now = utcnow()

    if not is_well_formed(code):
        await limiter.track_failed_attempt(lockout_key(user_id))
        raise BusinessRuleViolation("Invalid code format")

    clean_code = normalize_code(code)
    result = await db.execute(
        select(CodeWindow)
        .where(CodeWindow.code == clean_code, CodeWindow.is_active.is_(True))
        .order_by(CodeWindow.created_at.desc())
        .limit(1)
    )
    window = result.scalar_one_or_none()

    if window is None:
        failures = await limiter.track_failed_attempt(lockout_key(user_id))
        if failures >= brute_force_threshold:
            await raise_flag(
                db,
                user_id,
                "brute_force_codes",
                "medium",
                {"failed_attempts": failures, "ip_hash": ip_hash},
            )
            await db.commit()
        raise BusinessRuleViolation("Invalid or expired code")

    if not as_utc(window.valid_from) <= now <= as_utc(window.valid_until):
        await limiter.track_failed_attempt(lockout_key(user_id))
        raise BusinessRuleViolation("Code has expired or not yet active")

    if window.max_redemptions is not None and window.current_redemptions >= window.max_redemptions:
        raise BusinessRuleViolation("Code has reached maximum redemptions")

    already = await db.scalar(
        select(Redemption.id).where(Redemption.user_id == user_id, Redemption.window_id == window.id).limit(1)
    )
    if already is not None:
        raise BusinessRuleViolation("You already redeemed this code")

    decision = await check_abuse_throttling(db, user_id, ip_hash, now)
    if not decision.allowed:
        raise BusinessRuleViolation(decision.reason or "Account under review")

    base_reward = DEFAULT_CODE_REWARD
    if window.task_id and window.task_id != GENERAL_TASK_ID:
        task = await db.get(Task, window.task_id)
        if task is not None and task.reward_amount:
            base_reward = task.reward_amount
    reward = round_half_up(base_reward * decision.multiplier)

    if not await _claim_slot(db, window):
        raise BusinessRuleViolation("Code has reached maximum redemptions")

    try:
        async with db.begin_nested():
            db.add(Redemption(
                user_id=user_id,
                window_id=window.id,
                task_id=window.task_id or GENERAL_TASK_ID,
                ip_hash=ip_hash,
                device_hash=(device_hash or "")[:128],
                user_agent=(user_agent or "")[:200],
                redeemed_at=now,
            ))
    except IntegrityError as e:
        raise BusinessRuleViolation("You already redeemed this code") from e

    credited = await apply_reward(
        db,
        user_id,
        RewardAmounts(balance=reward, earned=reward, xp=CODE_XP_REWARD),
        AuditMeta(
            category="code",
            transaction_type="code_redemption",
            description=f"Redeemed code: {clean_code[:3]}***",
            source_id=str(window.id),
            source_type="task_code_window",
            ip_hash=ip_hash,
        ),
        now,
    )

    await propagate_commission(db, user_id, reward, str(window.id), now)

    logger.info("code_redeemed", user_id=user_id, window_id=window.id, reward=reward, multiplier=decision.multiplier)
    return {
        "reward": reward,
        "multiplier": decision.multiplier,
        "new_balance": credited.balance,
        "new_level": credited.level,
        "leveled_up": credited.leveled_up,
        "message": f"+{reward} BIX earned!{' LEVEL UP!' if credited.leveled_up else ''}",
    }
