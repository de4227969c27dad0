"""The action-dispatched reward-engine endpoint."""

from __future__ import annotations

from typing import Any

import pydantic
import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bix.auth.dependencies import get_current_profile
from bix.config import Settings, get_settings
from bix.db.models import UserProfile
from bix.dependencies import get_db, get_rate_limiter
from bix.engine.actions import ActionContext, resolve_action
from bix.errors import RateLimitError, ValidationError
from bix.guard.ip_hash import client_ip, hash_ip
from bix.guard.rate_limiter import RateLimiter
from bix.pending.processor import process_due_work
from bix.profiles.service import ensure_admin
from bix.utils.dates import utcnow

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Reward Engine"])

CODE_ACTION = "redeem_task_code"
QUIZ_ANSWER_ACTION = "quiz_answer"
USER_AGENT_MAX = 200
DEVICE_HASH_MAX = 128


def _validation_message(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{field}: {first['msg']}" if field else str(first["msg"])


async def _enforce_rate_policy(
    limiter: RateLimiter,
    settings: Settings,
    user_id: str,
    action: str,
    ip_hash: str,
) -> None:
    """Per-IP code attempts and lockout first, then the per-user, per-action window."""
    window = settings.rate_limit_window_seconds

    if action == CODE_ACTION:
        if not await limiter.check_rate_limit(f"code_ip:{ip_hash}", settings.rate_limit_code_attempts_per_ip, window):
            raise RateLimitError("Too many code attempts. Wait a minute.", retry_after=window)
        if await limiter.is_locked_out(f"lockout:{user_id}"):
            raise RateLimitError(
                "Account temporarily locked due to too many failed attempts.",
                retry_after=settings.lockout_window_seconds,
            )

    limit = (
        settings.rate_limit_quiz_answers_per_user
        if action == QUIZ_ANSWER_ACTION
        else settings.rate_limit_actions_per_user
    )
    if not await limiter.check_rate_limit(f"{user_id}:{action}", limit, window):
        raise RateLimitError("Rate limited. Try again later.", retry_after=window)


@router.post("/reward-engine")
async def reward_engine(
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict[str, Any]:
    """Dispatch one reward action for the authenticated caller.

    Due pending rewards and commissions are paid (and committed) before the
    action runs. The action itself commits on success and rolls back on error.
    """
    settings = get_settings()
    user_id = profile.user_id

    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(body, dict) or not isinstance(body.get("action"), str):
        raise ValidationError("Invalid action")

    resolved = resolve_action(body["action"])
    if resolved is None:
        raise ValidationError("Invalid action")
    action, spec = resolved
    structlog.contextvars.bind_contextvars(action=action, user_id=user_id)

    peer = request.client.host if request.client else None
    ip_hash = hash_ip(client_ip(request.headers.get("x-forwarded-for"), request.headers.get("cf-connecting-ip"), peer))

    await _enforce_rate_policy(limiter, settings, user_id, action, ip_hash)

    now = utcnow()
    try:
        await process_due_work(db, user_id, now)
        await db.commit()
        # A failed sweep item rolls back its savepoint and expires the profile
        await db.refresh(profile)

        try:
            payload = spec.request_model.model_validate(body)
        except pydantic.ValidationError as e:
            raise ValidationError(_validation_message(e)) from e

        if spec.admin_only:
            ensure_admin(profile)

        ctx = ActionContext(
            db=db,
            user_id=user_id,
            limiter=limiter,
            settings=settings,
            ip_hash=ip_hash,
            device_hash=request.headers.get("x-device-hash", "")[:DEVICE_HASH_MAX],
            user_agent=request.headers.get("user-agent", "")[:USER_AGENT_MAX],
            now=now,
        )
        response = await spec.handler(ctx, payload)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("action_completed")
    return {"success": True, **response.model_dump(by_alias=True, mode="json")}
