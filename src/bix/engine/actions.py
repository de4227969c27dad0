"""Action registry for the reward-engine endpoint.

ACTIONS is the closed set of actions the engine accepts. Each entry names
the request model the body is validated against, the handler, and whether
the action is admin-only. Legacy action names resolve through ALIASES.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from bix.admin import service as admin_service
from bix.codes import service as codes_service
from bix.config import Settings
from bix.engine import schemas
from bix.guard.rate_limiter import RateLimiter
from bix.pending.processor import list_pending
from bix.referrals.service import process_referral
from bix.rewards import checkin, games, quiz, tasks
from bix.utils.dates import as_utc, utc_today


@dataclass(frozen=True, slots=True)
class ActionContext:
    """Everything a handler needs about the current request."""

    db: AsyncSession
    user_id: str
    limiter: RateLimiter
    settings: Settings
    ip_hash: str
    device_hash: str
    user_agent: str
    now: datetime


Handler = Callable[[ActionContext, schemas.ActionRequest], Awaitable[schemas.EngineResponse]]


@dataclass(frozen=True, slots=True)
class ActionSpec:
    request_model: type[schemas.ActionRequest]
    handler: Handler
    admin_only: bool = False


# ---------------------------------------------------------------------------
# User handlers
# ---------------------------------------------------------------------------


async def _process_referral(ctx: ActionContext, req: schemas.ProcessReferralRequest) -> schemas.ReferralResponse:
    result = await process_referral(ctx.db, ctx.user_id, req.referral_code, ctx.ip_hash, ctx.now)
    return schemas.ReferralResponse(**result)


async def _complete_task(ctx: ActionContext, req: schemas.CompleteTaskRequest) -> schemas.TaskRewardResponse:
    result = await tasks.complete_task(ctx.db, ctx.user_id, req.task_id, ctx.now)
    return schemas.TaskRewardResponse(**result)


async def _daily_checkin(ctx: ActionContext, req: schemas.DailyCheckinRequest) -> schemas.CheckinResponse:
    result = await checkin.daily_checkin(ctx.db, ctx.user_id, utc_today(ctx.now))
    return schemas.CheckinResponse(**result)


async def _start_quiz(ctx: ActionContext, req: schemas.StartQuizRequest) -> schemas.StartQuizResponse:
    result = await quiz.start_quiz(ctx.db, ctx.user_id, req.question_count, req.difficulty, ctx.now)
    return schemas.StartQuizResponse(**result)


async def _quiz_answer(ctx: ActionContext, req: schemas.QuizAnswerRequest) -> schemas.QuizAnswerResponse:
    result = await quiz.answer_question(
        ctx.db, ctx.user_id, req.session_id, req.question_id, req.selected_option, req.time_taken
    )
    return schemas.QuizAnswerResponse(**result)


async def _finish_quiz(ctx: ActionContext, req: schemas.FinishQuizRequest) -> schemas.FinishQuizResponse:
    result = await quiz.finish_quiz(ctx.db, ctx.user_id, req.session_id, ctx.now)
    return schemas.FinishQuizResponse(**result)


async def _game_result(ctx: ActionContext, req: schemas.GameResultRequest) -> schemas.GameResultResponse:
    result = await games.play_game(ctx.db, ctx.user_id, req.game_type, req.bet_amount)
    return schemas.GameResultResponse(**result)


async def _redeem_task_code(ctx: ActionContext, req: schemas.RedeemCodeRequest) -> schemas.RedeemCodeResponse:
    result = await codes_service.redeem(
        ctx.db,
        ctx.limiter,
        ctx.user_id,
        req.code,
        ctx.ip_hash,
        ctx.device_hash,
        ctx.user_agent,
        ctx.now,
        brute_force_threshold=ctx.settings.brute_force_flag_threshold,
    )
    return schemas.RedeemCodeResponse(**result)


async def _get_pending_rewards(
    ctx: ActionContext, req: schemas.GetPendingRewardsRequest
) -> schemas.PendingRewardsResponse:
    return schemas.PendingRewardsResponse(**await list_pending(ctx.db, ctx.user_id))


# ---------------------------------------------------------------------------
# Admin handlers
# ---------------------------------------------------------------------------


async def _admin_generate_code_window(
    ctx: ActionContext, req: schemas.GenerateCodeWindowRequest
) -> schemas.GenerateCodeWindowResponse:
    window = await codes_service.generate_window(
        ctx.db, ctx.user_id, req.task_id, req.valid_hours, req.max_redemptions, ctx.now
    )
    return schemas.GenerateCodeWindowResponse(
        window_id=window.id,
        code=window.code,
        valid_from=as_utc(window.valid_from).isoformat(),
        valid_until=as_utc(window.valid_until).isoformat(),
        max_redemptions=window.max_redemptions or "unlimited",
        message=f"Code {window.code} generated. Valid for {req.valid_hours:g} hours.",
    )


async def _admin_list_code_windows(
    ctx: ActionContext, req: schemas.ListCodeWindowsRequest
) -> schemas.ListCodeWindowsResponse:
    windows = await codes_service.list_windows(ctx.db, req.active_only, ctx.now)
    return schemas.ListCodeWindowsResponse(windows=windows)


async def _admin_disable_code_window(
    ctx: ActionContext, req: schemas.DisableCodeWindowRequest
) -> schemas.MessageResponse:
    await codes_service.disable_window(ctx.db, req.window_id)
    return schemas.MessageResponse(message="Code window disabled")


async def _admin_get_metrics(ctx: ActionContext, req: schemas.GetMetricsRequest) -> schemas.MetricsResponse:
    return schemas.MetricsResponse(**await admin_service.get_metrics(ctx.db))


async def _admin_get_abuse_flags(ctx: ActionContext, req: schemas.GetAbuseFlagsRequest) -> schemas.AbuseFlagsResponse:
    return schemas.AbuseFlagsResponse(flags=await admin_service.list_flags(ctx.db, req.unresolved_only))


async def _admin_resolve_flag(ctx: ActionContext, req: schemas.ResolveFlagRequest) -> schemas.MessageResponse:
    await admin_service.resolve_flag(ctx.db, ctx.user_id, req.flag_id, ctx.now)
    return schemas.MessageResponse(message="Flag resolved")


async def _admin_create_task(ctx: ActionContext, req: schemas.CreateTaskRequest) -> schemas.CreateTaskResponse:
    fields = req.task.model_dump(exclude={"id"})
    task = await tasks.create_task(ctx.db, task_id=req.task.id, **fields)
    return schemas.CreateTaskResponse(task=tasks.task_to_dict(task), message="Task created")


async def _admin_toggle_task(ctx: ActionContext, req: schemas.ToggleTaskRequest) -> schemas.MessageResponse:
    await tasks.set_task_active(ctx.db, req.task_id, req.is_active)
    return schemas.MessageResponse(message="Task status updated")


async def _admin_delete_task(ctx: ActionContext, req: schemas.DeleteTaskRequest) -> schemas.MessageResponse:
    await tasks.delete_task(ctx.db, req.task_id)
    return schemas.MessageResponse(message="Task deleted")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ACTIONS: dict[str, ActionSpec] = {
    "process_referral": ActionSpec(schemas.ProcessReferralRequest, _process_referral),
    "complete_task": ActionSpec(schemas.CompleteTaskRequest, _complete_task),
    "daily_checkin": ActionSpec(schemas.DailyCheckinRequest, _daily_checkin),
    "start_quiz": ActionSpec(schemas.StartQuizRequest, _start_quiz),
    "quiz_answer": ActionSpec(schemas.QuizAnswerRequest, _quiz_answer),
    "finish_quiz": ActionSpec(schemas.FinishQuizRequest, _finish_quiz),
    "game_result": ActionSpec(schemas.GameResultRequest, _game_result),
    "redeem_task_code": ActionSpec(schemas.RedeemCodeRequest, _redeem_task_code),
    "get_pending_rewards": ActionSpec(schemas.GetPendingRewardsRequest, _get_pending_rewards),
    "admin_generate_code_window": ActionSpec(
        schemas.GenerateCodeWindowRequest, _admin_generate_code_window, admin_only=True
    ),
    "admin_list_code_windows": ActionSpec(schemas.ListCodeWindowsRequest, _admin_list_code_windows, admin_only=True),
    "admin_disable_code_window": ActionSpec(
        schemas.DisableCodeWindowRequest, _admin_disable_code_window, admin_only=True
    ),
    "admin_get_metrics": ActionSpec(schemas.GetMetricsRequest, _admin_get_metrics, admin_only=True),
    "admin_get_abuse_flags": ActionSpec(schemas.GetAbuseFlagsRequest, _admin_get_abuse_flags, admin_only=True),
    "admin_resolve_flag": ActionSpec(schemas.ResolveFlagRequest, _admin_resolve_flag, admin_only=True),
    "admin_create_task": ActionSpec(schemas.CreateTaskRequest, _admin_create_task, admin_only=True),
    "admin_toggle_task": ActionSpec(schemas.ToggleTaskRequest, _admin_toggle_task, admin_only=True),
    "admin_delete_task": ActionSpec(schemas.DeleteTaskRequest, _admin_delete_task, admin_only=True),
}

ALIASES: dict[str, str] = {
    "verify_reward_code": "redeem_task_code",
    "admin_generate_code": "admin_generate_code_window",
}


def resolve_action(name: str) -> tuple[str, ActionSpec] | None:
    """Canonical name and ActionSpec for an action, or None if unknown."""
    canonical = ALIASES.get(name, name)
    spec = ACTIONS.get(canonical)
    if spec is None:
        return None
    return canonical, spec
