"""Request and response models for the reward-engine endpoint.

The wire format is camelCase; models are populated and dumped by alias.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ActionRequest(CamelModel):
    """Base body: every request names its action. Unknown fields are ignored."""

    action: str


# --- User actions ---


class ProcessReferralRequest(ActionRequest):
    referral_code: str = Field(min_length=1, max_length=32)


class CompleteTaskRequest(ActionRequest):
    task_id: str = Field(min_length=1, max_length=64)


class DailyCheckinRequest(ActionRequest):
    pass


class StartQuizRequest(ActionRequest):
    question_count: int = 10
    difficulty: str = "easy"


class QuizAnswerRequest(ActionRequest):
    session_id: str
    question_id: str
    selected_option: int
    time_taken: float | None = None


class FinishQuizRequest(ActionRequest):
    session_id: str


class GameResultRequest(ActionRequest):
    game_type: str
    bet_amount: int


class RedeemCodeRequest(ActionRequest):
    # format is checked by the redemption pipeline
    code: Any = None


class GetPendingRewardsRequest(ActionRequest):
    pass


# --- Admin actions ---


class GenerateCodeWindowRequest(ActionRequest):
    task_id: str | None = None
    valid_hours: float = Field(default=3, gt=0, le=24 * 30)
    max_redemptions: int | None = Field(default=None, ge=1)


class ListCodeWindowsRequest(ActionRequest):
    active_only: bool = True


class DisableCodeWindowRequest(ActionRequest):
    window_id: int


class GetMetricsRequest(ActionRequest):
    pass


class GetAbuseFlagsRequest(ActionRequest):
    unresolved_only: bool = False


class ResolveFlagRequest(ActionRequest):
    flag_id: int


class TaskPayload(CamelModel):
    id: str | None = Field(default=None, max_length=64)
    title: str = Field(min_length=1, max_length=128)
    description: str = ""
    category: str = "social"
    task_type: str = "one_time"
    reward_amount: int = Field(default=100, ge=0)
    xp_reward: int = Field(default=50, ge=0)
    required_level: int = Field(default=0, ge=0)
    link: str = ""
    unlock_metric: str | None = None
    unlock_threshold: int | None = Field(default=None, ge=1)
    reward_delay_hours: int | None = Field(default=None, ge=1)


class CreateTaskRequest(ActionRequest):
    task: TaskPayload


class ToggleTaskRequest(ActionRequest):
    task_id: str
    is_active: bool = False


class DeleteTaskRequest(ActionRequest):
    task_id: str


# --- Responses ---


class EngineResponse(CamelModel):
    """Fields merged into {"success": true, ...}."""


class MessageResponse(EngineResponse):
    message: str


class CreditedResponse(EngineResponse):
    new_balance: int
    new_level: int
    leveled_up: bool
    message: str


class ReferralResponse(CreditedResponse):
    new_user_reward: int


class TaskRewardResponse(CreditedResponse):
    reward: int
    xp: int
    pending_reward: int | None = None
    process_at: str | None = None


class CheckinResponse(CreditedResponse):
    reward: int
    streak: int
    multiplier: float
    xp: int


class QuizQuestionOut(CamelModel):
    id: str
    question: str
    options: list[str]
    reward_amount: int
    difficulty: str


class StartQuizResponse(EngineResponse):
    session_id: str
    questions: list[QuizQuestionOut]
    total_questions: int
    difficulty: str


class QuizAnswerResponse(EngineResponse):
    is_correct: bool
    correct_option: int
    earned: int
    session_score: int
    session_earned: int
    answered_count: int
    total_questions: int


class FinishQuizResponse(CreditedResponse):
    score: int
    total_questions: int
    total_reward: int
    bonus_reward: int
    xp: int
    is_perfect: bool


class GameResultResponse(EngineResponse):
    multiplier: int
    net_change: int
    new_balance: int
    message: str


class RedeemCodeResponse(CreditedResponse):
    reward: int
    multiplier: float


class PendingRewardOut(CamelModel):
    id: int
    reward_type: str
    reward_amount: int
    xp_amount: int
    source_id: str | None
    source_type: str | None
    status: str
    process_at: str
    processed_at: str | None
    created_at: str


class PendingCommissionOut(CamelModel):
    id: int
    referred_id: str
    source_reward_id: str
    commission_amount: int
    status: str
    eligible_at: str
    created_at: str


class PendingRewardsResponse(EngineResponse):
    pending: list[PendingRewardOut]
    commissions: list[PendingCommissionOut]


class GenerateCodeWindowResponse(EngineResponse):
    window_id: int
    code: str
    valid_from: str
    valid_until: str
    max_redemptions: int | str
    message: str


class CodeWindowOut(CamelModel):
    id: int
    task_id: str
    code: str
    valid_from: str
    valid_until: str
    max_redemptions: int | None
    current_redemptions: int
    is_active: bool
    created_by_admin: str
    created_at: str
    remaining_minutes: int
    expired: bool
    utilization_percent: int | None


class ListCodeWindowsResponse(EngineResponse):
    windows: list[CodeWindowOut]


class MetricOut(CamelModel):
    metric_date: str
    total_rewards_issued: int
    total_daily_rewards: int
    task_rewards_issued: int
    referral_rewards_issued: int
    quiz_rewards_issued: int
    game_rewards_issued: int
    code_rewards_issued: int
    active_users_today: int


class MetricsResponse(EngineResponse):
    metrics: list[MetricOut]
    total_users: int
    flagged_accounts: int


class AbuseFlagOut(CamelModel):
    id: int
    user_id: str
    flag_type: str
    severity: str
    details: dict[str, Any]
    resolved: bool
    resolved_by: str | None
    resolved_at: str | None
    created_at: str


class AbuseFlagsResponse(EngineResponse):
    flags: list[AbuseFlagOut]


class TaskOut(CamelModel):
    id: str
    title: str
    description: str
    category: str
    task_type: str
    reward_amount: int
    xp_reward: int
    required_level: int
    link: str
    is_active: bool
    unlock_metric: str | None
    unlock_threshold: int | None
    reward_delay_hours: int | None


class CreateTaskResponse(EngineResponse):
    task: TaskOut
    message: str
