"""Response models for the read-only catalog endpoints."""

from __future__ import annotations

from bix.engine.schemas import CamelModel, TaskOut


class TaskListResponse(CamelModel):
    tasks: list[TaskOut]
    total: int


class LeaderboardEntry(CamelModel):
    rank: int
    user_id: str
    display_name: str | None
    balance: int
    level: int


class LeaderboardResponse(CamelModel):
    entries: list[LeaderboardEntry]


class LevelProgress(CamelModel):
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    progress_percent: float


class ProfileResponse(CamelModel):
    user_id: str
    display_name: str | None
    referral_code: str
    balance: int
    total_earned: int
    xp: int
    level: int
    role: str
    daily_streak: int
    last_login: str | None
    referred_by: str | None
    referral_count: int
    progress: LevelProgress
