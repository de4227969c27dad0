"""Read-only catalog endpoints: active tasks, leaderboard, caller profile."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.auth.dependencies import get_current_profile
from bix.catalog.schemas import (
    LeaderboardEntry,
    LeaderboardResponse,
    LevelProgress,
    ProfileResponse,
    TaskListResponse,
)
from bix.db.models import UserProfile
from bix.dependencies import get_db
from bix.engine.schemas import TaskOut
from bix.profiles.levels import level_progress
from bix.profiles.service import count_referrals
from bix.rewards.tasks import list_active_tasks, task_to_dict

router = APIRouter(prefix="/api/v1", tags=["Catalog"])


@router.get("/tasks", response_model=TaskListResponse, response_model_by_alias=True)
async def get_tasks(db: AsyncSession = Depends(get_db)) -> TaskListResponse:
    tasks = await list_active_tasks(db)
    return TaskListResponse(tasks=[TaskOut(**task_to_dict(t)) for t in tasks], total=len(tasks))


@router.get("/leaderboard", response_model=LeaderboardResponse, response_model_by_alias=True)
async def get_leaderboard(
    limit: int = Query(50, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
) -> LeaderboardResponse:
    """Top users by balance."""
    result = await db.execute(
        select(UserProfile).order_by(UserProfile.balance.desc(), UserProfile.created_at).limit(limit)
    )
    entries = [
        LeaderboardEntry(
            rank=i,
            user_id=p.user_id,
            display_name=p.display_name,
            balance=p.balance,
            level=p.level,
        )
        for i, p in enumerate(result.scalars().all(), start=1)
    ]
    return LeaderboardResponse(entries=entries)


@router.get("/me", response_model=ProfileResponse, response_model_by_alias=True)
async def get_me(
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile.user_id,
        display_name=profile.display_name,
        referral_code=profile.referral_code,
        balance=profile.balance,
        total_earned=profile.total_earned,
        xp=profile.xp,
        level=profile.level,
        role=profile.role,
        daily_streak=profile.daily_streak,
        last_login=profile.last_login.isoformat() if profile.last_login else None,
        referred_by=profile.referred_by,
        referral_count=await count_referrals(db, profile.user_id),
        progress=LevelProgress(**level_progress(profile.xp)),
    )
