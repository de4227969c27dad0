"""Task catalog management and task-completion rewards."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import Task, UserProfile, UserTask
from bix.errors import BusinessRuleViolation, NotFoundError
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.pending.processor import schedule_pending_reward
from bix.profiles.service import count_referrals, require_profile
from bix.referrals.service import propagate_commission
from bix.utils.dates import as_utc, start_of_day, utc_today, utcnow

logger = structlog.get_logger()

TASK_TYPES = frozenset({"one_time", "daily"})
DEFAULT_TASK_XP = 100

# unlock_metric -> (profile attribute, requirement wording)
MILESTONE_METRICS: dict[str, tuple[str, str]] = {
    "total_earned": ("total_earned", "Need {threshold:,} BIX total earnings"),
    "daily_streak": ("daily_streak", "Need {threshold}-day login streak"),
    "level": ("level", "Requires Level {threshold}"),
}


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "category": task.category,
        "task_type": task.task_type,
        "reward_amount": task.reward_amount,
        "xp_reward": task.xp_reward,
        "required_level": task.required_level,
        "link": task.link,
        "is_active": task.is_active,
        "unlock_metric": task.unlock_metric,
        "unlock_threshold": task.unlock_threshold,
        "reward_delay_hours": task.reward_delay_hours,
    }


async def list_active_tasks(db: AsyncSession) -> list[Task]:
    result = await db.execute(
        select(Task).where(Task.is_active.is_(True)).order_by(Task.category, Task.created_at, Task.id)
    )
    return list(result.scalars().all())


async def require_task(db: AsyncSession, task_id: str) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


async def _check_unlock(db: AsyncSession, task: Task, profile: UserProfile) -> None:
    if task.category == "referral":
        required = task.unlock_threshold or 1
        if await count_referrals(db, profile.user_id) < required:
            raise BusinessRuleViolation(f"Need {required} referrals to claim")

    elif task.category == "milestone" and task.unlock_metric and task.unlock_threshold:
        attribute, wording = MILESTONE_METRICS[task.unlock_metric]
        if (getattr(profile, attribute) or 0) < task.unlock_threshold:
            raise BusinessRuleViolation(wording.format(threshold=task.unlock_threshold))


async def complete_task(
    db: AsyncSession,
    user_id: str,
    task_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Claim a task's reward.

    Tasks with reward_delay_hours queue a pending reward instead of paying
    out now; the pending-work processor credits it once due.
    """
    if now is None:
        now = utcnow()

    task = await require_task(db, task_id)
    if not task.is_active:
        raise BusinessRuleViolation("Task is no longer active")

    profile = await require_profile(db, user_id)
    if task.required_level and profile.level < task.required_level:
        raise BusinessRuleViolation(f"Requires Level {task.required_level}")

    result = await db.execute(
        select(UserTask.completed_at).where(UserTask.user_id == user_id, UserTask.task_id == task_id)
    )
    completions = [as_utc(c) for c in result.scalars().all()]

    if task.task_type == "one_time" and completions:
        raise BusinessRuleViolation("Task already completed")
    if task.task_type == "daily":
        today_start = start_of_day(utc_today(now))
        if any(c >= today_start for c in completions):
            raise BusinessRuleViolation("Daily task already completed today")

    await _check_unlock(db, task, profile)

    reward = task.reward_amount or 0
    xp = task.xp_reward or DEFAULT_TASK_XP

    db.add(UserTask(user_id=user_id, task_id=task_id, status="completed", completed_at=now))
    await db.flush()

    if task.reward_delay_hours:
        pending = await schedule_pending_reward(
            db,
            user_id,
            reward,
            xp,
            process_at=now + timedelta(hours=task.reward_delay_hours),
            reward_type="task",
            source_id=task.id,
            source_type=task.category,
            now=now,
        )
        return {
            "reward": 0,
            "pending_reward": reward,
            "process_at": as_utc(pending.process_at).isoformat(),
            "xp": 0,
            "new_balance": profile.balance,
            "new_level": profile.level,
            "leveled_up": False,
            "message": f"+{reward} BIX pending verification",
        }

    credited = await apply_reward(
        db,
        user_id,
        RewardAmounts(balance=reward, earned=reward, xp=xp),
        AuditMeta(
            category="task",
            transaction_type="task",
            description=f"Completed: {task.title}",
            source_id=task.id,
            source_type=task.category,
        ),
        now,
    )
    await propagate_commission(db, user_id, reward, task.id, now)

    return {
        "reward": reward,
        "xp": xp,
        "new_balance": credited.balance,
        "new_level": credited.level,
        "leveled_up": credited.leveled_up,
        "message": f"+{reward} BIX earned!{' LEVEL UP!' if credited.leveled_up else ''}",
    }


# ---------------------------------------------------------------------------
# Admin CRUD
# ---------------------------------------------------------------------------


async def create_task(
    db: AsyncSession,
    *,
    title: str,
    task_id: str | None = None,
    description: str = "",
    category: str = "social",
    task_type: str = "one_time",
    reward_amount: int = 100,
    xp_reward: int = 50,
    required_level: int = 0,
    link: str = "",
    unlock_metric: str | None = None,
    unlock_threshold: int | None = None,
    reward_delay_hours: int | None = None,
) -> Task:
    if not title or not title.strip():
        raise BusinessRuleViolation("Task title is required")
    if task_type not in TASK_TYPES:
        raise BusinessRuleViolation(f"Invalid task type: {task_type}")
    if unlock_metric is not None and unlock_metric not in MILESTONE_METRICS:
        raise BusinessRuleViolation(f"Invalid unlock metric: {unlock_metric}")

    if task_id is None:
        task_id = f"task_{secrets.token_hex(6)}"
    elif await db.get(Task, task_id) is not None:
        raise BusinessRuleViolation("Task already exists")

    task = Task(
        id=task_id,
        title=title.strip(),
        description=description,
        category=category,
        task_type=task_type,
        reward_amount=reward_amount,
        xp_reward=xp_reward,
        required_level=required_level,
        link=link,
        is_active=True,
        unlock_metric=unlock_metric,
        unlock_threshold=unlock_threshold,
        reward_delay_hours=reward_delay_hours,
    )
    db.add(task)
    await db.flush()
    logger.info("task_created", task_id=task.id, category=category)
    return task


async def set_task_active(db: AsyncSession, task_id: str, is_active: bool) -> Task:
    task = await require_task(db, task_id)
    task.is_active = is_active
    await db.flush()
    return task


async def delete_task(db: AsyncSession, task_id: str) -> None:
    task = await require_task(db, task_id)
    await db.delete(task)
    await db.flush()
    logger.info("task_deleted", task_id=task_id)
