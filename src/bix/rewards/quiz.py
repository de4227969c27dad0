"""Quiz sessions: start, answer one question at a time, finish for the payout.

A session fixes its question list at creation. Answers only accumulate score
and the per-question rewards on the session; nothing is credited until
finish_quiz(), which adds a 50% bonus for a perfect run.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bix.db.models import QuizQuestion, QuizSession
from bix.errors import BusinessRuleViolation, NotFoundError
from bix.ledger.service import AuditMeta, RewardAmounts, apply_reward
from bix.referrals.service import propagate_commission
from bix.utils.dates import as_utc, utcnow
from bix.utils.numbers import round_half_up

logger = structlog.get_logger()

VALID_QUESTION_COUNTS = (5, 10, 20, 50)
DIFFICULTIES = ("easy", "medium", "hard")
MIXED = "mixed"
SESSION_TTL = timedelta(minutes=30)
POOL_LIMIT = 200
MIN_ANSWER_SECONDS = 1
PERFECT_BONUS_RATE = 0.5
XP_PER_CORRECT = 10
PERFECT_XP_BONUS = 500


def question_to_dict(question: QuizQuestion) -> dict[str, Any]:
    """Public view of a question. Never includes the answer."""
    return {
        "id": question.id,
        "question": question.question,
        "options": list(question.options),
        "reward_amount": question.reward_amount,
        "difficulty": question.difficulty,
    }


async def _question_pool(db: AsyncSession, difficulty: str | None) -> list[QuizQuestion]:
    stmt = select(QuizQuestion).order_by(QuizQuestion.id).limit(POOL_LIMIT)
    if difficulty is not None:
        stmt = stmt.where(QuizQuestion.difficulty == difficulty)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _active_session(db: AsyncSession, user_id: str, session_id: str) -> QuizSession:
    session = await db.get(QuizSession, session_id)
    if session is None or session.user_id != user_id or session.status != "active":
        raise BusinessRuleViolation("Invalid or expired session")
    return session


async def start_quiz(
    db: AsyncSession,
    user_id: str,
    question_count: int = 10,
    difficulty: str = "easy",
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Open a session. A stale active session (over 30 minutes) is expired first."""
    if now is None:
        now = utcnow()
    if rng is None:
        rng = random.SystemRandom()

    if question_count not in VALID_QUESTION_COUNTS:
        raise BusinessRuleViolation("Invalid question count. Choose 5, 10, 20, or 50")
    if difficulty not in DIFFICULTIES:
        raise BusinessRuleViolation("Invalid difficulty. Choose easy, medium, or hard")

    result = await db.execute(
        select(QuizSession).where(QuizSession.user_id == user_id, QuizSession.status == "active")
    )
    for existing in result.scalars().all():
        if now - as_utc(existing.started_at) > SESSION_TTL:
            existing.status = "expired"
        else:
            raise BusinessRuleViolation("You already have an active quiz session")
    await db.flush()

    pool = await _question_pool(db, difficulty)
    actual_difficulty = difficulty
    if len(pool) < question_count:
        pool = await _question_pool(db, None)
        actual_difficulty = MIXED
        if len(pool) < question_count:
            raise BusinessRuleViolation("Not enough questions available")

    selected = rng.sample(pool, question_count)
    session = QuizSession(
        id=f"qs_{uuid.uuid4().hex}",
        user_id=user_id,
        question_count=question_count,
        difficulty=actual_difficulty,
        question_ids=[q.id for q in selected],
        answered_ids=[],
        score=0,
        total_earned=0,
        status="active",
        started_at=now,
    )
    db.add(session)
    await db.flush()
    logger.info("quiz_started", user_id=user_id, session_id=session.id, difficulty=actual_difficulty)

    return {
        "session_id": session.id,
        "questions": [question_to_dict(q) for q in selected],
        "total_questions": question_count,
        "difficulty": actual_difficulty,
    }


async def answer_question(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    question_id: str,
    selected_option: int,
    time_taken: float | None = None,
) -> dict[str, Any]:
    if time_taken is not None and time_taken < MIN_ANSWER_SECONDS:
        raise BusinessRuleViolation("Answer too fast - suspicious activity")

    session = await _active_session(db, user_id, session_id)
    answered = list(session.answered_ids or [])
    if question_id not in session.question_ids:
        raise BusinessRuleViolation("Question not in this session")
    if question_id in answered:
        raise BusinessRuleViolation("Question already answered")

    question = await db.get(QuizQuestion, question_id)
    if question is None:
        raise NotFoundError("Question not found")

    is_correct = int(selected_option) == question.correct_option
    earned = question.reward_amount if is_correct else 0

    # JSON columns are not mutation-tracked; assign a new list
    session.answered_ids = [*answered, question_id]
    session.score += 1 if is_correct else 0
    session.total_earned += earned
    await db.flush()

    return {
        "is_correct": is_correct,
        "correct_option": question.correct_option,
        "earned": earned,
        "session_score": session.score,
        "session_earned": session.total_earned,
        "answered_count": len(session.answered_ids),
        "total_questions": len(session.question_ids),
    }


async def finish_quiz(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    if now is None:
        now = utcnow()

    session = await _active_session(db, user_id, session_id)
    total_questions = len(session.question_ids)
    answered_count = len(session.answered_ids or [])
    if answered_count < total_questions:
        raise BusinessRuleViolation(f"Answer all questions first ({answered_count}/{total_questions})")

    score = session.score
    is_perfect = score == total_questions
    bonus = round_half_up(session.total_earned * PERFECT_BONUS_RATE) if is_perfect else 0
    total_reward = session.total_earned + bonus
    xp = score * XP_PER_CORRECT + (PERFECT_XP_BONUS if is_perfect else 0)

    session.status = "completed"
    session.completed_at = now
    session.total_earned = total_reward
    await db.flush()

    credited = await apply_reward(
        db,
        user_id,
        RewardAmounts(balance=total_reward, earned=total_reward, xp=xp),
        AuditMeta(
            category="quiz",
            transaction_type="quiz",
            description=(
                f"Quiz completed: {score}/{total_questions} correct{' (PERFECT!)' if is_perfect else ''}"
            ),
            source_id=session.id,
            source_type="quiz_session",
        ),
        now,
    )
    await propagate_commission(db, user_id, total_reward, session.id, now)

    return {
        "score": score,
        "total_questions": total_questions,
        "total_reward": total_reward,
        "bonus_reward": bonus,
        "xp": xp,
        "is_perfect": is_perfect,
        "new_balance": credited.balance,
        "new_level": credited.level,
        "leveled_up": credited.leveled_up,
        "message": f"Quiz complete! {score}/{total_questions} correct. +{total_reward} BIX!",
    }
