"""ORM models for the reward ledger.

The schema is created by Alembic on PostgreSQL (alembic/versions) and by
metadata.create_all() on SQLite. Column defaults are Python-side so both
backends store identical UTC timestamps.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from bix.db.base import Base, BigIntPK, JSONType
from bix.utils.dates import utcnow

# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class UserProfile(Base):
    """One row per authenticated user. Balance/XP/level move through the ledger only."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    daily_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login: Mapped[date | None] = mapped_column(Date, nullable=True)
    referred_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(Base):
    """Claimable task definition."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="social")
    task_type: Mapped[str] = mapped_column(String(16), nullable=False, default="one_time")
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    required_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    link: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # referral: minimum referral count; milestone: target for unlock_metric
    unlock_metric: Mapped[str | None] = mapped_column(String(32), nullable=True)
    unlock_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reward_delay_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserTask(Base):
    """A completed task claim."""

    __tablename__ = "user_tasks"
    __table_args__ = (Index("idx_user_tasks_user_task", "user_id", "task_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Code windows
# ---------------------------------------------------------------------------


class CodeWindow(Base):
    """Time-boxed, optionally capacity-limited redeemable code. Deactivated, never deleted."""

    __tablename__ = "code_windows"
    __table_args__ = (Index("idx_code_windows_code_active", "code", "is_active"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_redemptions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_redemptions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_admin: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Redemption(Base):
    """One per (user, window). Immutable."""

    __tablename__ = "redemptions"
    __table_args__ = (
        UniqueConstraint("user_id", "window_id", name="redemptions_user_id_window_id_key"),
        Index("idx_redemptions_user_time", "user_id", "redeemed_at"),
        Index("idx_redemptions_ip_time", "ip_hash", "redeemed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    window_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    ip_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    device_hash: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Abuse
# ---------------------------------------------------------------------------


class AbuseFlag(Base):
    """Raised by the guard or referral engine; resolved only by an admin."""

    __tablename__ = "abuse_flags"
    __table_args__ = (Index("idx_abuse_flags_user_resolved", "user_id", "resolved"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    flag_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


class ReferralHistory(Base):
    """One row per referred user."""

    __tablename__ = "referral_history"
    __table_args__ = (Index("idx_referral_history_referrer", "referrer_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    referrer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    referred_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    reward_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ReferralCommission(Base):
    """Delayed payout to a referrer. pending -> processed exactly once."""

    __tablename__ = "referral_commissions"
    __table_args__ = (Index("idx_referral_commissions_referrer_status", "referrer_id", "status"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    referrer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    referred_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_reward_id: Mapped[str] = mapped_column(String(128), nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    eligible_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Quiz
# ---------------------------------------------------------------------------


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    correct_option: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="easy")


class QuizSession(Base):
    """Quiz run. question_ids is fixed at creation; answered_ids only grows."""

    __tablename__ = "quiz_sessions"
    __table_args__ = (Index("idx_quiz_sessions_user_status", "user_id", "status"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    question_count: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    question_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    answered_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Audit and rollups
# ---------------------------------------------------------------------------


class PendingReward(Base):
    """Reward queued for later payout by the pending-work processor."""

    __tablename__ = "pending_rewards"
    __table_args__ = (Index("idx_pending_rewards_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reward_type: Mapped[str] = mapped_column(String(32), nullable=False, default="verification")
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    source_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    process_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Transaction(Base):
    """User-facing wallet history. Signed amount."""

    __tablename__ = "transactions"
    __table_args__ = (Index("idx_transactions_user_time", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class RewardLog(Base):
    """Audit trail entry for every credited reward."""

    __tablename__ = "reward_logs"
    __table_args__ = (Index("idx_reward_logs_user_time", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reward_type: Mapped[str] = mapped_column(String(32), nullable=False)
    reward_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    source_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ip_hash: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PlatformMetric(Base):
    """Per-day reward rollup. total_rewards_issued is the all-time running total."""

    __tablename__ = "platform_metrics"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    metric_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    total_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_daily_rewards: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    task_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    referral_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    quiz_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    game_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    code_rewards_issued: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    active_users_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
