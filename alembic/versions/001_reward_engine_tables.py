"""Reward engine tables.

Creates profiles, the task catalog, code windows and redemptions, abuse
flags, referrals and commissions, quiz tables, pending rewards, and the
audit/rollup tables (transactions, reward_logs, platform_metrics).

Revision ID: 001_reward_engine_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reward_engine_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            user_id VARCHAR(128) PRIMARY KEY,
            display_name VARCHAR(64),
            referral_code VARCHAR(16) UNIQUE NOT NULL,
            balance BIGINT NOT NULL DEFAULT 0,
            total_earned BIGINT NOT NULL DEFAULT 0 CHECK (total_earned >= 0),
            xp BIGINT NOT NULL DEFAULT 0 CHECK (xp >= 0),
            level INTEGER NOT NULL DEFAULT 1,
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            daily_streak INTEGER NOT NULL DEFAULT 0,
            last_login DATE,
            referred_by VARCHAR(128),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_profiles_balance
        ON user_profiles(balance DESC)
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id VARCHAR(64) PRIMARY KEY,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL DEFAULT 'social',
            task_type VARCHAR(16) NOT NULL DEFAULT 'one_time',
            reward_amount INTEGER NOT NULL DEFAULT 100,
            xp_reward INTEGER NOT NULL DEFAULT 50,
            required_level INTEGER NOT NULL DEFAULT 0,
            link VARCHAR(512) NOT NULL DEFAULT '',
            is_active BOOLEAN NOT NULL DEFAULT true,
            unlock_metric VARCHAR(32),
            unlock_threshold INTEGER,
            reward_delay_hours INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_tasks (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            task_id VARCHAR(64) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'completed',
            completed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_tasks_user_task
        ON user_tasks(user_id, task_id)
    """)

    # --- Code windows ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS code_windows (
            id BIGSERIAL PRIMARY KEY,
            task_id VARCHAR(64) NOT NULL DEFAULT 'general',
            code VARCHAR(16) NOT NULL,
            valid_from TIMESTAMPTZ NOT NULL,
            valid_until TIMESTAMPTZ NOT NULL,
            max_redemptions INTEGER,
            current_redemptions INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_by_admin VARCHAR(128) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_code_windows_code_active
        ON code_windows(code, is_active)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS redemptions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            window_id BIGINT NOT NULL REFERENCES code_windows(id),
            task_id VARCHAR(64) NOT NULL DEFAULT 'general',
            ip_hash VARCHAR(32) NOT NULL,
            device_hash VARCHAR(128) NOT NULL DEFAULT '',
            user_agent VARCHAR(200) NOT NULL DEFAULT '',
            redeemed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT redemptions_user_id_window_id_key UNIQUE (user_id, window_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_redemptions_user_time
        ON redemptions(user_id, redeemed_at DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_redemptions_ip_time
        ON redemptions(ip_hash, redeemed_at DESC)
    """)

    # --- Abuse flags ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS abuse_flags (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            flag_type VARCHAR(32) NOT NULL,
            severity VARCHAR(16) NOT NULL,
            details JSONB NOT NULL DEFAULT '{}',
            resolved BOOLEAN NOT NULL DEFAULT false,
            resolved_by VARCHAR(128),
            resolved_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_abuse_flags_user_resolved
        ON abuse_flags(user_id, resolved)
    """)

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referral_history (
            id BIGSERIAL PRIMARY KEY,
            referrer_id VARCHAR(128) NOT NULL,
            referred_id VARCHAR(128) UNIQUE NOT NULL,
            reward_amount BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_referral_history_referrer
        ON referral_history(referrer_id, created_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS referral_commissions (
            id BIGSERIAL PRIMARY KEY,
            referrer_id VARCHAR(128) NOT NULL,
            referred_id VARCHAR(128) NOT NULL,
            source_reward_id VARCHAR(128) NOT NULL,
            commission_amount INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            eligible_at TIMESTAMPTZ NOT NULL,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_referral_commissions_referrer_status
        ON referral_commissions(referrer_id, status)
    """)

    # --- Quiz ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_questions (
            id VARCHAR(64) PRIMARY KEY,
            question TEXT NOT NULL,
            options JSONB NOT NULL,
            correct_option INTEGER NOT NULL,
            reward_amount INTEGER NOT NULL DEFAULT 5,
            difficulty VARCHAR(16) NOT NULL DEFAULT 'easy'
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_sessions (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            question_count INTEGER NOT NULL,
            difficulty VARCHAR(16) NOT NULL,
            question_ids JSONB NOT NULL,
            answered_ids JSONB NOT NULL DEFAULT '[]',
            score INTEGER NOT NULL DEFAULT 0,
            total_earned INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quiz_sessions_user_status
        ON quiz_sessions(user_id, status)
    """)

    # --- Pending rewards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS pending_rewards (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            reward_type VARCHAR(32) NOT NULL DEFAULT 'verification',
            reward_amount INTEGER NOT NULL,
            xp_amount INTEGER NOT NULL DEFAULT 50,
            source_id VARCHAR(128),
            source_type VARCHAR(32),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            process_at TIMESTAMPTZ NOT NULL,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_pending_rewards_user_status
        ON pending_rewards(user_id, status)
    """)

    # --- Audit and rollups ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            amount BIGINT NOT NULL,
            type VARCHAR(32) NOT NULL,
            description VARCHAR(256) NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_user_time
        ON transactions(user_id, created_at DESC)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS reward_logs (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            reward_type VARCHAR(32) NOT NULL,
            reward_amount BIGINT NOT NULL,
            source_id VARCHAR(128),
            source_type VARCHAR(32),
            ip_hash VARCHAR(32),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_reward_logs_user_time
        ON reward_logs(user_id, created_at DESC)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS platform_metrics (
            id BIGSERIAL PRIMARY KEY,
            metric_date DATE UNIQUE NOT NULL,
            total_rewards_issued BIGINT NOT NULL DEFAULT 0,
            total_daily_rewards BIGINT NOT NULL DEFAULT 0,
            task_rewards_issued BIGINT NOT NULL DEFAULT 0,
            referral_rewards_issued BIGINT NOT NULL DEFAULT 0,
            quiz_rewards_issued BIGINT NOT NULL DEFAULT 0,
            game_rewards_issued BIGINT NOT NULL DEFAULT 0,
            code_rewards_issued BIGINT NOT NULL DEFAULT 0,
            active_users_today INTEGER NOT NULL DEFAULT 0
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS platform_metrics CASCADE")
    op.execute("DROP TABLE IF EXISTS reward_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS pending_rewards CASCADE")
    op.execute("DROP TABLE IF EXISTS quiz_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS quiz_questions CASCADE")
    op.execute("DROP TABLE IF EXISTS referral_commissions CASCADE")
    op.execute("DROP TABLE IF EXISTS referral_history CASCADE")
    op.execute("DROP TABLE IF EXISTS abuse_flags CASCADE")
    op.execute("DROP TABLE IF EXISTS redemptions CASCADE")
    op.execute("DROP TABLE IF EXISTS code_windows CASCADE")
    op.execute("DROP TABLE IF EXISTS user_tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS user_profiles CASCADE")
