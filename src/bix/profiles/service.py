"""Profile lookups and first-login provisioning."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select

from bix.codes.generator import generate_code, normalize_code
from bix.db.models import ReferralHistory, UserProfile
from bix.errors import ForbiddenError, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

ROLES = frozenset({"user", "admin"})


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_profile(db: AsyncSession, user_id: str) -> UserProfile | None:
    """Fetch a profile by user id."""
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    return result.scalar_one_or_none()


async def require_profile(db: AsyncSession, user_id: str) -> UserProfile:
    """Fetch a profile or raise NotFoundError."""
    profile = await get_profile(db, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


async def get_profile_by_referral_code(db: AsyncSession, referral_code: str) -> UserProfile | None:
    result = await db.execute(
        select(UserProfile).where(UserProfile.referral_code == normalize_code(referral_code))
    )
    return result.scalar_one_or_none()


async def count_referrals(db: AsyncSession, referrer_id: str) -> int:
    """Number of users this user has referred."""
    count = await db.scalar(
        select(func.count()).select_from(ReferralHistory).where(ReferralHistory.referrer_id == referrer_id)
    )
    return count or 0


def ensure_admin(profile: UserProfile) -> None:
    if profile.role != "admin":
        raise ForbiddenError("Admin access required")


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


async def _unique_referral_code(db: AsyncSession) -> str:
    for _ in range(10):
        code = generate_code()
        if await get_profile_by_referral_code(db, code) is None:
            return code
    raise RuntimeError("Failed to generate unique referral code after 10 attempts")


async def get_or_create_profile(
    db: AsyncSession,
    user_id: str,
    *,
    display_name: str | None = None,
    admin_user_ids: frozenset[str] | set[str] = frozenset(),
) -> tuple[UserProfile, bool]:
    """Return the caller's profile, creating it on first sight.

    Returns:
        Tuple of (profile, created).
    """
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile, False

    profile = UserProfile(
        user_id=user_id,
        display_name=display_name,
        referral_code=await _unique_referral_code(db),
        balance=0,
        total_earned=0,
        xp=0,
        level=1,
        role="admin" if user_id in admin_user_ids else "user",
        daily_streak=0,
    )
    db.add(profile)
    await db.flush()
    logger.info("profile_created", user_id=user_id, role=profile.role)
    return profile, True
