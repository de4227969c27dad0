"""Level computation.

Levels are flat: every XP_PER_LEVEL experience points is one level, starting
at level 1 with zero XP.
"""

from __future__ import annotations

XP_PER_LEVEL = 1_000_000


def compute_level(xp: int) -> int:
    """Level for a non-negative XP total."""
    if xp < 0:
        raise ValueError("XP cannot be negative")
    return xp // XP_PER_LEVEL + 1


def level_progress(xp: int) -> dict:
    """Level plus progress towards the next one, for profile views."""
    level = compute_level(xp)
    xp_into_level = xp - (level - 1) * XP_PER_LEVEL
    return {
        "level": level,
        "xp_into_level": xp_into_level,
        "xp_for_level": XP_PER_LEVEL,
        "next_level": level + 1,
        "progress_percent": round(xp_into_level * 100 / XP_PER_LEVEL, 2),
    }
