"""Savepoint helpers for secondary bookkeeping."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@asynccontextmanager
async def best_effort(db: AsyncSession, event: str, **context: Any) -> AsyncIterator[None]:
    """Run the block inside a SAVEPOINT; on failure roll it back, log, and carry on.

    Used for steps whose failure must never unwind the primary reward
    (referral commission propagation, metric rollups, per-item pending work).
    """
    try:
        async with db.begin_nested():
            yield
    except Exception:
        logger.warning(event, exc_info=True, **context)
