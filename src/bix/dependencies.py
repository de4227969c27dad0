"""Shared FastAPI dependencies."""

from fastapi import Request

from bix.database import get_session as _get_session
from bix.guard.rate_limiter import RateLimiter

get_db = _get_session


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the process-wide limiter created by create_app()."""
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter
