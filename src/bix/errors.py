"""Engine error taxonomy.

Every error raised on purpose by the engine derives from RewardEngineError and
carries the HTTP status the error handler should answer with. Anything else
reaching the handler is treated as an internal failure.
"""

from __future__ import annotations


class RewardEngineError(Exception):
    """Base class for errors that are safe to show to the caller."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RewardEngineError):
    """Malformed or missing fields, out-of-range values."""

    status_code = 400


class AuthError(RewardEngineError):
    """Missing or invalid bearer token."""

    status_code = 401


class ForbiddenError(RewardEngineError):
    """Authenticated, but not allowed (e.g. admin-only action)."""

    status_code = 403


class RateLimitError(RewardEngineError):
    """Window exceeded or lockout active. Retryable after the window resets."""

    status_code = 429

    def __init__(self, message: str, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class BusinessRuleViolation(RewardEngineError, ValueError):
    """A reward rule refused the request (already completed, expired code, ...)."""

    status_code = 400


class NotFoundError(RewardEngineError):
    """Missing profile, task, session or question."""

    status_code = 404
