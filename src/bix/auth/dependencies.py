"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bix.auth.tokens import verify_token
from bix.config import get_settings
from bix.database import get_session
from bix.db.models import UserProfile
from bix.errors import AuthError
from bix.profiles.service import get_or_create_profile

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str:
    """Verify the bearer token and return its subject. Raises 401 on failure."""
    if credentials is None:
        raise AuthError("Unauthorized")
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise AuthError(str(e)) from e
    return str(payload["sub"])


async def get_current_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> UserProfile:
    """Resolve the caller to a profile, provisioning it on first request."""
    settings = get_settings()
    profile, created = await get_or_create_profile(
        db, user_id, admin_user_ids=frozenset(settings.admin_user_ids)
    )
    if created:
        await db.commit()
    return profile
