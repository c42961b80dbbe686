"""
Authentication & Authorization — JWT (user login) and API-key (programmatic) auth.

- Web/frontend: JWT from login/register, sent as Authorization: Bearer <jwt>
  or in the `jwt` cookie set at login.
- Programmatic clients: X-API-Key: <key> created under /api/keys.
"""

import logging
import uuid
from typing import Optional
from fastapi import Depends, HTTPException, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from adspirer.database import get_db
from adspirer.models import User, ApiKey
from adspirer.services.auth_service import decode_access_token
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

AUTH_COOKIE_NAME = "jwt"


def _extract_jwt(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(AUTH_COOKIE_NAME)


async def _user_from_api_key(key_value: str, db: AsyncSession) -> User:
    result = await db.execute(
        select(ApiKey).where(ApiKey.key_value == key_value, ApiKey.is_active == True)  # noqa: E712
    )
    api_key = result.scalar_one_or_none()
    if not api_key:
        raise HTTPException(status_code=401, detail="Invalid or inactive API key")

    api_key.last_used_at = utcnow()
    api_key.request_count = (api_key.request_count or 0) + 1

    user = await db.get(User, api_key.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")
    return user


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    x_api_key: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the calling user from a JWT (header or cookie) or an X-API-Key.
    Every user-scoped endpoint depends on this.
    """
    token = _extract_jwt(request, credentials)
    if not token:
        if x_api_key:
            return await _user_from_api_key(x_api_key, db)
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")

    try:
        user = await db.get(User, uuid.UUID(str(payload["sub"])))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")

    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require current user to be admin."""
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
