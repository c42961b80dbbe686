"""
Auth Router — Register, login, logout, whoami.
The JWT is returned in the body and also set as the `jwt` cookie.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from adspirer.auth import get_current_user, AUTH_COOKIE_NAME
from adspirer.config import get_settings
from adspirer.database import get_db
from adspirer.models import User
from adspirer.services.auth_service import (
    hash_password,
    verify_password,
    create_access_token,
    MIN_PASSWORD_LENGTH,
)
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


# ── Schemas ────────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str | None = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class WhoAmIResponse(BaseModel):
    id: str
    email: str
    name: str | None
    role: str
    is_active: bool


def _user_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "is_active": user.is_active,
    }


def _set_auth_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=settings.jwt_expire_days * 24 * 3600,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


# ── Endpoints ───────────────────────────────────────────────────────────

@router.post("/auth/register", response_model=TokenResponse, status_code=201)
async def register(payload: RegisterRequest, response: Response, db: AsyncSession = Depends(get_db)):
    """Create an account and log it in."""
    email = payload.email.lower()
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name or email.split("@")[0],
        role="user",
        is_active=True,
        last_login_at=utcnow(),
    )
    db.add(user)
    await db.flush()
    logger.info(f"Registered user {user.email}")

    token = create_access_token(str(user.id), user.email, user.role)
    _set_auth_cookie(response, token)
    return TokenResponse(access_token=token, user=_user_dict(user))


@router.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest, response: Response, db: AsyncSession = Depends(get_db)):
    """Login with email and password. Returns JWT."""
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user.last_login_at = utcnow()
    await db.flush()

    token = create_access_token(str(user.id), user.email, user.role)
    _set_auth_cookie(response, token)
    return TokenResponse(access_token=token, user=_user_dict(user))


@router.post("/auth/logout")
async def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE_NAME)
    return {"success": True}


@router.get("/auth/whoami", response_model=WhoAmIResponse)
async def whoami(user: User = Depends(get_current_user)):
    """Return current user (requires JWT or API key)."""
    return WhoAmIResponse(**_user_dict(user))


@router.get("/user", response_model=WhoAmIResponse)
async def current_user(user: User = Depends(get_current_user)):
    return WhoAmIResponse(**_user_dict(user))
