# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication: password hashing and access/refresh/reset JWTs."""

import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.config import settings
from viot_identity.database import get_db
from viot_identity.exceptions import InvalidToken, NotFound, NotVerified
from viot_identity.models import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    RESET = "reset"


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain, hashed)


def _secret_for(kind: TokenKind) -> str:
    return {
        TokenKind.ACCESS: settings.access_token_secret,
        TokenKind.REFRESH: settings.refresh_token_secret,
        TokenKind.RESET: settings.reset_token_secret,
    }[kind]


def _encode(claims: dict[str, Any], kind: TokenKind, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = claims.copy()
    to_encode.update({"type": kind.value, "iat": now, "exp": now + expires_delta})
    return jwt.encode(to_encode, _secret_for(kind), algorithm=settings.jwt_algorithm)


def create_access_token(user: User) -> str:
    """Short-lived session token carrying id, role and email."""
    return _encode(
        {"sub": str(user.id), "role": user.role.value, "email": user.email},
        TokenKind.ACCESS,
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user: User) -> str:
    return _encode(
        {"sub": str(user.id), "role": user.role.value},
        TokenKind.REFRESH,
        timedelta(days=settings.refresh_token_expire_days),
    )


def create_reset_token(user: User) -> str:
    """Single-purpose password reset token.

    Signed with the reset secret so it can never pass as a session token.
    The ``jti`` lets the reset workflow record the token as consumed.
    """
    return _encode(
        {"sub": str(user.id), "phone_number": user.phone_number, "jti": uuid.uuid4().hex},
        TokenKind.RESET,
        timedelta(minutes=settings.reset_token_expire_minutes),
    )


def decode_token(token: str, kind: TokenKind) -> dict[str, Any]:
    """Decode and validate a JWT of the given kind. Raises InvalidToken."""
    if not token:
        raise InvalidToken("Token missing.")
    try:
        payload = jwt.decode(token, _secret_for(kind), algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise InvalidToken()
    if payload.get("type") != kind.value or not payload.get("sub"):
        raise InvalidToken()
    return payload


def token_user_id(payload: dict[str, Any]) -> int:
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidToken()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from a Bearer access token."""
    if not credentials:
        raise InvalidToken("Not authenticated.")
    payload = decode_token(credentials.credentials, TokenKind.ACCESS)
    result = await db.execute(select(User).where(User.id == token_user_id(payload)))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound()
    return user


async def get_verified_user(user: User = Depends(get_current_user)) -> User:
    """Dependency: caller must hold a verified account."""
    if not user.is_verified:
        raise NotVerified()
    return user
