# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Identity record helpers: normalization, pre-write steps, lookups and projection."""

import re
import secrets
from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.auth import hash_password
from viot_identity.exceptions import AccountError, DuplicatePhoneOrEmail, Internal, ValidationError
from viot_identity.models import Role, User

PUBLIC_ID_MIN = 1_000_000
PUBLIC_ID_MAX = 9_999_999
PUBLIC_ID_ATTEMPTS = 10

PHONE_RE = re.compile(r"^\+?\d{6,15}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class RegistrationData:
    first_name: str
    last_name: str
    email: str
    phone_number: str
    password: str
    role: Role = Role.STUDENT


def normalize_phone(phone_number: str | None) -> str:
    phone = (phone_number or "").strip()
    if not phone:
        raise ValidationError("Phone number is required.")
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone number is malformed.")
    return phone


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not value:
        raise ValidationError("Email is required.")
    if not EMAIL_RE.match(value):
        raise ValidationError("Email is malformed.")
    return value


def normalize_registration(data: RegistrationData) -> RegistrationData:
    """Trim and lower-case fields; raise ValidationError when any is missing."""
    first_name = (data.first_name or "").strip()
    last_name = (data.last_name or "").strip()
    if not first_name or not last_name or not data.password:
        raise ValidationError("All fields are required.")
    return replace(
        data,
        first_name=first_name,
        last_name=last_name,
        email=normalize_email(data.email),
        phone_number=normalize_phone(data.phone_number),
    )


def is_valid_public_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and PUBLIC_ID_MIN <= value <= PUBLIC_ID_MAX


async def ensure_public_id(db: AsyncSession, user: User) -> None:
    """Give the record a free 7-digit public id unless it already has a valid one."""
    if is_valid_public_id(user.public_id):
        return
    for _ in range(PUBLIC_ID_ATTEMPTS):
        candidate = PUBLIC_ID_MIN + secrets.randbelow(PUBLIC_ID_MAX - PUBLIC_ID_MIN + 1)
        taken = await db.scalar(select(User.id).where(User.public_id == candidate))
        if taken is None:
            user.public_id = candidate
            return
    raise Internal("Could not allocate a public id.")


def hash_credential_if_changed(user: User, password: str | None) -> None:
    """Store a bcrypt hash when a new plaintext credential was supplied."""
    if password:
        user.password_hash = hash_password(password)


def translate_integrity_error(exc: IntegrityError) -> AccountError:
    """Map a unique-constraint violation on users to a domain error."""
    text = str(exc.orig) if exc.orig is not None else str(exc)
    if "phone_number" in text or "email" in text:
        return DuplicatePhoneOrEmail()
    return Internal("Could not save user.")


async def get_by_phone(db: AsyncSession, phone_number: str) -> User | None:
    result = await db.execute(select(User).where(User.phone_number == phone_number))
    return result.scalar_one_or_none()


async def get_by_public_id(db: AsyncSession, public_id: int) -> User | None:
    result = await db.execute(select(User).where(User.public_id == public_id))
    return result.scalar_one_or_none()


async def verified_holder_exists(
    db: AsyncSession,
    phone_number: str | None = None,
    email: str | None = None,
    exclude_id: int | None = None,
) -> bool:
    """True if a verified record other than ``exclude_id`` holds the phone or email."""
    clauses = []
    if phone_number:
        clauses.append(User.phone_number == phone_number)
    if email:
        clauses.append(User.email == email)
    if not clauses:
        return False
    query = select(User.id).where(User.is_verified.is_(True), or_(*clauses))
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return await db.scalar(query.limit(1)) is not None


def public_projection(user: User) -> dict[str, Any]:
    """User fields safe to return to callers (no credential hash)."""
    return {
        "id": user.id,
        "public_id": user.public_id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone_number": user.phone_number,
        "role": user.role.value,
        "is_verified": user.is_verified,
        "score": user.score,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }
