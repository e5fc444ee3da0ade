# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time code store: issue, verify and purge codes per (subject, purpose).

At most one code is active per pair; the ``uq_otp_codes_subject_purpose``
constraint is the authority when two requests race. Codes are stored as
sha256 digests and deleted on first successful use.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Mapping

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.config import settings
from viot_identity.exceptions import Expired, NotFound, RateLimited
from viot_identity.models import OtpCode, OtpPurpose, UsedResetToken

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
INVALID_CODE_MESSAGE = "Invalid or expired code."


@dataclass(frozen=True)
class OtpPolicy:
    """Timing rules for one purpose."""

    cooldown: timedelta
    expiry: timedelta


def _build_policies() -> Mapping[OtpPurpose, OtpPolicy]:
    resend = timedelta(seconds=settings.otp_resend_cooldown_seconds)
    expiry = timedelta(seconds=settings.otp_expire_seconds)
    return MappingProxyType({
        OtpPurpose.SIGNUP_VERIFY: OtpPolicy(cooldown=resend, expiry=expiry),
        OtpPurpose.LOGIN_RESET: OtpPolicy(
            cooldown=timedelta(seconds=settings.otp_reset_request_cooldown_seconds),
            expiry=expiry,
        ),
        OtpPurpose.PHONE_CHANGE_OLD: OtpPolicy(cooldown=resend, expiry=expiry),
        OtpPurpose.PHONE_CHANGE_NEW: OtpPolicy(cooldown=resend, expiry=expiry),
    })


OTP_POLICIES = _build_policies()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def user_subject(user_id: int) -> str:
    """Subject used for codes bound to an account rather than a raw number."""
    return f"user:{user_id}"


def generate_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(CODE_LENGTH))


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


async def get_active(db: AsyncSession, subject: str, purpose: OtpPurpose) -> OtpCode | None:
    result = await db.execute(
        select(OtpCode).where(OtpCode.subject == subject, OtpCode.purpose == purpose)
    )
    return result.scalar_one_or_none()


async def issue(
    db: AsyncSession,
    subject: str,
    purpose: OtpPurpose,
    target: str | None = None,
) -> str:
    """Replace any code for (subject, purpose) with a fresh one and return it.

    Raises RateLimited while the previous code is younger than the purpose's
    cooldown; the previous code is left untouched in that case. The caller
    commits and delivers the code.
    """
    policy = OTP_POLICIES[purpose]
    now = utcnow()
    existing = await get_active(db, subject, purpose)
    if existing is not None and now - as_utc(existing.created_at) < policy.cooldown:
        raise RateLimited()

    await discard(db, subject, purpose)
    code = generate_code()
    db.add(
        OtpCode(
            subject=subject,
            purpose=purpose,
            code_hash=hash_code(code),
            target=target,
            created_at=now,
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent request issued a code for the same pair first
        await db.rollback()
        raise RateLimited()
    logger.debug("Issued %s code for %s", purpose.value, subject)
    return code


async def verify(
    db: AsyncSession,
    subject: str,
    purpose: OtpPurpose,
    code: str,
    target: str | None = None,
) -> None:
    """Consume the active code for (subject, purpose).

    Missing entry, wrong code and wrong target all raise the same NotFound
    so callers cannot tell them apart. A matching code past the expiry
    window is deleted and raises Expired.
    """
    entry = await get_active(db, subject, purpose)
    if (
        entry is None
        or not hmac.compare_digest(entry.code_hash, hash_code(code or ""))
        or (target is not None and entry.target != target)
    ):
        raise NotFound(INVALID_CODE_MESSAGE)

    if utcnow() - as_utc(entry.created_at) > OTP_POLICIES[purpose].expiry:
        await db.execute(delete(OtpCode).where(OtpCode.id == entry.id))
        await db.commit()
        raise Expired()

    result = await db.execute(delete(OtpCode).where(OtpCode.id == entry.id))
    if result.rowcount != 1:
        # Consumed by a concurrent request
        raise NotFound(INVALID_CODE_MESSAGE)


async def purge_expired(db: AsyncSession) -> int:
    """Delete codes past the retention window and expired reset-token ledger rows."""
    now = utcnow()
    cutoff = now - timedelta(seconds=settings.otp_retention_seconds)
    codes = await db.execute(delete(OtpCode).where(OtpCode.created_at < cutoff))
    await db.execute(delete(UsedResetToken).where(UsedResetToken.expires_at < now))
    await db.commit()
    return codes.rowcount or 0


async def discard(db: AsyncSession, subject: str, purpose: OtpPurpose) -> None:
    """Drop any pending code for (subject, purpose) without issuing a new one."""
    await db.execute(
        delete(OtpCode).where(OtpCode.subject == subject, OtpCode.purpose == purpose)
    )
