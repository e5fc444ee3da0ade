# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Account workflows: registration, phone verification, login and credential rotation.

Every workflow runs on the caller's session, re-reads state from the
database, and raises an ``AccountError`` subclass on failure. Codes are
committed before they are handed to the SMS gateway, so a failed delivery
leaves the stored code (and its cooldown) in place. Nothing here retries.
"""

import enum
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.auth import (
    TokenKind,
    create_access_token,
    create_refresh_token,
    create_reset_token,
    decode_token,
    token_user_id,
    verify_password,
)
from viot_identity.config import settings
from viot_identity.exceptions import (
    DeliveryFailed,
    DuplicatePhoneOrEmail,
    Forbidden,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    NotVerified,
    ValidationError,
)
from viot_identity.models import OtpCode, OtpPurpose, Role, UsedResetToken, User
from viot_identity.services import otp
from viot_identity.services.identity import (
    RegistrationData,
    ensure_public_id,
    get_by_phone,
    get_by_public_id,
    hash_credential_if_changed,
    normalize_email,
    normalize_phone,
    normalize_registration,
    public_projection,
    translate_integrity_error,
    verified_holder_exists,
)
from viot_identity.services.sms import SmsGateway

logger = logging.getLogger(__name__)

# Roles an admin may create directly, skipping phone verification
ADMIN_ISSUABLE_ROLES = frozenset({Role.TEACHER, Role.STORE, Role.ADMIN})


class OtpAction(str, enum.Enum):
    VERIFY = "verify"
    RESEND = "resend"


# Results


@dataclass(frozen=True)
class Outcome:
    message: str

    def payload(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("message")
        return data


@dataclass(frozen=True)
class UserOutcome(Outcome):
    user: dict[str, Any]


@dataclass(frozen=True)
class UsersOutcome(Outcome):
    users: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SessionOutcome(Outcome):
    access_token: str
    refresh_token: str
    user: dict[str, Any]


@dataclass(frozen=True)
class RefreshOutcome(Outcome):
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class ResetTokenOutcome(Outcome):
    reset_token: str


@dataclass(frozen=True)
class UserUpdate:
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    role: Role | None = None


# Helpers


def parse_action(action: str | None) -> OtpAction:
    try:
        return OtpAction(action)
    except ValueError:
        raise ValidationError("Invalid action.")


async def _deliver(gateway: SmsGateway, phone_number: str, code: str) -> None:
    if not await gateway.send(phone_number, code):
        logger.warning("Code delivery to %s failed", phone_number)
        raise DeliveryFailed()


async def _load_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound()
    return user


def _session_outcome(message: str, user: User) -> SessionOutcome:
    return SessionOutcome(
        message=message,
        access_token=create_access_token(user),
        refresh_token=create_refresh_token(user),
        user=public_projection(user),
    )


async def _save(db: AsyncSession) -> None:
    """Flush pending user changes, translating unique violations."""
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise translate_integrity_error(e)


# Registration


async def register_identity(
    db: AsyncSession,
    gateway: SmsGateway | None,
    data: RegistrationData,
    issued_by_admin: bool = False,
) -> UserOutcome:
    """Create or refresh an account.

    Only verified records block a phone number or email. A pending
    (unverified) record holding the same phone is overwritten with the new
    details. Self-service signups stay unverified and receive a
    signup-verify code; admin-issued ones are verified immediately.
    """
    if gateway is None and not issued_by_admin:
        raise ValueError("A gateway is required for self-service signup")
    data = normalize_registration(data)
    if not issued_by_admin and data.role != Role.STUDENT:
        raise ValidationError("Self-service signup creates student accounts only.")

    if await verified_holder_exists(db, data.phone_number, data.email):
        raise DuplicatePhoneOrEmail()

    user = await get_by_phone(db, data.phone_number)
    if user is None:
        user = User(phone_number=data.phone_number, is_verified=False, score=0)
        db.add(user)
    user.first_name = data.first_name
    user.last_name = data.last_name
    user.email = data.email
    user.role = data.role
    await ensure_public_id(db, user)
    hash_credential_if_changed(user, data.password)
    if issued_by_admin:
        user.is_verified = True
    await _save(db)

    code = None
    if issued_by_admin:
        await otp.discard(db, data.phone_number, OtpPurpose.SIGNUP_VERIFY)
    else:
        code = await otp.issue(db, data.phone_number, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await db.refresh(user)

    if code is None:
        logger.info("User %s registered by admin as %s", user.public_id, user.role.value)
        return UserOutcome(
            message=f"{user.role.value.capitalize()} registered successfully by admin.",
            user=public_projection(user),
        )

    logger.info("User %s signed up, awaiting phone verification", user.public_id)
    await _deliver(gateway, data.phone_number, code)
    return UserOutcome(message="Signup successful. Code sent to phone.", user=public_projection(user))


async def admin_register(
    db: AsyncSession,
    admin: User,
    data: RegistrationData,
) -> UserOutcome:
    """Register a trusted account on behalf of an admin. No OTP is involved."""
    if admin.role != Role.ADMIN:
        raise Forbidden("Access denied. Admins only.")
    if data.role not in ADMIN_ISSUABLE_ROLES:
        raise ValidationError("Role must be one of teacher, store or admin.")
    return await register_identity(db, None, data, issued_by_admin=True)


async def handle_signup_otp(
    db: AsyncSession,
    gateway: SmsGateway,
    phone_number: str | None,
    action: str | None,
    code: str | None = None,
) -> Outcome:
    """Verify the signup code (activating the account) or resend it.

    Verifying against an unknown or already verified number fails exactly
    like a wrong code, so the answer does not reveal whether an account
    exists.
    """
    phone = normalize_phone(phone_number)
    action = parse_action(action)
    user = await get_by_phone(db, phone)

    if action == OtpAction.VERIFY:
        if not code:
            raise ValidationError("Code is required for verification.")
        if user is None:
            raise NotFound(otp.INVALID_CODE_MESSAGE)
        await otp.verify(db, phone, OtpPurpose.SIGNUP_VERIFY, code)
        flipped = await db.execute(
            update(User)
            .where(User.id == user.id, User.is_verified.is_(False))
            .values(is_verified=True)
        )
        if flipped.rowcount != 1:
            raise NotFound(otp.INVALID_CODE_MESSAGE)
        await db.commit()
        await db.refresh(user)
        logger.info("User %s verified phone number", user.public_id)
        return _session_outcome("Phone number verified successfully.", user)

    if user is None:
        raise NotFound()
    if user.is_verified:
        raise ValidationError("User already verified.")
    new_code = await otp.issue(db, phone, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await _deliver(gateway, phone, new_code)
    return Outcome(message="Code resent successfully.")


# Sessions


async def login(db: AsyncSession, phone_number: str | None, password: str | None) -> SessionOutcome:
    if not phone_number:
        raise ValidationError("Phone number is required.")
    if not password:
        raise ValidationError("Password is required.")
    user = await get_by_phone(db, normalize_phone(phone_number))
    if user is None:
        raise NotFound()
    if not user.is_verified:
        raise NotVerified()
    if not verify_password(password, user.password_hash):
        raise InvalidCredentials()

    user.last_login = otp.utcnow()
    await db.commit()
    await db.refresh(user)
    logger.info("User %s logged in", user.public_id)
    return _session_outcome("Login successful.", user)


async def refresh_session(db: AsyncSession, refresh_token: str | None) -> RefreshOutcome:
    """Exchange a refresh token for a new access token and a rotated refresh token."""
    if not refresh_token:
        raise InvalidToken("Refresh token required.")
    payload = decode_token(refresh_token, TokenKind.REFRESH)
    user = await _load_user(db, token_user_id(payload))
    if not user.is_verified:
        raise NotVerified()
    return RefreshOutcome(
        message="Token refreshed.",
        access_token=create_access_token(user),
        refresh_token=create_refresh_token(user),
    )


def get_profile(user: User) -> UserOutcome:
    return UserOutcome(message="User found.", user=public_projection(user))


# Forgotten password


async def request_password_reset(
    db: AsyncSession,
    gateway: SmsGateway,
    phone_number: str | None,
) -> Outcome:
    phone = normalize_phone(phone_number)
    if await get_by_phone(db, phone) is None:
        raise NotFound()
    code = await otp.issue(db, phone, OtpPurpose.LOGIN_RESET)
    await db.commit()
    await _deliver(gateway, phone, code)
    return Outcome(message="Code sent for password reset.")


async def handle_reset_otp(
    db: AsyncSession,
    gateway: SmsGateway,
    phone_number: str | None,
    action: str | None,
    code: str | None = None,
) -> Outcome:
    """Trade the reset code for a reset token, or resend the code."""
    phone = normalize_phone(phone_number)
    action = parse_action(action)
    user = await get_by_phone(db, phone)

    if action == OtpAction.VERIFY:
        if not code:
            raise ValidationError("Code is required for verification.")
        if user is None:
            raise NotFound(otp.INVALID_CODE_MESSAGE)
        await otp.verify(db, phone, OtpPurpose.LOGIN_RESET, code)
        await db.commit()
        return ResetTokenOutcome(message="Code verified.", reset_token=create_reset_token(user))

    if user is None:
        raise NotFound()
    new_code = await otp.issue(db, phone, OtpPurpose.LOGIN_RESET)
    await db.commit()
    await _deliver(gateway, phone, new_code)
    return Outcome(message="Code resent successfully.")


async def reset_password(
    db: AsyncSession,
    reset_token: str | None,
    new_password: str | None,
) -> Outcome:
    """Overwrite the credential using a reset token. Each token works once."""
    if not reset_token or not new_password:
        raise ValidationError("Reset token and new password are required.")
    payload = decode_token(reset_token, TokenKind.RESET)
    jti = payload.get("jti")
    if not jti or not isinstance(payload.get("exp"), (int, float)):
        raise InvalidToken()
    user = await _load_user(db, token_user_id(payload))
    if payload.get("phone_number") != user.phone_number:
        raise InvalidToken()

    db.add(
        UsedResetToken(
            jti=jti,
            user_id=user.id,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    )
    hash_credential_if_changed(user, new_password)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise InvalidToken("Reset token already used.")
    await db.commit()
    logger.info("User %s reset password", user.public_id)
    return Outcome(message="Password updated successfully.")


# Authenticated credential changes


def verify_current_password(user: User, password: str | None) -> Outcome:
    if not password:
        raise ValidationError("Current password is required.")
    if not verify_password(password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect.")
    return Outcome(message="Current password verified.")


async def change_password(
    db: AsyncSession,
    user: User,
    current_password: str | None,
    new_password: str | None,
) -> Outcome:
    if not current_password or not new_password:
        raise ValidationError("Current and new password are required.")
    verify_current_password(user, current_password)
    hash_credential_if_changed(user, new_password)
    await db.commit()
    logger.info("User %s changed password", user.public_id)
    return Outcome(message="Password changed successfully.")


def _require_clearance(user: User) -> None:
    """The current number must have been re-verified recently."""
    cleared_at = user.phone_change_cleared_at
    window = timedelta(seconds=settings.otp_retention_seconds)
    if cleared_at is None or otp.utcnow() - otp.as_utc(cleared_at) > window:
        raise ValidationError("Verify your current phone number first.")


async def send_current_phone_otp(db: AsyncSession, gateway: SmsGateway, user: User) -> Outcome:
    code = await otp.issue(db, otp.user_subject(user.id), OtpPurpose.PHONE_CHANGE_OLD)
    await db.commit()
    await _deliver(gateway, user.phone_number, code)
    return Outcome(message="Code sent to current phone number.")


async def verify_current_phone_otp(db: AsyncSession, user: User, code: str | None) -> Outcome:
    if not code:
        raise ValidationError("Code is required for verification.")
    await otp.verify(db, otp.user_subject(user.id), OtpPurpose.PHONE_CHANGE_OLD, code)
    user.phone_change_cleared_at = otp.utcnow()
    await db.commit()
    return Outcome(message="Current number verified. You can now enter a new number.")


async def send_new_phone_otp(
    db: AsyncSession,
    gateway: SmsGateway,
    user: User,
    new_phone_number: str | None,
) -> Outcome:
    new_phone = normalize_phone(new_phone_number)
    if new_phone == user.phone_number:
        raise ValidationError("New phone number matches the current one.")
    _require_clearance(user)
    if await verified_holder_exists(db, phone_number=new_phone, exclude_id=user.id):
        raise DuplicatePhoneOrEmail("Phone number already in use.")
    code = await otp.issue(
        db, otp.user_subject(user.id), OtpPurpose.PHONE_CHANGE_NEW, target=new_phone
    )
    await db.commit()
    await _deliver(gateway, new_phone, code)
    return Outcome(message="Code sent to new phone number.")


async def verify_new_phone_and_update(
    db: AsyncSession,
    user: User,
    new_phone_number: str | None,
    code: str | None,
) -> UserOutcome:
    """Consume the new-number code and move the account to that number."""
    new_phone = normalize_phone(new_phone_number)
    if not code:
        raise ValidationError("Code is required for verification.")
    _require_clearance(user)
    if await verified_holder_exists(db, phone_number=new_phone, exclude_id=user.id):
        raise DuplicatePhoneOrEmail("Phone number already in use.")
    await otp.verify(
        db, otp.user_subject(user.id), OtpPurpose.PHONE_CHANGE_NEW, code, target=new_phone
    )
    pending = await get_by_phone(db, new_phone)
    if pending is not None:
        # Only an unverified signup can still hold the number here
        logger.info("Dropping pending signup %s holding %s", pending.public_id, new_phone)
        await _remove_identity(db, pending)
    old_phone = user.phone_number
    user.phone_number = new_phone
    user.phone_change_cleared_at = None
    await _save(db)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s changed phone number from %s to %s", user.public_id, old_phone, new_phone)
    return UserOutcome(message="Phone number updated successfully.", user=public_projection(user))


# Admin user management


async def _remove_identity(db: AsyncSession, user: User) -> None:
    """Delete a record with its codes and reset-token ledger rows."""
    await db.execute(
        delete(OtpCode).where(
            OtpCode.subject.in_([user.phone_number, otp.user_subject(user.id)])
        )
    )
    await db.execute(delete(UsedResetToken).where(UsedResetToken.user_id == user.id))
    await db.delete(user)
    await db.flush()


async def list_users(db: AsyncSession) -> UsersOutcome:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    users = result.scalars().all()
    return UsersOutcome(message="Users found.", users=[public_projection(u) for u in users])


async def update_user(db: AsyncSession, public_id: int, changes: UserUpdate) -> UserOutcome:
    user = await get_by_public_id(db, public_id)
    if user is None:
        raise NotFound()

    if changes.first_name and changes.first_name.strip():
        user.first_name = changes.first_name.strip()
    if changes.last_name and changes.last_name.strip():
        user.last_name = changes.last_name.strip()
    if changes.email:
        email = normalize_email(changes.email)
        if await verified_holder_exists(db, email=email, exclude_id=user.id):
            raise DuplicatePhoneOrEmail()
        user.email = email
    if changes.phone_number:
        phone = normalize_phone(changes.phone_number)
        if await verified_holder_exists(db, phone_number=phone, exclude_id=user.id):
            raise DuplicatePhoneOrEmail()
        user.phone_number = phone
    if changes.role is not None:
        user.role = changes.role

    await _save(db)
    await db.commit()
    await db.refresh(user)
    logger.info("Admin updated user %s", public_id)
    return UserOutcome(message="User updated successfully.", user=public_projection(user))


async def delete_user(db: AsyncSession, public_id: int) -> Outcome:
    user = await get_by_public_id(db, public_id)
    if user is None:
        raise NotFound()
    await _remove_identity(db, user)
    await db.commit()
    logger.info("Admin deleted user %s", public_id)
    return Outcome(message="User deleted successfully.")
