# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes: signup, verification, login and credential changes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from viot_identity.api.schemas import (
    ChangePasswordRequest,
    CodeRequest,
    CurrentPasswordRequest,
    LoginRequest,
    NewPhoneRequest,
    NewPhoneVerifyRequest,
    OtpActionRequest,
    RefreshRequest,
    ResetPasswordRequest,
    ResetRequest,
    SignupRequest,
)
from viot_identity.auth import get_current_user, get_verified_user
from viot_identity.database import get_db
from viot_identity.models import User
from viot_identity.services import accounts
from viot_identity.services.identity import RegistrationData
from viot_identity.services.sms import SmsGateway, get_sms_gateway

router = APIRouter(prefix="/auth", tags=["auth"])


def respond(outcome: accounts.Outcome) -> dict:
    """Shape a workflow result as {success, message, ...payload}."""
    return {"success": True, "message": outcome.message, **outcome.payload()}


@router.post("/register")
async def register(
    data: SignupRequest,
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """Create an unverified account and text a verification code."""
    outcome = await accounts.register_identity(
        db,
        gateway,
        RegistrationData(
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            phone_number=data.phone_number,
            password=data.password,
        ),
    )
    return respond(outcome)


@router.post("/verify-signup-otp")
async def verify_signup_otp(
    data: OtpActionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """action=verify activates the account and returns tokens; action=resend texts a new code."""
    outcome = await accounts.handle_signup_otp(db, gateway, data.phone_number, data.action, data.code)
    return respond(outcome)


@router.post("/login")
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Authenticate by phone number and password."""
    return respond(await accounts.login(db, data.phone_number, data.password))


@router.post("/refresh-token")
async def refresh_token(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return respond(await accounts.refresh_session(db, data.refresh_token))


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)) -> dict:
    """Get current user profile."""
    return respond(accounts.get_profile(user))


@router.post("/request-reset")
async def request_reset(
    data: ResetRequest,
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """Text a password reset code."""
    return respond(await accounts.request_password_reset(db, gateway, data.phone_number))


@router.post("/verify-reset-otp")
async def verify_reset_otp(
    data: OtpActionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """action=verify returns a reset token; action=resend texts a new code."""
    outcome = await accounts.handle_reset_otp(db, gateway, data.phone_number, data.action, data.code)
    return respond(outcome)


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return respond(await accounts.reset_password(db, data.reset_token, data.new_password))


@router.post("/password/verify-current")
async def verify_current_password(
    data: CurrentPasswordRequest,
    user: User = Depends(get_verified_user),
) -> dict:
    return respond(accounts.verify_current_password(user, data.current_password))


@router.post("/password/change")
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(get_verified_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    outcome = await accounts.change_password(db, user, data.current_password, data.new_password)
    return respond(outcome)


@router.post("/phone/send-otp-current")
async def send_otp_current_phone(
    user: User = Depends(get_verified_user),
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """Step 1 of a phone change: text a code to the current number."""
    return respond(await accounts.send_current_phone_otp(db, gateway, user))


@router.post("/phone/verify-current-otp")
async def verify_current_phone_otp(
    data: CodeRequest,
    user: User = Depends(get_verified_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Step 2: confirm the current number."""
    return respond(await accounts.verify_current_phone_otp(db, user, data.code))


@router.post("/phone/send-otp-new")
async def send_otp_new_phone(
    data: NewPhoneRequest,
    user: User = Depends(get_verified_user),
    db: AsyncSession = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    """Step 3: text a code to the new number."""
    return respond(await accounts.send_new_phone_otp(db, gateway, user, data.new_phone_number))


@router.post("/phone/verify-and-update")
async def verify_new_phone_and_update(
    data: NewPhoneVerifyRequest,
    user: User = Depends(get_verified_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Step 4: confirm the new number and switch the account to it."""
    outcome = await accounts.verify_new_phone_and_update(db, user, data.new_phone_number, data.code)
    return respond(outcome)
