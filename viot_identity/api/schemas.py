# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API requests."""

from pydantic import BaseModel, EmailStr

from viot_identity.models import Role


# Registration
class SignupRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone_number: str
    password: str


class AdminRegisterRequest(SignupRequest):
    role: Role


class OtpActionRequest(BaseModel):
    """Verify a code or ask for a new one."""

    phone_number: str
    action: str
    code: str | None = None


# Sessions
class LoginRequest(BaseModel):
    phone_number: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


# Forgotten password
class ResetRequest(BaseModel):
    phone_number: str


class ResetPasswordRequest(BaseModel):
    reset_token: str
    new_password: str


# Authenticated changes
class CurrentPasswordRequest(BaseModel):
    current_password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class CodeRequest(BaseModel):
    code: str


class NewPhoneRequest(BaseModel):
    new_phone_number: str


class NewPhoneVerifyRequest(BaseModel):
    new_phone_number: str
    code: str


# Admin
class AdminUserUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone_number: str | None = None
    role: Role | None = None
