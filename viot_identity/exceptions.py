# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Typed failures raised by the account workflows.

Each error carries an ``ErrorKind`` so callers can branch on the failure
without parsing messages, and a suggested HTTP status used by the app's
exception handler. ``Internal`` is the only kind that signals an
infrastructure problem rather than a client error.
"""

import enum

from fastapi import status


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    NOT_VERIFIED = "not_verified"
    DUPLICATE_PHONE_OR_EMAIL = "duplicate_phone_or_email"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    INVALID_TOKEN = "invalid_token"
    FORBIDDEN = "forbidden"
    DELIVERY_FAILED = "delivery_failed"
    INTERNAL = "internal"


class AccountError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AccountError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request."


class NotFound(AccountError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found."


class InvalidCredentials(AccountError):
    kind = ErrorKind.INVALID_CREDENTIALS
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials."


class NotVerified(AccountError):
    kind = ErrorKind.NOT_VERIFIED
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Account not verified. Please verify your phone number."


class DuplicatePhoneOrEmail(AccountError):
    kind = ErrorKind.DUPLICATE_PHONE_OR_EMAIL
    status_code = status.HTTP_409_CONFLICT
    default_message = "User with this phone number or email already exists."


class RateLimited(AccountError):
    kind = ErrorKind.RATE_LIMITED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Please wait before requesting a new code."


class Expired(AccountError):
    kind = ErrorKind.EXPIRED
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Code expired."


class InvalidToken(AccountError):
    kind = ErrorKind.INVALID_TOKEN
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired token."


class Forbidden(AccountError):
    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied."


class DeliveryFailed(AccountError):
    kind = ErrorKind.DELIVERY_FAILED
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Failed to send code."


class Internal(AccountError):
    pass
