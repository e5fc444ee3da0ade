# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from viot_identity.models.base import Base
from viot_identity.models.user import Role, User
from viot_identity.models.otp_code import OtpCode, OtpPurpose
from viot_identity.models.used_reset_token import UsedResetToken

__all__ = [
    "Base",
    "Role",
    "User",
    "OtpCode",
    "OtpPurpose",
    "UsedResetToken",
]
