# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time code model."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from viot_identity.models.base import Base


class OtpPurpose(str, enum.Enum):
    SIGNUP_VERIFY = "signup-verify"
    LOGIN_RESET = "login-reset"
    PHONE_CHANGE_OLD = "phone-change-old"
    PHONE_CHANGE_NEW = "phone-change-new"


class OtpCode(Base):
    """Active one-time code for a (subject, purpose) pair.

    The subject is a raw phone number for signup and password reset, and
    ``user:<id>`` for the two legs of a phone number change.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (UniqueConstraint("subject", "purpose", name="uq_otp_codes_subject_purpose"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    purpose: Mapped[OtpPurpose] = mapped_column(
        SAEnum(
            OtpPurpose,
            name="otp_purpose_enum",
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Phone number a phone-change-new code was sent to
    target: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
