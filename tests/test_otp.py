# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time code store: single active code, cooldown, single use and expiry."""

import pytest
from sqlalchemy import func, select

from conftest import age_code
from viot_identity.database import async_session_maker
from viot_identity.exceptions import Expired, NotFound, RateLimited
from viot_identity.models import OtpCode, OtpPurpose
from viot_identity.services import otp

PHONE = "88112233"


async def count_codes(db, subject: str, purpose: OtpPurpose) -> int:
    return await db.scalar(
        select(func.count()).select_from(OtpCode).where(
            OtpCode.subject == subject, OtpCode.purpose == purpose
        )
    )


async def test_issue_returns_six_digits(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    assert len(code) == 6 and code.isdigit()
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 1


async def test_code_is_not_stored_in_plaintext(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    entry = await otp.get_active(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    assert entry.code_hash != code
    assert entry.code_hash == otp.hash_code(code)


async def test_second_issue_within_cooldown_is_rate_limited(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    with pytest.raises(RateLimited):
        await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.rollback()
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 1
    # the original code still works
    await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, code)


async def test_issue_after_cooldown_replaces_code(db):
    first = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await age_code(PHONE, OtpPurpose.SIGNUP_VERIFY, 61)
    db.expunge_all()
    second = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 1
    if first != second:
        with pytest.raises(NotFound):
            await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, first)
    await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, second)


async def test_reset_purpose_has_shorter_cooldown(db):
    await otp.issue(db, PHONE, OtpPurpose.LOGIN_RESET)
    await db.commit()
    await age_code(PHONE, OtpPurpose.LOGIN_RESET, 31)
    db.expunge_all()
    await otp.issue(db, PHONE, OtpPurpose.LOGIN_RESET)
    await db.commit()
    assert await count_codes(db, PHONE, OtpPurpose.LOGIN_RESET) == 1


async def test_purposes_are_independent(db):
    await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await otp.issue(db, PHONE, OtpPurpose.LOGIN_RESET)
    await db.commit()
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 1
    assert await count_codes(db, PHONE, OtpPurpose.LOGIN_RESET) == 1


async def test_verify_succeeds_exactly_once(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, code)
    await db.commit()
    with pytest.raises(NotFound):
        await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, code)


async def test_wrong_code_and_missing_entry_look_the_same(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    wrong = "000000" if code != "000000" else "111111"
    with pytest.raises(NotFound) as wrong_exc:
        await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, wrong)
    with pytest.raises(NotFound) as missing_exc:
        await otp.verify(db, "99999999", OtpPurpose.SIGNUP_VERIFY, code)
    assert wrong_exc.value.message == missing_exc.value.message
    # a wrong guess does not burn the code
    await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, code)


async def test_code_for_other_purpose_is_rejected(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    with pytest.raises(NotFound):
        await otp.verify(db, PHONE, OtpPurpose.LOGIN_RESET, code)


async def test_expired_code_fails_and_is_deleted(db):
    code = await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await age_code(PHONE, OtpPurpose.SIGNUP_VERIFY, 61)
    db.expunge_all()
    with pytest.raises(Expired):
        await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, code)
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 0


async def test_target_must_match(db):
    subject = otp.user_subject(1)
    code = await otp.issue(db, subject, OtpPurpose.PHONE_CHANGE_NEW, target="99001122")
    await db.commit()
    with pytest.raises(NotFound):
        await otp.verify(db, subject, OtpPurpose.PHONE_CHANGE_NEW, code, target="99001133")
    await otp.verify(db, subject, OtpPurpose.PHONE_CHANGE_NEW, code, target="99001122")


async def test_purge_removes_codes_past_retention(db):
    await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    await otp.issue(db, "99112233", OtpPurpose.SIGNUP_VERIFY)
    await db.commit()
    await age_code(PHONE, OtpPurpose.SIGNUP_VERIFY, 601)
    removed = await otp.purge_expired(db)
    assert removed == 1
    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 0
    assert await count_codes(db, "99112233", OtpPurpose.SIGNUP_VERIFY) == 1


async def test_concurrent_issue_is_rate_limited(db, monkeypatch):
    """Another request commits its code between our cooldown check and insert."""
    rival_code = "482913"

    # Nothing was pending, so our delete is a no-op; the rival commits right after it
    async def rival_commits(session, subject, purpose):
        async with async_session_maker() as other:
            other.add(
                OtpCode(
                    subject=subject,
                    purpose=purpose,
                    code_hash=otp.hash_code(rival_code),
                    created_at=otp.utcnow(),
                )
            )
            await other.commit()

    monkeypatch.setattr(otp, "discard", rival_commits)
    with pytest.raises(RateLimited):
        await otp.issue(db, PHONE, OtpPurpose.SIGNUP_VERIFY)
    monkeypatch.undo()

    assert await count_codes(db, PHONE, OtpPurpose.SIGNUP_VERIFY) == 1
    await otp.verify(db, PHONE, OtpPurpose.SIGNUP_VERIFY, rival_code)
