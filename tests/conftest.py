# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Tests run against a throwaway SQLite file and a fake SMS gateway."""

import os
import tempfile
from datetime import timedelta

_tmpdir = tempfile.mkdtemp(prefix="viot-identity-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmpdir}/test.db"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["RESET_TOKEN_SECRET"] = "test-reset-secret"
os.environ.pop("SMS_API_URL", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import update  # noqa: E402

from viot_identity.database import async_session_maker, engine  # noqa: E402
from viot_identity.main import app  # noqa: E402
from viot_identity.models import Base, OtpCode, OtpPurpose  # noqa: E402
from viot_identity.services.otp import utcnow  # noqa: E402
from viot_identity.services.sms import get_sms_gateway  # noqa: E402


class FakeGateway:
    """Records every message instead of sending it."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.accept = True

    async def send(self, phone_number: str, code: str) -> bool:
        self.sent.append((phone_number, code))
        return self.accept

    def last_code(self, phone_number: str) -> str:
        for phone, code in reversed(self.sent):
            if phone == phone_number:
                return code
        raise AssertionError(f"no code sent to {phone_number}")


@pytest.fixture(autouse=True)
async def fresh_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def db():
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(gateway):
    app.dependency_overrides[get_sms_gateway] = lambda: gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def age_code(subject: str, purpose: OtpPurpose, seconds: int) -> None:
    """Pretend the active code for (subject, purpose) was issued ``seconds`` ago."""
    async with async_session_maker() as session:
        await session.execute(
            update(OtpCode)
            .where(OtpCode.subject == subject, OtpCode.purpose == purpose)
            .values(created_at=utcnow() - timedelta(seconds=seconds))
        )
        await session.commit()


async def signup(client: AsyncClient, phone: str, email: str, password: str = "secret123", **extra):
    body = {
        "first_name": "Bat",
        "last_name": "Erdene",
        "email": email,
        "phone_number": phone,
        "password": password,
    }
    body.update(extra)
    return await client.post("/api/v1/auth/register", json=body)


async def signup_verified(client: AsyncClient, gateway: FakeGateway, phone: str, email: str,
                          password: str = "secret123") -> dict:
    """Sign up and verify; returns the verification response body (tokens and user)."""
    r = await signup(client, phone, email, password)
    assert r.status_code == 200, r.text
    r = await client.post(
        "/api/v1/auth/verify-signup-otp",
        json={"phone_number": phone, "action": "verify", "code": gateway.last_code(phone)},
    )
    assert r.status_code == 200, r.text
    return r.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
