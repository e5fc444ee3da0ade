# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Application wiring: lifespan and error envelopes."""

import asyncio

import pytest
from fastapi import status

from viot_identity import exceptions
from viot_identity.main import app, lifespan


def purge_tasks() -> list[asyncio.Task]:
    return [t for t in asyncio.all_tasks() if getattr(t.get_coro(), "__name__", "") == "purge_loop"]


async def test_shutdown_waits_for_purge_task():
    async with lifespan(app):
        running = purge_tasks()
        assert len(running) == 1
    assert running[0].cancelled()
    assert purge_tasks() == []


@pytest.mark.parametrize(
    "error, expected",
    [
        (exceptions.ValidationError, status.HTTP_400_BAD_REQUEST),
        (exceptions.NotFound, status.HTTP_404_NOT_FOUND),
        (exceptions.InvalidCredentials, status.HTTP_401_UNAUTHORIZED),
        (exceptions.NotVerified, status.HTTP_403_FORBIDDEN),
        (exceptions.DuplicatePhoneOrEmail, status.HTTP_409_CONFLICT),
        (exceptions.RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
        (exceptions.Expired, status.HTTP_400_BAD_REQUEST),
        (exceptions.InvalidToken, status.HTTP_401_UNAUTHORIZED),
        (exceptions.Forbidden, status.HTTP_403_FORBIDDEN),
        (exceptions.DeliveryFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
        (exceptions.Internal, status.HTTP_500_INTERNAL_SERVER_ERROR),
    ],
)
def test_error_status_codes(error, expected):
    assert error.status_code == expected
    assert error().message == error.default_message


async def test_unknown_route_uses_error_envelope(client):
    r = await client.get("/api/v1/nope")
    assert r.status_code == 404
    assert r.json() == {"success": False, "kind": "not_found", "message": "Not Found"}
