# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""SMS gateway: message composition and failure handling."""

import httpx

from viot_identity.services.sms import SmsGateway, compose_message, full_number


def gateway_for(handler) -> SmsGateway:
    return SmsGateway(
        api_url="https://sms.example/send",
        api_key="k",
        sender="1234",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def test_message_and_number_format():
    assert compose_message("482913") == "482913 is your confirmation code for VIOT"
    assert full_number("88112233") == "+97688112233"
    assert full_number("+15551234567") == "+15551234567"


async def test_send_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[{"Result": "SUCCESS"}])

    assert await gateway_for(handler).send("88112233", "482913") is True
    assert seen["to"] == "+97688112233"
    assert seen["text"] == "482913 is your confirmation code for VIOT"
    assert seen["key"] == "k"
    assert seen["from"] == "1234"


async def test_send_rejected_by_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"Result": "FAILED", "ErrorMessage": "no credit"}])

    assert await gateway_for(handler).send("88112233", "482913") is False


async def test_send_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    assert await gateway_for(handler).send("88112233", "482913") is False


async def test_send_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    assert await gateway_for(handler).send("88112233", "482913") is False


async def test_send_without_api_logs_only():
    assert await SmsGateway(api_url="").send("88112233", "482913") is True
