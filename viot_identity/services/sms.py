# Copyright (C) 2024 VIOT Identity Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""SMS delivery of one-time codes. Logs to console when no SMS API is configured."""

import logging

import httpx

from viot_identity.config import settings

logger = logging.getLogger(__name__)


def compose_message(code: str) -> str:
    return f"{code} is your confirmation code for VIOT"


def full_number(phone_number: str) -> str:
    """Prefix the default country code unless the number is already international."""
    if phone_number.startswith("+"):
        return phone_number
    return f"{settings.sms_default_country_code}{phone_number}"


class SmsGateway:
    """Sends codes through the HTTP SMS API.

    ``send`` never raises: any non-success answer, timeout or transport
    error is logged and reported as False.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url if api_url is not None else settings.sms_api_url
        self.api_key = api_key if api_key is not None else settings.sms_api_key
        self.sender = sender if sender is not None else settings.sms_sender
        self.timeout = timeout if timeout is not None else settings.sms_timeout_seconds
        self.transport = transport

    async def send(self, phone_number: str, code: str) -> bool:
        to = full_number(phone_number)
        text = compose_message(code)
        if not self.api_url:
            logger.info("SMS (gateway not configured): To=%s Text=%s", to, text)
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(
                    self.api_url,
                    params={
                        "key": self.api_key or "",
                        "text": text,
                        "to": to,
                        "from": self.sender or "",
                    },
                )
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("SMS delivery to %s failed: %s", to, e)
            return False

        first = data[0] if isinstance(data, list) and data else {}
        if not isinstance(first, dict) or first.get("Result") != "SUCCESS":
            error = first.get("ErrorMessage") if isinstance(first, dict) else None
            logger.warning("SMS gateway rejected message to %s: %s", to, error or data)
            return False
        return True


_gateway = SmsGateway()


def get_sms_gateway() -> SmsGateway:
    """Dependency for FastAPI; tests override it with a recording fake."""
    return _gateway
