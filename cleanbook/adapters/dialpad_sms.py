"""Dialpad SMS adapter — implements NotificationPort.

Sends reminder texts through the Dialpad v2 SMS API. A failed send is
logged and reported as False; it never raises into the scheduling core.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_SMS_URL = "https://dialpad.com/api/v2/sms"
_TIMEOUT_SECONDS = 10


class DialpadSmsSender:
    """Dialpad implementation of NotificationPort."""

    def __init__(self, api_key: str, user_id: str) -> None:
        self._api_key = api_key
        self._user_id = user_id

    async def send_sms(self, recipient: str, message: str) -> bool:
        if not self._api_key or not self._user_id:
            logger.warning("Dialpad is not configured; SMS to %s not sent", recipient)
            return False
        if not recipient or not message.strip():
            return False

        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    _SMS_URL,
                    json={
                        "user_id": self._user_id,
                        "to_numbers": [recipient],
                        "text": message.strip(),
                    },
                    headers={
                        "accept": "application/json",
                        "authorization": f"Bearer {self._api_key}",
                    },
                )
                resp.raise_for_status()
        except Exception as exc:
            logger.error("Dialpad SMS to %s failed: %s", recipient, exc)
            return False

        logger.info("SMS sent to %s", recipient)
        return True
