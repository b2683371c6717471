"""Notification port — abstract interface for sending SMS to customers.

Core modules depend on this protocol, never on a specific telephony provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract SMS interface used by core modules."""

    async def send_sms(self, recipient: str, message: str) -> bool: ...
