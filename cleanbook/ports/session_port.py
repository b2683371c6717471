"""Session port — abstract interface for the hosted identity/session service.

Every scheduling write is gated on an authenticated staff session.
"""

from __future__ import annotations

from typing import Protocol


class SessionPort(Protocol):
    """Answers "is there an authenticated staff (admin/staff role) session"."""

    async def is_staff(self) -> bool: ...
