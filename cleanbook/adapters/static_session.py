"""Static session adapter — implements SessionPort for local runs and tests."""

from __future__ import annotations


class StaticSession:
    """A session whose staff flag is fixed at construction."""

    def __init__(self, is_staff: bool) -> None:
        self._is_staff = is_staff

    async def is_staff(self) -> bool:
        return self._is_staff
