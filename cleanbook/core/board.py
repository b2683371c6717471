"""
CleanBook Scheduler — Dispatch/calendar board state.

Holds the visible window and the last-known-good list of visits for a view.
Every mutation goes through the SchedulingService and is followed by a
re-fetch; on failure the previous visits stay on screen and `error` carries
an inline message. Failed writes are never retried automatically.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from cleanbook.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
    ValidationError,
)
from cleanbook.data.models import OccurrenceStatus, ScheduledVisit, TimeWindow

if TYPE_CHECKING:
    from cleanbook.core.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)


def error_message(exc: SchedulingError) -> str:
    """User-facing text for a failed action."""
    if isinstance(exc, ConflictError):
        return "This booking was changed by someone else. The board has been refreshed."
    if isinstance(exc, NotFoundError):
        return "This booking no longer exists."
    if isinstance(exc, PermissionDeniedError):
        return "Sign in as staff to make changes."
    if isinstance(exc, ValidationError):
        return f"Invalid change: {exc}"
    return "Could not update booking. Please try again."


class DispatchBoard:
    """View-side state for one calendar or dispatch screen.

    Args:
        service: Scheduling service to read and write through.
        exclude_cancelled: True for dispatch/map views, False for the calendar.
    """

    def __init__(self, service: SchedulingService, exclude_cancelled: bool = False) -> None:
        self._service = service
        self._exclude_cancelled = exclude_cancelled
        self.window: TimeWindow | None = None
        self.visits: list[ScheduledVisit] = []
        self.error: str | None = None

    async def show(self, window: TimeWindow) -> list[ScheduledVisit]:
        """Switch to a new window (materializing it first) and load its visits."""
        self.window = window
        await self.refresh()
        return self.visits

    async def refresh(self) -> bool:
        if self.window is None:
            return False
        try:
            visits = await self._service.load_window(
                self.window, exclude_cancelled=self._exclude_cancelled,
            )
        except SchedulingError as exc:
            logger.warning("Board refresh failed: %s", exc)
            self.error = error_message(exc)
            return False
        self.visits = visits
        self.error = None
        return True

    def find(self, occurrence_id: str) -> ScheduledVisit | None:
        for visit in self.visits:
            if visit.occurrence.id == occurrence_id:
                return visit
        return None

    async def _apply(self, action: Callable[[], Awaitable[object]]) -> bool:
        try:
            await action()
        except ConflictError as exc:
            # The in-memory view is stale: reload it, then show the error.
            logger.warning("Board action conflicted: %s", exc)
            await self.refresh()
            self.error = error_message(exc)
            return False
        except SchedulingError as exc:
            logger.warning("Board action failed: %s", exc)
            self.error = error_message(exc)
            return False
        return await self.refresh()

    async def move(
        self,
        occurrence_id: str,
        new_start: datetime,
        new_end: datetime | None = None,
    ) -> bool:
        """Drag-to-reschedule. Without new_end the visit keeps its length."""
        if new_end is None:
            visit = self.find(occurrence_id)
            if visit is None:
                self.error = error_message(NotFoundError(occurrence_id))
                return False
            new_end = new_start + (visit.occurrence.end_at - visit.occurrence.start_at)
        return await self._apply(
            lambda: self._service.reschedule(occurrence_id, new_start, new_end)
        )

    async def change_status(self, occurrence_id: str, status: OccurrenceStatus | str) -> bool:
        return await self._apply(lambda: self._service.set_status(occurrence_id, status))

    async def assign_cleaner(self, occurrence_id: str, cleaner_id: str | None) -> bool:
        return await self._apply(lambda: self._service.assign(occurrence_id, cleaner_id))
