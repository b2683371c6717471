"""
CleanBook Scheduler — UI-Agnostic Scheduling Service.

Async service layer behind every view (calendar, dispatch board, map):
ensure a window is materialized -> persist what's missing -> query the
window; apply one-row mutations (reschedule, status, assignment) gated on a
staff session.

The SQLite stores are synchronous, so every store call is wrapped with
asyncio.to_thread. Views re-fetch after each mutation; nothing here returns
optimistic local state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from cleanbook.config import settings
from cleanbook.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
    ValidationError,
)
from cleanbook.core.materializer import find_obsolete, materialize
from cleanbook.core.recurrence import RecurrenceRule, rule_from_repeat_type
from cleanbook.data.db import UpsertResult
from cleanbook.data.models import (
    BookingOccurrence,
    BookingSeries,
    OccurrenceStatus,
    ScheduledVisit,
    SeriesStatus,
    TimeWindow,
)

if TYPE_CHECKING:
    from cleanbook.data.db import OccurrenceStore, SeriesDB
    from cleanbook.ports.geocoding_port import GeocodeCandidate, GeocodingPort
    from cleanbook.ports.notification_port import NotificationPort
    from cleanbook.ports.session_port import SessionPort

logger = logging.getLogger(__name__)


@dataclass
class MaterializationReport:
    """What one window-materialization pass did across all active series."""

    inserted: int = 0
    conflicts: int = 0
    failed_series: list[str] = field(default_factory=list)

    def add(self, result: UpsertResult) -> None:
        self.inserted += len(result.inserted)
        self.conflicts += len(result.conflicts)


def build_reminder_message(visit: ScheduledVisit) -> str:
    """Compose the reminder SMS, with the visit time in the series' local timezone."""
    local = visit.occurrence.start_at.astimezone(ZoneInfo(visit.series.timezone))
    hour = local.hour % 12 or 12
    when = (
        f"{local:%A} {local.day} {local:%B} at "
        f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"
    )
    name = visit.customer.name if visit.customer and visit.customer.name else "there"
    title = (visit.series.title or "clean").lower()
    return (
        f"Hi {name}, a reminder that your {title} is booked for {when}. "
        "Reply to this message if you need to reschedule."
    )


class SchedulingService:
    """Orchestrates materialization, windowed reads and occurrence mutations."""

    def __init__(
        self,
        series_db: SeriesDB,
        occurrence_store: OccurrenceStore,
        session: SessionPort,
        notifier: NotificationPort | None = None,
        geocoder: GeocodingPort | None = None,
    ) -> None:
        self._series = series_db
        self._occurrences = occurrence_store
        self._session = session
        self._notifier = notifier
        self._geocoder = geocoder

    async def _require_staff(self) -> None:
        if not await self._session.is_staff():
            raise PermissionDeniedError("An authenticated staff session is required")

    # ------------------------------------------------------------------
    # Materialization and reads
    # ------------------------------------------------------------------

    async def materialize_series(self, series_id: str, window: TimeWindow) -> UpsertResult:
        """Generate and persist the missing occurrences of one series in a window."""
        series = await asyncio.to_thread(self._series.get_series, series_id)
        if series is None:
            raise NotFoundError(f"Series {series_id} not found")

        existing = await asyncio.to_thread(
            self._occurrences.existing_for_series, series_id, window,
        )
        new = materialize(series, window, existing)
        if not new:
            return UpsertResult()
        return await asyncio.to_thread(self._occurrences.upsert_generated, new)

    async def ensure_materialized(self, window: TimeWindow) -> MaterializationReport:
        """Materialize every active series for the window.

        A series that fails (e.g. a malformed stored rule) is logged and
        skipped; the others still materialize.
        """
        report = MaterializationReport()
        series_ids = await asyncio.to_thread(self._series.series_ids, SeriesStatus.ACTIVE)
        for series_id in series_ids:
            try:
                report.add(await self.materialize_series(series_id, window))
            except SchedulingError as exc:
                logger.warning("Materialization skipped for series %s: %s", series_id, exc)
                report.failed_series.append(series_id)

        if report.inserted or report.conflicts or report.failed_series:
            logger.info(
                "Window %s – %s: %d inserted, %d already present, %d series failed",
                window.start.isoformat(), window.end.isoformat(),
                report.inserted, report.conflicts, len(report.failed_series),
            )
        return report

    async def load_window(
        self,
        window: TimeWindow,
        exclude_cancelled: bool = False,
        cleaner_id: str | None = None,
    ) -> list[ScheduledVisit]:
        """Materialize (staff sessions only) then return the window's visits.

        If materialization fails, the previously generated visits are still
        returned rather than blocking the view.
        """
        if await self._session.is_staff():
            try:
                await self.ensure_materialized(window)
            except SchedulingError as exc:
                logger.error("Materialization failed for window %s: %s", window, exc)

        return await asyncio.to_thread(
            self._occurrences.query_window,
            window,
            exclude_cancelled,
            True,
            cleaner_id,
        )

    # ------------------------------------------------------------------
    # Occurrence mutations (one row each)
    # ------------------------------------------------------------------

    async def reschedule(
        self, occurrence_id: str, new_start: datetime, new_end: datetime,
    ) -> BookingOccurrence:
        await self._require_staff()
        return await asyncio.to_thread(
            self._occurrences.reschedule, occurrence_id, new_start, new_end,
        )

    async def set_status(
        self, occurrence_id: str, status: OccurrenceStatus | str,
    ) -> BookingOccurrence:
        await self._require_staff()
        return await asyncio.to_thread(self._occurrences.set_status, occurrence_id, status)

    async def assign(self, occurrence_id: str, cleaner_id: str | None) -> BookingOccurrence:
        await self._require_staff()
        return await asyncio.to_thread(self._occurrences.assign, occurrence_id, cleaner_id)

    async def set_notes(self, occurrence_id: str, notes: str | None) -> BookingOccurrence:
        await self._require_staff()
        return await asyncio.to_thread(self._occurrences.set_notes, occurrence_id, notes)

    # ------------------------------------------------------------------
    # Series lifecycle
    # ------------------------------------------------------------------

    async def create_series(
        self,
        customer_id: str,
        starts_at: datetime,
        *,
        repeat_type: str = "none",
        rrule: str | None = None,
        until_date: date | None = None,
        occurrence_count: int | None = None,
        duration_minutes: int | None = None,
        title: str | None = None,
        notes: str | None = None,
        timezone_name: str | None = None,
    ) -> tuple[BookingSeries, UpsertResult]:
        """Create a series and materialize its initial horizon.

        Either a booking-form repeat_type ("weekly", "fortnightly", ...) or a
        raw rrule may be given, not both. If the initial materialization
        fails the series still stands; the next window load fills it in.
        """
        await self._require_staff()

        if rrule is not None and (repeat_type or "none").lower() != "none":
            raise ConfigurationError("Pass either repeat_type or rrule, not both")
        if rrule is not None:
            rule: RecurrenceRule | None = RecurrenceRule.from_columns(
                rrule, until_date, occurrence_count,
            )
        else:
            rule = rule_from_repeat_type(repeat_type, until_date, occurrence_count)

        if duration_minutes is None:
            duration_minutes = settings.DEFAULT_DURATION_MINUTES
        if duration_minutes <= 0:
            raise ValidationError(f"duration_minutes must be positive, got {duration_minutes}")

        series = await asyncio.to_thread(
            self._series.create_series,
            customer_id,
            starts_at,
            duration_minutes,
            rule,
            title or settings.DEFAULT_SERIES_TITLE,
            timezone_name or settings.DEFAULT_TIMEZONE,
            notes,
        )

        horizon = TimeWindow.spanning_days(series.starts_at, settings.INITIAL_HORIZON_DAYS)
        try:
            result = await self.materialize_series(series.id, horizon)
        except SchedulingError as exc:
            logger.error("Initial materialization failed for series %s: %s", series.id, exc)
            result = UpsertResult()
        return series, result

    async def update_series_schedule(self, series_id: str, **changes) -> BookingSeries:
        """Change a series' cadence/time. Existing occurrences keep their slots."""
        await self._require_staff()
        return await asyncio.to_thread(
            lambda: self._series.update_schedule(series_id, **changes)
        )

    async def set_series_status(self, series_id: str, status: SeriesStatus | str) -> None:
        await self._require_staff()
        await asyncio.to_thread(self._series.set_status, series_id, status)

    async def retire_series(self, series_id: str) -> None:
        """Stop generating new visits; existing ones stay visible and editable."""
        await self.set_series_status(series_id, SeriesStatus.CANCELLED)

    async def cancel_obsolete(
        self, series_id: str, window: TimeWindow,
    ) -> list[BookingOccurrence]:
        """Cancel scheduled visits the series' current rule no longer generates."""
        await self._require_staff()
        series = await asyncio.to_thread(self._series.get_series, series_id)
        if series is None:
            raise NotFoundError(f"Series {series_id} not found")

        existing = await asyncio.to_thread(
            self._occurrences.existing_for_series, series_id, window,
        )
        cancelled: list[BookingOccurrence] = []
        for occ in find_obsolete(series, window, existing):
            cancelled.append(
                await asyncio.to_thread(
                    self._occurrences.set_status, occ.id, OccurrenceStatus.CANCELLED,
                )
            )
        if cancelled:
            logger.info("Series %s: cancelled %d obsolete visit(s)", series_id, len(cancelled))
        return cancelled

    async def attach_location(self, series_id: str, address: str) -> GeocodeCandidate | None:
        """Geocode an address and store the best match on the series."""
        await self._require_staff()
        if self._geocoder is None:
            logger.warning("No geocoder configured; location for %s not set", series_id)
            return None

        candidates = await self._geocoder.geocode(address)
        if not candidates:
            return None
        best = candidates[0]
        await asyncio.to_thread(
            self._series.set_location, series_id, best.label, best.lat, best.lng,
        )
        return best

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def send_reminders(self, window: TimeWindow) -> int:
        """Text every customer with a scheduled visit starting in the window.

        Returns the number of messages sent. One failed send does not stop
        the rest.
        """
        if self._notifier is None:
            logger.warning("No SMS sender configured; reminders skipped")
            return 0

        visits = await asyncio.to_thread(
            self._occurrences.query_window, window, True, True, None,
        )
        sent = 0
        for visit in visits:
            if visit.occurrence.status is not OccurrenceStatus.SCHEDULED:
                continue
            phone = visit.customer.phone if visit.customer else None
            if not phone:
                logger.info("No phone for occurrence %s; reminder skipped", visit.occurrence.id)
                continue
            try:
                if await self._notifier.send_sms(phone, build_reminder_message(visit)):
                    sent += 1
            except Exception as exc:
                logger.error("Reminder for occurrence %s failed: %s", visit.occurrence.id, exc)
        logger.info("Sent %d reminder(s) for %d visit(s)", sent, len(visits))
        return sent

    @staticmethod
    def upcoming_window(now: datetime, hours: int | None = None) -> TimeWindow:
        """Window from `now` covering the reminder lead time."""
        return TimeWindow(
            start=now,
            end=now + timedelta(hours=hours or settings.REMINDER_LEAD_HOURS),
        )
