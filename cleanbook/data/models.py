"""
CleanBook Scheduler — Data Models.

A BookingSeries is the service agreement ("clean every 2 weeks from March 1");
each BookingOccurrence is one concrete visit generated from it. All stored
timestamps are timezone-aware UTC; the series timezone only drives
recurrence arithmetic and display.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from cleanbook.core.exceptions import ValidationError
from cleanbook.core.recurrence import RecurrenceRule


class SeriesStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class OccurrenceStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


def anchor_key(start_at: datetime, original_start_at: datetime | None) -> datetime:
    """Effective anchor of an occurrence: coalesce(original_start_at, start_at).

    This is the slot identity the materializer checks against and the store's
    unique index enforces. Both go through this function (and the matching
    SQL expression in cleanbook.data.db) so they cannot drift apart.
    """
    return original_start_at if original_start_at is not None else start_at


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        for name, value in (("start", self.start), ("end", self.end)):
            if value.tzinfo is None or value.utcoffset() is None:
                raise ValidationError(f"Window {name} must be timezone-aware")
        if self.start >= self.end:
            raise ValidationError(
                f"Window start {self.start.isoformat()} must be before end {self.end.isoformat()}"
            )

    @classmethod
    def spanning_days(cls, start: datetime, days: int) -> TimeWindow:
        return cls(start=start, end=start + timedelta(days=days))

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class Customer:
    """The customer (lead) a series belongs to."""

    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None


@dataclass
class Cleaner:
    """An assignable resource. Many occurrences may reference one cleaner."""

    id: str
    full_name: str
    phone: str | None = None
    email: str | None = None
    base_location: str | None = None
    active: bool = True


@dataclass
class BookingSeries:
    """A recurring (or one-time, rule=None) service agreement."""

    id: str
    customer_id: str
    starts_at: datetime                 # anchor, aware
    duration_minutes: int
    rule: RecurrenceRule | None = None  # None → exactly one occurrence ever
    title: str = "Regular clean"
    timezone: str = "UTC"               # IANA name
    notes: str | None = None
    status: SeriesStatus = SeriesStatus.ACTIVE
    service_address: str | None = None
    service_lat: float | None = None
    service_lng: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.duration_minutes <= 0:
            raise ValidationError(
                f"duration_minutes must be positive, got {self.duration_minutes}"
            )
        if self.starts_at.tzinfo is None:
            raise ValidationError("starts_at must be timezone-aware")

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def is_recurring(self) -> bool:
        return self.rule is not None

    @property
    def accepts_new_occurrences(self) -> bool:
        """Paused and cancelled series keep their visits but generate nothing new."""
        return self.status is SeriesStatus.ACTIVE


@dataclass
class BookingOccurrence:
    """One concrete calendar instance of a series."""

    series_id: str
    start_at: datetime
    end_at: datetime
    id: str | None = None                    # assigned by the store on insert
    original_start_at: datetime | None = None  # set on the first reschedule only
    status: OccurrenceStatus = OccurrenceStatus.SCHEDULED
    cleaner_id: str | None = None
    assigned_at: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.start_at >= self.end_at:
            raise ValidationError(
                f"Occurrence start {self.start_at.isoformat()} must be before end {self.end_at.isoformat()}"
            )

    @property
    def anchor(self) -> datetime:
        return anchor_key(self.start_at, self.original_start_at)

    @property
    def is_exception(self) -> bool:
        """True once the occurrence has been moved away from its generated slot."""
        return self.original_start_at is not None


@dataclass
class ScheduledVisit:
    """Read model for calendar / dispatch / map: occurrence joined with its series."""

    occurrence: BookingOccurrence
    series: BookingSeries
    customer: Customer | None = None

    @property
    def display_title(self) -> str:
        name = self.customer.name if self.customer and self.customer.name else "Customer"
        return f"{name} - {self.series.title or 'Booking'}"

    @property
    def has_location(self) -> bool:
        return self.series.service_lat is not None and self.series.service_lng is not None
