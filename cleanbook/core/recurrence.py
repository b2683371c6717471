"""
CleanBook Scheduler — Recurrence rules.

Represents "how often" and "until when" for a booking series and enumerates
candidate occurrence start times inside a bounded window.

No I/O: this module only transforms data. "Now" and the timezone are always
passed in by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta

from cleanbook.core.exceptions import ConfigurationError, ValidationError


class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


# Repeat options offered by the booking form, as (frequency, interval).
REPEAT_PRESETS: dict[str, tuple[Frequency, int]] = {
    "weekly": (Frequency.WEEKLY, 1),
    "fortnightly": (Frequency.WEEKLY, 2),
    "3-weekly": (Frequency.WEEKLY, 3),
    "monthly": (Frequency.MONTHLY, 1),
    "2-monthly": (Frequency.MONTHLY, 2),
}

_RRULE_KEYS = {"FREQ", "INTERVAL"}


@dataclass(frozen=True)
class RecurrenceRule:
    """A parsed recurrence pattern with its end condition.

    At most one of until_date / occurrence_count is set; neither means the
    series repeats forever.
    """

    frequency: Frequency
    interval: int = 1
    until_date: date | None = None       # inclusive, local to the series timezone
    occurrence_count: int | None = None  # counted from the anchor

    def __post_init__(self) -> None:
        if not isinstance(self.frequency, Frequency):
            try:
                freq = Frequency(str(self.frequency).strip().upper())
            except ValueError:
                raise ConfigurationError(
                    f"Unsupported frequency: {self.frequency!r}"
                ) from None
            object.__setattr__(self, "frequency", freq)

        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise ConfigurationError(f"Interval must be an integer, got {self.interval!r}")
        if self.interval <= 0:
            raise ConfigurationError(f"Interval must be positive, got {self.interval}")

        if self.until_date is not None and self.occurrence_count is not None:
            raise ConfigurationError(
                "Set either until_date or occurrence_count, not both"
            )
        if self.occurrence_count is not None and self.occurrence_count <= 0:
            raise ConfigurationError(
                f"occurrence_count must be positive, got {self.occurrence_count}"
            )

    @property
    def is_infinite(self) -> bool:
        return self.until_date is None and self.occurrence_count is None

    def to_rrule(self) -> str:
        """Render the stored text form, e.g. "FREQ=WEEKLY;INTERVAL=2"."""
        return f"FREQ={self.frequency.value};INTERVAL={self.interval}"

    @classmethod
    def from_columns(
        cls,
        rrule: str | None,
        until_date: date | None = None,
        occurrence_count: int | None = None,
    ) -> RecurrenceRule | None:
        """Build a rule from stored series columns. A null rrule is a one-time booking."""
        if rrule is None or not rrule.strip():
            return None
        frequency, interval = parse_rrule(rrule)
        return cls(
            frequency=frequency,
            interval=interval,
            until_date=until_date,
            occurrence_count=occurrence_count,
        )

    def local_start(self, anchor_local: datetime, k: int) -> datetime:
        """Return the k-th naive local start counted from the anchor.

        Always computed from the anchor, so a clamped month (Jan 31 -> Feb 29)
        does not drag later months down with it.
        """
        if self.frequency is Frequency.WEEKLY:
            return anchor_local + timedelta(days=7 * self.interval * k)

        # relativedelta clamps to the last day of shorter months
        return anchor_local + relativedelta(months=self.interval * k)

    def _first_index(self, anchor_local: datetime, window_start_local: datetime) -> int:
        """Lowest step index that could land inside the window.

        Steps back one full interval so DST offsets never skip a candidate.
        """
        if window_start_local <= anchor_local:
            return 0
        if self.frequency is Frequency.WEEKLY:
            days = (window_start_local - anchor_local).days
            return max(0, days // (7 * self.interval) - 1)
        gap = relativedelta(window_start_local, anchor_local)
        months = gap.years * 12 + gap.months
        return max(0, months // self.interval - 1)

    def enumerate(
        self,
        anchor: datetime,
        window_start: datetime,
        window_end: datetime,
        tz: str = "UTC",
    ) -> Iterator[datetime]:
        """Yield UTC candidate starts in [window_start, window_end), ascending.

        Arithmetic runs on wall-clock time in `tz`, so a 09:00 visit stays at
        09:00 local across daylight-saving changes. Restartable and
        deterministic: every call recomputes from the anchor.
        """
        zone = _zone(tz)
        anchor_local = _require_aware(anchor, "anchor").astimezone(zone).replace(tzinfo=None)
        ws = _require_aware(window_start, "window_start")
        we = _require_aware(window_end, "window_end")
        ws_local = ws.astimezone(zone).replace(tzinfo=None)

        k = self._first_index(anchor_local, ws_local)
        while True:
            if self.occurrence_count is not None and k >= self.occurrence_count:
                return
            local = self.local_start(anchor_local, k)
            if self.until_date is not None and local.date() > self.until_date:
                return
            start = local.replace(tzinfo=zone).astimezone(timezone.utc)
            if start >= we:
                return
            if start >= ws:
                yield start
            k += 1


def parse_rrule(text: str) -> tuple[Frequency, int]:
    """Parse "FREQ=WEEKLY;INTERVAL=2" into (frequency, interval).

    Only FREQ and INTERVAL are accepted; anything else is rejected here so a
    raw string never travels further into the system.
    """
    if not isinstance(text, str) or not text.strip():
        raise ConfigurationError("Empty recurrence rule")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    parts: dict[str, str] = {}
    for chunk in body.split(";"):
        if not chunk.strip():
            continue
        key, sep, value = chunk.partition("=")
        key = key.strip().upper()
        value = value.strip()
        if not sep or not key or not value:
            raise ConfigurationError(f"Malformed rule part {chunk!r} in {text!r}")
        if key in parts:
            raise ConfigurationError(f"Duplicate key {key} in {text!r}")
        parts[key] = value

    unknown = set(parts) - _RRULE_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unsupported rule keys {sorted(unknown)} in {text!r}"
        )
    if "FREQ" not in parts:
        raise ConfigurationError(f"Missing FREQ in {text!r}")

    try:
        frequency = Frequency(parts["FREQ"].upper())
    except ValueError:
        raise ConfigurationError(f"Unsupported frequency: {parts['FREQ']!r}") from None

    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        raise ConfigurationError(
            f"INTERVAL must be an integer in {text!r}"
        ) from None
    if interval <= 0:
        raise ConfigurationError(f"Interval must be positive, got {interval}")

    return frequency, interval


def rule_from_repeat_type(
    repeat_type: str,
    until_date: date | None = None,
    occurrence_count: int | None = None,
) -> RecurrenceRule | None:
    """Translate a booking-form repeat option into a rule ("none" -> one-time)."""
    key = (repeat_type or "none").strip().lower()
    if key == "none":
        return None
    if key not in REPEAT_PRESETS:
        raise ConfigurationError(f"Unknown repeat type: {repeat_type!r}")
    frequency, interval = REPEAT_PRESETS[key]
    return RecurrenceRule(
        frequency=frequency,
        interval=interval,
        until_date=until_date,
        occurrence_count=occurrence_count,
    )


def enumerate_starts(
    rule: RecurrenceRule | None,
    anchor: datetime,
    window_start: datetime,
    window_end: datetime,
    tz: str = "UTC",
) -> list[datetime]:
    """Candidate UTC starts for a rule, handling one-time bookings (rule is None)."""
    if rule is None:
        start = _require_aware(anchor, "anchor").astimezone(timezone.utc)
        if window_start <= start < window_end:
            return [start]
        return []
    return list(rule.enumerate(anchor, window_start, window_end, tz=tz))


def _zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown IANA timezone: {tz!r}") from None


def _require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{name} must be timezone-aware, got {value!r}")
    return value
