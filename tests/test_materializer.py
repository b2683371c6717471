"""Tests for cleanbook.core.materializer — pure window reconciliation."""

from datetime import datetime, timedelta, timezone

from cleanbook.core.materializer import candidate_starts, find_obsolete, materialize
from cleanbook.core.recurrence import Frequency, RecurrenceRule
from cleanbook.data.models import (
    BookingOccurrence,
    BookingSeries,
    OccurrenceStatus,
    SeriesStatus,
    TimeWindow,
)

UTC = timezone.utc


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def _series(rule=None, status=SeriesStatus.ACTIVE, starts_at=None, **kwargs) -> BookingSeries:
    return BookingSeries(
        id="series-1",
        customer_id="cust-1",
        starts_at=starts_at or utc(2024, 3, 4, 9, 0),
        duration_minutes=120,
        rule=rule,
        status=status,
        **kwargs,
    )


FORTNIGHTLY = RecurrenceRule(frequency=Frequency.WEEKLY, interval=2)
MARCH = TimeWindow(start=utc(2024, 3, 1), end=utc(2024, 4, 1))


class TestMaterialize:
    def test_generates_missing_occurrences(self):
        new = materialize(_series(FORTNIGHTLY), MARCH, [])
        assert [(o.start_at, o.end_at) for o in new] == [
            (utc(2024, 3, 4, 9), utc(2024, 3, 4, 11)),
            (utc(2024, 3, 18, 9), utc(2024, 3, 18, 11)),
        ]
        assert all(o.series_id == "series-1" for o in new)
        assert all(o.status is OccurrenceStatus.SCHEDULED for o in new)
        assert all(o.id is None and o.original_start_at is None for o in new)

    def test_idempotent_once_persisted(self):
        series = _series(FORTNIGHTLY)
        first = materialize(series, MARCH, [])
        assert materialize(series, MARCH, first) == []

    def test_only_fills_gaps(self):
        series = _series(FORTNIGHTLY)
        existing = [BookingOccurrence(
            series_id="series-1", start_at=utc(2024, 3, 4, 9), end_at=utc(2024, 3, 4, 11),
        )]
        new = materialize(series, MARCH, existing)
        assert [o.start_at for o in new] == [utc(2024, 3, 18, 9)]

    def test_moved_occurrence_keeps_its_slot(self):
        # Mar 18 was dragged to Mar 20; the generated slot must not reappear.
        moved = BookingOccurrence(
            series_id="series-1",
            start_at=utc(2024, 3, 20, 14),
            end_at=utc(2024, 3, 20, 16),
            original_start_at=utc(2024, 3, 18, 9),
        )
        new = materialize(_series(FORTNIGHTLY), MARCH, [moved])
        assert [o.start_at for o in new] == [utc(2024, 3, 4, 9)]

    def test_cancelled_occurrence_is_not_regenerated(self):
        cancelled = BookingOccurrence(
            series_id="series-1",
            start_at=utc(2024, 3, 4, 9),
            end_at=utc(2024, 3, 4, 11),
            status=OccurrenceStatus.CANCELLED,
        )
        new = materialize(_series(FORTNIGHTLY), MARCH, [cancelled])
        assert [o.start_at for o in new] == [utc(2024, 3, 18, 9)]

    def test_paused_series_generates_nothing(self):
        assert materialize(_series(FORTNIGHTLY, status=SeriesStatus.PAUSED), MARCH, []) == []

    def test_cancelled_series_generates_nothing(self):
        assert materialize(_series(FORTNIGHTLY, status=SeriesStatus.CANCELLED), MARCH, []) == []

    def test_one_time_series(self):
        new = materialize(_series(None), MARCH, [])
        assert len(new) == 1
        assert new[0].start_at == utc(2024, 3, 4, 9)

    def test_one_time_outside_window(self):
        april = TimeWindow(start=utc(2024, 4, 1), end=utc(2024, 5, 1))
        assert materialize(_series(None), april, []) == []

    def test_does_not_mutate_existing(self):
        existing = [BookingOccurrence(
            series_id="series-1", start_at=utc(2024, 3, 4, 9), end_at=utc(2024, 3, 4, 11),
        )]
        snapshot = list(existing)
        materialize(_series(FORTNIGHTLY), MARCH, existing)
        assert existing == snapshot

    def test_duration_follows_series(self):
        series = _series(FORTNIGHTLY)
        series.duration_minutes = 90
        new = materialize(series, MARCH, [])
        assert all(o.end_at - o.start_at == timedelta(minutes=90) for o in new)

    def test_series_timezone_drives_arithmetic(self):
        from zoneinfo import ZoneInfo
        sydney = ZoneInfo("Australia/Sydney")
        series = _series(
            RecurrenceRule(frequency=Frequency.WEEKLY),
            starts_at=datetime(2024, 3, 25, 9, tzinfo=sydney).astimezone(UTC),
            timezone="Australia/Sydney",
        )
        window = TimeWindow(start=utc(2024, 3, 20), end=utc(2024, 4, 16))
        new = materialize(series, window, [])
        assert {o.start_at.astimezone(sydney).hour for o in new} == {9}


class TestCandidateStarts:
    def test_matches_rule(self):
        assert candidate_starts(_series(FORTNIGHTLY), MARCH) == [
            utc(2024, 3, 4, 9), utc(2024, 3, 18, 9),
        ]


class TestFindObsolete:
    def test_changed_cadence_leaves_old_slots_obsolete(self):
        # Was weekly, now fortnightly: Mar 11 and Mar 25 no longer generated.
        weekly = _series(RecurrenceRule(frequency=Frequency.WEEKLY))
        existing = [
            BookingOccurrence(id=f"o{i}", series_id="series-1", start_at=s, end_at=s + timedelta(hours=2))
            for i, s in enumerate(candidate_starts(weekly, MARCH))
        ]
        obsolete = find_obsolete(_series(FORTNIGHTLY), MARCH, existing)
        assert [o.start_at for o in obsolete] == [utc(2024, 3, 11, 9), utc(2024, 3, 25, 9)]

    def test_only_scheduled_are_reported(self):
        done = BookingOccurrence(
            series_id="series-1",
            start_at=utc(2024, 3, 11, 9),
            end_at=utc(2024, 3, 11, 11),
            status=OccurrenceStatus.COMPLETED,
        )
        assert find_obsolete(_series(FORTNIGHTLY), MARCH, [done]) == []

    def test_moved_occurrence_judged_by_anchor(self):
        moved = BookingOccurrence(
            series_id="series-1",
            start_at=utc(2024, 3, 12, 9),
            end_at=utc(2024, 3, 12, 11),
            original_start_at=utc(2024, 3, 4, 9),
        )
        assert find_obsolete(_series(FORTNIGHTLY), MARCH, [moved]) == []

    def test_anchor_outside_window_ignored(self):
        stray = BookingOccurrence(
            series_id="series-1", start_at=utc(2024, 4, 3, 9), end_at=utc(2024, 4, 3, 11),
        )
        assert find_obsolete(_series(FORTNIGHTLY), MARCH, [stray]) == []
