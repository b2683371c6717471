"""Tests for cleanbook.adapters.ical_export — .ics feed rendering."""

from datetime import datetime, timedelta, timezone

from icalendar import Calendar as iCalendar

from cleanbook.adapters.ical_export import render_window
from cleanbook.data.models import (
    BookingOccurrence,
    BookingSeries,
    Customer,
    OccurrenceStatus,
    ScheduledVisit,
)

UTC = timezone.utc


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def _visit(occ_id, start, status=OccurrenceStatus.SCHEDULED, **series_kwargs):
    series = BookingSeries(
        id="s1", customer_id="c1", starts_at=start, duration_minutes=120, **series_kwargs,
    )
    occ = BookingOccurrence(
        id=occ_id,
        series_id="s1",
        start_at=start,
        end_at=start + timedelta(hours=2),
        status=status,
        updated_at=utc(2024, 1, 1),
    )
    return ScheduledVisit(occ, series, Customer(id="c1", name="Jo"))


def _events(data: bytes):
    return list(iCalendar.from_ical(data).walk("VEVENT"))


class TestRenderWindow:
    def test_one_event_per_visit(self):
        data = render_window([
            _visit("o1", utc(2024, 1, 1, 9)),
            _visit("o2", utc(2024, 1, 8, 9)),
        ])
        events = _events(data)
        assert [str(e["uid"]) for e in events] == ["o1@cleanbook", "o2@cleanbook"]
        assert events[0]["dtstart"].dt == utc(2024, 1, 1, 9)
        assert events[0]["dtend"].dt == utc(2024, 1, 1, 11)
        assert str(events[0]["summary"]) == "Jo - Regular clean"

    def test_calendar_properties(self):
        cal = iCalendar.from_ical(render_window([], calendar_name="Dispatch"))
        assert str(cal["x-wr-calname"]) == "Dispatch"
        assert str(cal["version"]) == "2.0"
        assert _events(render_window([])) == []

    def test_status_mapping(self):
        events = _events(render_window([
            _visit("o1", utc(2024, 1, 1, 9)),
            _visit("o2", utc(2024, 1, 2, 9), status=OccurrenceStatus.CANCELLED),
            _visit("o3", utc(2024, 1, 3, 9), status=OccurrenceStatus.SKIPPED),
            _visit("o4", utc(2024, 1, 4, 9), status=OccurrenceStatus.COMPLETED),
        ]))
        assert [str(e["status"]) for e in events] == ["CONFIRMED", "CANCELLED", "CANCELLED", "CONFIRMED"]

    def test_location_and_notes(self):
        visit = _visit(
            "o1", utc(2024, 1, 1, 9),
            notes="Two dogs", service_address="1 George St", service_lat=-33.86, service_lng=151.2,
        )
        event = _events(render_window([visit]))[0]
        assert str(event["location"]) == "1 George St"
        assert str(event["description"]) == "Two dogs"
        assert "geo" in event

    def test_optional_fields_omitted(self):
        event = _events(render_window([_visit("o1", utc(2024, 1, 1, 9))]))[0]
        assert "location" not in event
        assert "geo" not in event
        assert "description" not in event
