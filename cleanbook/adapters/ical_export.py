"""iCalendar export — renders a window of visits as a subscribable .ics feed.

Each occurrence becomes one VEVENT keyed by its occurrence id, so a
rescheduled visit updates in place in the subscriber's calendar instead of
appearing twice.
"""

from __future__ import annotations

import logging

from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent

from cleanbook.data.models import OccurrenceStatus, ScheduledVisit

logger = logging.getLogger(__name__)

_PRODID = "-//CleanBook Scheduler//EN"

# iCalendar STATUS values for each occurrence status
_ICAL_STATUS = {
    OccurrenceStatus.SCHEDULED: "CONFIRMED",
    OccurrenceStatus.COMPLETED: "CONFIRMED",
    OccurrenceStatus.CANCELLED: "CANCELLED",
    OccurrenceStatus.SKIPPED: "CANCELLED",
}


def _build_vevent(visit: ScheduledVisit) -> iEvent:
    occ = visit.occurrence
    event = iEvent()
    event.add("uid", f"{occ.id}@cleanbook")
    event.add("summary", visit.display_title)
    event.add("dtstart", occ.start_at)
    event.add("dtend", occ.end_at)
    event.add("status", _ICAL_STATUS[occ.status])

    description = occ.notes or visit.series.notes
    if description:
        event.add("description", description)
    if visit.series.service_address:
        event.add("location", visit.series.service_address)
    if visit.has_location:
        event.add("geo", (visit.series.service_lat, visit.series.service_lng))
    if occ.updated_at is not None:
        event.add("last-modified", occ.updated_at)
    return event


def render_window(visits: list[ScheduledVisit], calendar_name: str = "Bookings") -> bytes:
    """Build a VCALENDAR containing one VEVENT per visit."""
    cal = iCalendar()
    cal.add("prodid", _PRODID)
    cal.add("version", "2.0")
    cal.add("x-wr-calname", calendar_name)

    for visit in visits:
        cal.add_component(_build_vevent(visit))

    logger.debug("Rendered %d visit(s) into '%s'", len(visits), calendar_name)
    return cal.to_ical()
