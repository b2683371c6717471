"""
CleanBook Scheduler — Occurrence materializer.

Reconciles "what occurrences should exist for this series in this window"
against "what already exists" and returns only what is missing.

Pure business logic: no I/O, never mutates its inputs. Persisting the result
is the OccurrenceStore's job.
"""

from __future__ import annotations

import logging
from typing import Iterable

from cleanbook.core.recurrence import enumerate_starts
from cleanbook.data.models import (
    BookingOccurrence,
    BookingSeries,
    OccurrenceStatus,
    TimeWindow,
    anchor_key,
)

logger = logging.getLogger(__name__)


def candidate_starts(series: BookingSeries, window: TimeWindow) -> list:
    """UTC start times the series' rule generates inside the window."""
    return enumerate_starts(
        series.rule, series.starts_at, window.start, window.end, tz=series.timezone,
    )


def materialize(
    series: BookingSeries,
    window: TimeWindow,
    existing: Iterable[BookingOccurrence],
) -> list[BookingOccurrence]:
    """Return the new occurrences the series still needs in `window`.

    A candidate is skipped when an existing occurrence already holds its
    anchor, including one that was dragged elsewhere: its original_start_at
    still matches the generated slot.

    Args:
        series: The series to expand.
        window: Half-open range to fill.
        existing: Occurrences already persisted for this series.

    Returns:
        New `scheduled` occurrences, ascending by start. Empty when the
        series is paused or cancelled.
    """
    if not series.accepts_new_occurrences:
        logger.debug(
            "Series %s is %s, not generating new occurrences",
            series.id, series.status.value,
        )
        return []

    taken = {anchor_key(occ.start_at, occ.original_start_at) for occ in existing}

    created: list[BookingOccurrence] = []
    for start in candidate_starts(series, window):
        if start in taken:
            continue
        taken.add(start)
        created.append(
            BookingOccurrence(
                series_id=series.id,
                start_at=start,
                end_at=start + series.duration,
            )
        )

    created.sort(key=lambda occ: occ.start_at)
    if created:
        logger.debug(
            "Series %s: %d new occurrence(s) for %s – %s",
            series.id, len(created), window.start.isoformat(), window.end.isoformat(),
        )
    return created


def find_obsolete(
    series: BookingSeries,
    window: TimeWindow,
    existing: Iterable[BookingOccurrence],
) -> list[BookingOccurrence]:
    """Existing scheduled occurrences whose anchor the current rule no longer generates.

    Used after a series' cadence or time changes. Nothing is deleted here;
    the caller decides whether to mark them cancelled.
    """
    generated = set(candidate_starts(series, window))
    obsolete = [
        occ for occ in existing
        if occ.status is OccurrenceStatus.SCHEDULED
        and window.contains(occ.anchor)
        and occ.anchor not in generated
    ]
    obsolete.sort(key=lambda occ: occ.start_at)
    return obsolete
