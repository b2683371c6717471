"""Shared test fixtures and configuration.

Sets up environment variables before any cleanbook import reads settings,
and provides stores backed by a temp SQLite file.
"""

import os

# Patch env vars BEFORE any cleanbook imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("DEFAULT_TIMEZONE", "Australia/Sydney")
os.environ.setdefault("MAPBOX_TOKEN", "")
os.environ.setdefault("DIALPAD_API_KEY", "")

from datetime import datetime, timezone

import pytest

UTC = timezone.utc


def utc(*args) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=UTC)


class FixedClock:
    """Injectable clock that tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock(utc(2024, 1, 1, 0, 0))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_bookings.db")


@pytest.fixture
def customer_db(tmp_db_path, clock):
    from cleanbook.data.db import CustomerDB
    return CustomerDB(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def cleaner_db(tmp_db_path, clock):
    from cleanbook.data.db import CleanerDB
    return CleanerDB(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def series_db(tmp_db_path, clock):
    from cleanbook.data.db import SeriesDB
    return SeriesDB(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def occurrence_store(tmp_db_path, clock):
    from cleanbook.data.db import OccurrenceStore
    return OccurrenceStore(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def customer(customer_db):
    return customer_db.add_customer("Jo Citizen", phone="+61400000000", email="jo@example.com")


@pytest.fixture
def weekly_series(series_db, customer):
    """Weekly series anchored Monday 2024-01-01 09:00 UTC, 2 hours."""
    from cleanbook.core.recurrence import Frequency, RecurrenceRule
    return series_db.create_series(
        customer_id=customer.id,
        starts_at=utc(2024, 1, 1, 9, 0),
        duration_minutes=120,
        rule=RecurrenceRule(frequency=Frequency.WEEKLY, interval=1),
        title="Regular clean",
        timezone_name="UTC",
    )


@pytest.fixture
def staff_service(series_db, occurrence_store):
    from cleanbook.adapters.static_session import StaticSession
    from cleanbook.core.scheduling_service import SchedulingService
    return SchedulingService(
        series_db=series_db,
        occurrence_store=occurrence_store,
        session=StaticSession(is_staff=True),
    )
