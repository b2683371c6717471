"""
CleanBook Scheduler — Booking Database.

SQLite persistence for customers, cleaners, booking series and their
occurrences. The OccurrenceStore is the only component that writes
occurrences; it leans on the anchor unique index rather than in-memory
dedup, so two callers materializing the same window cannot double-insert.

Timestamps are stored as fixed-width UTC ISO strings, so string order is
time order in range queries.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cleanbook.core.exceptions import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from cleanbook.core.recurrence import RecurrenceRule
from cleanbook.data.models import (
    BookingOccurrence,
    BookingSeries,
    Cleaner,
    Customer,
    OccurrenceStatus,
    ScheduledVisit,
    SeriesStatus,
    TimeWindow,
    anchor_key,
)

logger = logging.getLogger(__name__)

# SQL twin of models.anchor_key(); the unique index below is built on it.
ANCHOR_SQL = "COALESCE(original_start_at, start_at)"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS customers (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    phone       TEXT,
    email       TEXT,
    address     TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cleaners (
    id             TEXT PRIMARY KEY,
    full_name      TEXT    NOT NULL,
    phone          TEXT,
    email          TEXT,
    base_location  TEXT,
    active         INTEGER NOT NULL DEFAULT 1,
    created_at     TEXT    NOT NULL,
    updated_at     TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS booking_series (
    id                TEXT PRIMARY KEY,
    customer_id       TEXT    NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
    title             TEXT    NOT NULL DEFAULT 'Regular clean',
    timezone          TEXT    NOT NULL,
    starts_at         TEXT    NOT NULL,
    duration_minutes  INTEGER NOT NULL CHECK (duration_minutes > 0),
    rrule             TEXT,
    until_date        TEXT,
    occurrence_count  INTEGER,
    notes             TEXT,
    status            TEXT    NOT NULL DEFAULT 'active'
                      CHECK (status IN ('active', 'paused', 'cancelled')),
    service_address   TEXT,
    service_lat       REAL,
    service_lng       REAL,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL,
    CHECK (until_date IS NULL OR occurrence_count IS NULL)
);

CREATE INDEX IF NOT EXISTS idx_booking_series_customer_id ON booking_series(customer_id);
CREATE INDEX IF NOT EXISTS idx_booking_series_status ON booking_series(status);

CREATE TABLE IF NOT EXISTS booking_occurrences (
    id                 TEXT PRIMARY KEY,
    series_id          TEXT NOT NULL REFERENCES booking_series(id) ON DELETE CASCADE,
    start_at           TEXT NOT NULL,
    end_at             TEXT NOT NULL,
    original_start_at  TEXT,
    status             TEXT NOT NULL DEFAULT 'scheduled'
                       CHECK (status IN ('scheduled', 'completed', 'cancelled', 'skipped')),
    cleaner_id         TEXT REFERENCES cleaners(id) ON DELETE SET NULL,
    assigned_at        TEXT,
    notes              TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    CHECK (start_at < end_at)
);

CREATE INDEX IF NOT EXISTS idx_booking_occurrences_start_at ON booking_occurrences(start_at);
CREATE INDEX IF NOT EXISTS idx_booking_occurrences_series_id ON booking_occurrences(series_id);
CREATE INDEX IF NOT EXISTS idx_booking_occurrences_status ON booking_occurrences(status);

-- Prevent duplicate occurrences for the same series slot, even after a move
CREATE UNIQUE INDEX IF NOT EXISTS idx_booking_occurrences_anchor
    ON booking_occurrences(series_id, {ANCHOR_SQL});
"""

# Columns added after the first release; (table, column, DDL) for old DBs.
_MIGRATIONS = [
    ("booking_series", "service_address", "TEXT"),
    ("booking_series", "service_lat", "REAL"),
    ("booking_series", "service_lng", "REAL"),
    ("booking_occurrences", "cleaner_id", "TEXT REFERENCES cleaners(id) ON DELETE SET NULL"),
    ("booking_occurrences", "assigned_at", "TEXT"),
]

_SERIES_COLUMNS = (
    "id", "customer_id", "title", "timezone", "starts_at", "duration_minutes",
    "rrule", "until_date", "occurrence_count", "notes", "status",
    "service_address", "service_lat", "service_lng", "created_at", "updated_at",
)
_CUSTOMER_COLUMNS = ("id", "name", "phone", "email", "address")

_UNSET = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime | None) -> str | None:
    """Aware datetime → fixed-width UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"Timestamp must be timezone-aware, got {value!r}")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _integrity_error(exc: sqlite3.IntegrityError, what: str) -> SchedulingError:
    """Translate a SQLite constraint failure into the scheduling taxonomy."""
    message = str(exc)
    if "UNIQUE" in message:
        return ConflictError(f"{what}: slot already taken ({message})")
    if "FOREIGN KEY" in message:
        return NotFoundError(f"{what}: referenced row does not exist")
    return ValidationError(f"{what}: {message}")


def _validate_timezone(tz: str) -> str:
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown IANA timezone: {tz!r}") from None
    return tz


class _SQLiteStore:
    """Shared connection handling and schema bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if db_path is None:
            from cleanbook.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._clock = clock or _utcnow
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            for table, column, ddl in _MIGRATIONS:
                existing_cols = {
                    row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
                }
                if column not in existing_cols:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_booking_occurrences_cleaner_id "
                "ON booking_occurrences(cleaner_id)"
            )
        logger.debug("Booking tables initialized at %s", self._db_path)

    def _now(self) -> str:
        return to_db_timestamp(self._clock())


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_customer(row: sqlite3.Row, prefix: str = "") -> Customer:
    return Customer(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        phone=row[f"{prefix}phone"],
        email=row[f"{prefix}email"],
        address=row[f"{prefix}address"],
    )


def _row_to_cleaner(row: sqlite3.Row) -> Cleaner:
    return Cleaner(
        id=row["id"],
        full_name=row["full_name"],
        phone=row["phone"],
        email=row["email"],
        base_location=row["base_location"],
        active=bool(row["active"]),
    )


def _row_to_series(row: sqlite3.Row, prefix: str = "", strict: bool = True) -> BookingSeries:
    """Map a series row. With strict=False a malformed stored rule is logged, not raised."""
    until = row[f"{prefix}until_date"]
    until_date = date.fromisoformat(until) if until else None
    try:
        rule = RecurrenceRule.from_columns(
            row[f"{prefix}rrule"], until_date, row[f"{prefix}occurrence_count"],
        )
    except ConfigurationError as exc:
        if strict:
            raise
        logger.warning("Series %s has an unusable rule: %s", row[f"{prefix}id"], exc)
        rule = None

    return BookingSeries(
        id=row[f"{prefix}id"],
        customer_id=row[f"{prefix}customer_id"],
        title=row[f"{prefix}title"],
        timezone=row[f"{prefix}timezone"],
        starts_at=from_db_timestamp(row[f"{prefix}starts_at"]),
        duration_minutes=row[f"{prefix}duration_minutes"],
        rule=rule,
        notes=row[f"{prefix}notes"],
        status=SeriesStatus(row[f"{prefix}status"]),
        service_address=row[f"{prefix}service_address"],
        service_lat=row[f"{prefix}service_lat"],
        service_lng=row[f"{prefix}service_lng"],
        created_at=from_db_timestamp(row[f"{prefix}created_at"]),
        updated_at=from_db_timestamp(row[f"{prefix}updated_at"]),
    )


def _row_to_occurrence(row: sqlite3.Row) -> BookingOccurrence:
    return BookingOccurrence(
        id=row["id"],
        series_id=row["series_id"],
        start_at=from_db_timestamp(row["start_at"]),
        end_at=from_db_timestamp(row["end_at"]),
        original_start_at=from_db_timestamp(row["original_start_at"]),
        status=OccurrenceStatus(row["status"]),
        cleaner_id=row["cleaner_id"],
        assigned_at=from_db_timestamp(row["assigned_at"]),
        notes=row["notes"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


class CustomerDB(_SQLiteStore):
    """SQLite-backed storage for customers (the lead a series belongs to)."""

    def add_customer(
        self,
        name: str,
        phone: str | None = None,
        email: str | None = None,
        address: str | None = None,
    ) -> Customer:
        customer = Customer(
            id=str(uuid.uuid4()),
            name=name.strip(),
            phone=phone.strip() if phone else None,
            email=email.strip() if email else None,
            address=address,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO customers (id, name, phone, email, address, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (customer.id, customer.name, customer.phone, customer.email,
                 customer.address, self._now()),
            )
        logger.info("Customer added: %s '%s'", customer.id, customer.name)
        return customer

    def get_customer(self, customer_id: str) -> Customer | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM customers WHERE id = ?", (customer_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_customer(row)


# ---------------------------------------------------------------------------
# Cleaners
# ---------------------------------------------------------------------------


class CleanerDB(_SQLiteStore):
    """SQLite-backed storage for cleaners (the assignable resource)."""

    def add_cleaner(
        self,
        full_name: str,
        phone: str | None = None,
        email: str | None = None,
        base_location: str | None = None,
    ) -> Cleaner:
        cleaner = Cleaner(
            id=str(uuid.uuid4()),
            full_name=full_name.strip(),
            phone=phone,
            email=email,
            base_location=base_location,
        )
        now = self._now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cleaners
                    (id, full_name, phone, email, base_location, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (cleaner.id, cleaner.full_name, phone, email, base_location, now, now),
            )
        logger.info("Cleaner added: %s '%s'", cleaner.id, cleaner.full_name)
        return cleaner

    def get_cleaner(self, cleaner_id: str) -> Cleaner | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM cleaners WHERE id = ?", (cleaner_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_cleaner(row)

    def list_cleaners(self, active_only: bool = True) -> list[Cleaner]:
        query = "SELECT * FROM cleaners"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY full_name"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_cleaner(r) for r in rows]

    def set_active(self, cleaner_id: str, active: bool) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE cleaners SET active = ?, updated_at = ? WHERE id = ?",
                (int(active), self._now(), cleaner_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Cleaner {cleaner_id} not found")
        logger.info("Cleaner %s active=%s", cleaner_id, active)

    def delete_cleaner(self, cleaner_id: str, now: datetime | None = None) -> None:
        """Delete a cleaner who has no upcoming scheduled visits.

        Past visits keep their history with the assignment cleared
        (ON DELETE SET NULL). The check and the delete are one statement.

        Raises:
            ConflictError: Future scheduled occurrences still reference the cleaner.
            NotFoundError: No such cleaner.
        """
        cutoff = to_db_timestamp(now or self._clock())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM cleaners
                WHERE id = ?
                  AND NOT EXISTS (
                      SELECT 1 FROM booking_occurrences
                      WHERE cleaner_id = ? AND start_at >= ? AND status = 'scheduled'
                  )
                """,
                (cleaner_id, cleaner_id, cutoff),
            )
            if cursor.rowcount > 0:
                logger.info("Cleaner %s deleted", cleaner_id)
                return
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM cleaners WHERE id = ?) AS found,
                    (SELECT COUNT(*) FROM booking_occurrences
                     WHERE cleaner_id = ? AND start_at >= ? AND status = 'scheduled') AS upcoming
                """,
                (cleaner_id, cleaner_id, cutoff),
            ).fetchone()

        if not row["found"]:
            raise NotFoundError(f"Cleaner {cleaner_id} not found")
        raise ConflictError(
            f"Cleaner {cleaner_id} still has {row['upcoming']} upcoming visit(s); "
            "reassign them first"
        )


# ---------------------------------------------------------------------------
# Booking series
# ---------------------------------------------------------------------------


class SeriesDB(_SQLiteStore):
    """SQLite-backed storage for booking series."""

    def create_series(
        self,
        customer_id: str,
        starts_at: datetime,
        duration_minutes: int,
        rule: RecurrenceRule | None = None,
        title: str = "Regular clean",
        timezone_name: str = "UTC",
        notes: str | None = None,
    ) -> BookingSeries:
        """Insert a new active series.

        Raises:
            ValidationError: Non-positive duration or naive starts_at.
            ConfigurationError: Unknown timezone.
            NotFoundError: Customer does not exist.
        """
        _validate_timezone(timezone_name)
        if starts_at.tzinfo is None or starts_at.utcoffset() is None:
            raise ValidationError("starts_at must be timezone-aware")
        now = self._clock()
        series = BookingSeries(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            starts_at=starts_at.astimezone(timezone.utc),
            duration_minutes=duration_minutes,
            rule=rule,
            title=title,
            timezone=timezone_name,
            notes=notes,
            status=SeriesStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO booking_series
                        (id, customer_id, title, timezone, starts_at, duration_minutes,
                         rrule, until_date, occurrence_count, notes, status,
                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        series.id, customer_id, title, timezone_name,
                        to_db_timestamp(series.starts_at), duration_minutes,
                        *_rule_columns(rule), notes, series.status.value,
                        to_db_timestamp(now), to_db_timestamp(now),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc, f"Series for customer {customer_id}") from exc

        logger.info(
            "Series created: %s '%s' %s",
            series.id, title, rule.to_rrule() if rule else "one-time",
        )
        return series

    def get_series(self, series_id: str) -> BookingSeries | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM booking_series WHERE id = ?", (series_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_series(row)

    def series_ids(self, status: SeriesStatus | None = None) -> list[str]:
        """IDs only, so one bad row can be skipped without hiding the others."""
        query = "SELECT id FROM booking_series"
        params: list = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(SeriesStatus(status).value)
        query += " ORDER BY starts_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [r["id"] for r in rows]

    def list_series(
        self,
        status: SeriesStatus | None = None,
        customer_id: str | None = None,
    ) -> list[BookingSeries]:
        conditions: list[str] = []
        params: list = []
        if status is not None:
            conditions.append("status = ?")
            params.append(SeriesStatus(status).value)
        if customer_id is not None:
            conditions.append("customer_id = ?")
            params.append(customer_id)

        query = "SELECT * FROM booking_series"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY starts_at"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_series(r) for r in rows]

    def update_schedule(
        self,
        series_id: str,
        *,
        starts_at: datetime | None = None,
        duration_minutes: int | None = None,
        rule: RecurrenceRule | None | object = _UNSET,
        timezone_name: str | None = None,
        title: str | None = None,
    ) -> BookingSeries:
        """Change cadence, time or duration. Existing occurrences are untouched.

        Pass rule=None to turn the series into a one-time booking.
        """
        assignments: list[str] = []
        params: list = []
        if starts_at is not None:
            assignments.append("starts_at = ?")
            params.append(to_db_timestamp(starts_at))
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise ValidationError(
                    f"duration_minutes must be positive, got {duration_minutes}"
                )
            assignments.append("duration_minutes = ?")
            params.append(duration_minutes)
        if rule is not _UNSET:
            assignments.extend(["rrule = ?", "until_date = ?", "occurrence_count = ?"])
            params.extend(_rule_columns(rule))
        if timezone_name is not None:
            assignments.append("timezone = ?")
            params.append(_validate_timezone(timezone_name))
        if title is not None:
            assignments.append("title = ?")
            params.append(title)

        if assignments:
            assignments.append("updated_at = ?")
            params.append(self._now())
            params.append(series_id)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE booking_series SET {', '.join(assignments)} WHERE id = ?",
                    params,
                )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Series {series_id} not found")
            logger.info("Series %s schedule updated", series_id)

        series = self.get_series(series_id)
        if series is None:
            raise NotFoundError(f"Series {series_id} not found")
        return series

    def set_status(self, series_id: str, status: SeriesStatus | str) -> None:
        try:
            value = SeriesStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown series status: {status!r}") from None
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE booking_series SET status = ?, updated_at = ? WHERE id = ?",
                (value, self._now(), series_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Series {series_id} not found")
        logger.info("Series %s status -> %s", series_id, value)

    def set_location(
        self,
        series_id: str,
        address: str | None,
        lat: float | None,
        lng: float | None,
    ) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE booking_series
                SET service_address = ?, service_lat = ?, service_lng = ?, updated_at = ?
                WHERE id = ?
                """,
                (address, lat, lng, self._now(), series_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Series {series_id} not found")
        logger.info("Series %s location set to %r", series_id, address)

    def delete_series(self, series_id: str) -> bool:
        """Hard-delete a series and, by cascade, all of its occurrences.

        Day-to-day retirement should set status=cancelled instead; this is
        for removing bookings created in error.
        """
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM booking_series WHERE id = ?", (series_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Series %s deleted with its occurrences", series_id)
        return deleted


def _rule_columns(rule: RecurrenceRule | None) -> tuple:
    """(rrule, until_date, occurrence_count) column values for a rule."""
    if rule is None:
        return (None, None, None)
    return (
        rule.to_rrule(),
        rule.until_date.isoformat() if rule.until_date else None,
        rule.occurrence_count,
    )


# ---------------------------------------------------------------------------
# Occurrences
# ---------------------------------------------------------------------------


@dataclass
class UpsertResult:
    """Outcome of a batch insert: what landed and what hit an existing anchor."""

    inserted: list[BookingOccurrence] = field(default_factory=list)
    conflicts: list[BookingOccurrence] = field(default_factory=list)


class OccurrenceStore(_SQLiteStore):
    """The only component that reads and writes persisted occurrences.

    Every mutation is a single UPDATE scoped to one row, so two dispatchers
    editing concurrently never lose each other's changes through a split
    read-modify-write.
    """

    def _insert(self, conn: sqlite3.Connection, occ: BookingOccurrence) -> BookingOccurrence:
        now = self._clock()
        stored = replace(
            occ,
            id=occ.id or str(uuid.uuid4()),
            start_at=occ.start_at.astimezone(timezone.utc),
            end_at=occ.end_at.astimezone(timezone.utc),
            created_at=now,
            updated_at=now,
        )
        try:
            conn.execute(
                """
                INSERT INTO booking_occurrences
                    (id, series_id, start_at, end_at, original_start_at, status,
                     cleaner_id, assigned_at, notes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.id, stored.series_id,
                    to_db_timestamp(stored.start_at), to_db_timestamp(stored.end_at),
                    to_db_timestamp(stored.original_start_at), stored.status.value,
                    stored.cleaner_id, to_db_timestamp(stored.assigned_at), stored.notes,
                    to_db_timestamp(now), to_db_timestamp(now),
                ),
            )
        except sqlite3.IntegrityError as exc:
            anchor = anchor_key(stored.start_at, stored.original_start_at)
            raise _integrity_error(
                exc, f"Occurrence for series {stored.series_id} at {anchor.isoformat()}"
            ) from exc
        return stored

    def insert_occurrence(self, occ: BookingOccurrence) -> BookingOccurrence:
        """Insert a single occurrence.

        Raises:
            ConflictError: The series already has an occurrence on this anchor.
            NotFoundError: The series does not exist.
        """
        with self._connect() as conn:
            return self._insert(conn, occ)

    def upsert_generated(self, occurrences: Iterable[BookingOccurrence]) -> UpsertResult:
        """Insert freshly materialized occurrences, ignoring anchors already taken.

        Safe to call with candidates that raced another writer: the unique
        index rejects the duplicate row and the rest of the batch still lands.
        """
        result = UpsertResult()
        with self._connect() as conn:
            for occ in occurrences:
                try:
                    result.inserted.append(self._insert(conn, occ))
                except ConflictError:
                    result.conflicts.append(occ)

        if result.conflicts:
            logger.warning(
                "%d generated occurrence(s) already existed: %s",
                len(result.conflicts),
                ", ".join(
                    f"{c.series_id}@{anchor_key(c.start_at, c.original_start_at).isoformat()}"
                    for c in result.conflicts
                ),
            )
        if result.inserted:
            logger.info("Inserted %d generated occurrence(s)", len(result.inserted))
        return result

    def get_occurrence(self, occurrence_id: str) -> BookingOccurrence | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM booking_occurrences WHERE id = ?", (occurrence_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_occurrence(row)

    def existing_for_series(
        self, series_id: str, window: TimeWindow,
    ) -> list[BookingOccurrence]:
        """Occurrences whose effective anchor falls in the window.

        Keyed on the anchor rather than the current start, so a visit dragged
        out of the window still claims its generated slot.
        """
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM booking_occurrences
                WHERE series_id = ? AND {ANCHOR_SQL} >= ? AND {ANCHOR_SQL} < ?
                ORDER BY start_at
                """,
                (series_id, to_db_timestamp(window.start), to_db_timestamp(window.end)),
            ).fetchall()
        return [_row_to_occurrence(r) for r in rows]

    def query_window(
        self,
        window: TimeWindow,
        exclude_cancelled: bool = False,
        include_customer: bool = True,
        cleaner_id: str | None = None,
    ) -> list[ScheduledVisit]:
        """Occurrences starting in [window.start, window.end), joined with their series.

        Calendar views show every status; dispatch and map views pass
        exclude_cancelled=True.
        """
        series_cols = ", ".join(f"s.{c} AS s_{c}" for c in _SERIES_COLUMNS)
        select = f"SELECT o.*, {series_cols}"
        joins = " JOIN booking_series s ON s.id = o.series_id"
        if include_customer:
            select += ", " + ", ".join(f"c.{c} AS c_{c}" for c in _CUSTOMER_COLUMNS)
            joins += " LEFT JOIN customers c ON c.id = s.customer_id"

        query = f"{select} FROM booking_occurrences o{joins} WHERE o.start_at >= ? AND o.start_at < ?"
        params: list = [to_db_timestamp(window.start), to_db_timestamp(window.end)]
        if exclude_cancelled:
            query += " AND o.status != ?"
            params.append(OccurrenceStatus.CANCELLED.value)
        if cleaner_id is not None:
            query += " AND o.cleaner_id = ?"
            params.append(cleaner_id)
        query += " ORDER BY o.start_at, o.id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        visits: list[ScheduledVisit] = []
        for row in rows:
            customer = None
            if include_customer and row["c_id"] is not None:
                customer = _row_to_customer(row, prefix="c_")
            visits.append(
                ScheduledVisit(
                    occurrence=_row_to_occurrence(row),
                    series=_row_to_series(row, prefix="s_", strict=False),
                    customer=customer,
                )
            )
        return visits

    def _update_one(self, occurrence_id: str, sql: str, params: tuple) -> BookingOccurrence:
        """Run a single-row UPDATE and return the row as written."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(sql, params)
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Occurrence {occurrence_id} not found")
                row = conn.execute(
                    "SELECT * FROM booking_occurrences WHERE id = ?", (occurrence_id,)
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc, f"Occurrence {occurrence_id}") from exc
        return _row_to_occurrence(row)

    def reschedule(
        self, occurrence_id: str, new_start: datetime, new_end: datetime,
    ) -> BookingOccurrence:
        """Move an occurrence. The first move pins original_start_at to the old start.

        Later moves leave original_start_at alone, so the anchor always
        reflects the time the slot was first generated at.
        """
        for name, value in (("new_start", new_start), ("new_end", new_end)):
            if value.tzinfo is None or value.utcoffset() is None:
                raise ValidationError(f"{name} must be timezone-aware, got {value!r}")
        if new_end <= new_start:
            raise ValidationError(
                f"New end {new_end.isoformat()} must be after new start {new_start.isoformat()}"
            )
        occ = self._update_one(
            occurrence_id,
            """
            UPDATE booking_occurrences
            SET original_start_at = COALESCE(original_start_at, start_at),
                start_at = ?, end_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (to_db_timestamp(new_start), to_db_timestamp(new_end), self._now(), occurrence_id),
        )
        logger.info(
            "Occurrence %s moved to %s (anchor %s)",
            occurrence_id, occ.start_at.isoformat(), occ.anchor.isoformat(),
        )
        return occ

    def set_status(
        self, occurrence_id: str, status: OccurrenceStatus | str,
    ) -> BookingOccurrence:
        """Update lifecycle status only; timing and assignment are untouched."""
        try:
            value = OccurrenceStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown occurrence status: {status!r}") from None
        occ = self._update_one(
            occurrence_id,
            "UPDATE booking_occurrences SET status = ?, updated_at = ? WHERE id = ?",
            (value, self._now(), occurrence_id),
        )
        logger.info("Occurrence %s status -> %s", occurrence_id, value)
        return occ

    def assign(self, occurrence_id: str, cleaner_id: str | None) -> BookingOccurrence:
        """Set or clear the cleaner. An unknown cleaner raises NotFoundError."""
        now = self._now()
        occ = self._update_one(
            occurrence_id,
            """
            UPDATE booking_occurrences
            SET cleaner_id = ?, assigned_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (cleaner_id, now if cleaner_id else None, now, occurrence_id),
        )
        logger.info("Occurrence %s assigned to %s", occurrence_id, cleaner_id or "nobody")
        return occ

    def set_notes(self, occurrence_id: str, notes: str | None) -> BookingOccurrence:
        return self._update_one(
            occurrence_id,
            "UPDATE booking_occurrences SET notes = ?, updated_at = ? WHERE id = ?",
            (notes, self._now(), occurrence_id),
        )
