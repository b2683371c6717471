"""
CleanBook Scheduler — Entry Point.

    python main.py materialize [--days N]      fill the next N days for every active series
    python main.py reminders                    text customers about upcoming visits
    python main.py export --days N --out FILE   write an .ics feed of the next N days
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from cleanbook.adapters.dialpad_sms import DialpadSmsSender
from cleanbook.adapters.ical_export import render_window
from cleanbook.adapters.mapbox_geocoder import MapboxGeocoder
from cleanbook.adapters.static_session import StaticSession
from cleanbook.config import settings
from cleanbook.core.scheduling_service import SchedulingService
from cleanbook.data.db import OccurrenceStore, SeriesDB
from cleanbook.data.models import TimeWindow

logger = logging.getLogger("cleanbook")


def build_service() -> SchedulingService:
    return SchedulingService(
        series_db=SeriesDB(),
        occurrence_store=OccurrenceStore(),
        session=StaticSession(is_staff=settings.STAFF_SESSION),
        notifier=DialpadSmsSender(settings.DIALPAD_API_KEY, settings.DIALPAD_USER_ID),
        geocoder=MapboxGeocoder(settings.MAPBOX_TOKEN),
    )


async def run(args: argparse.Namespace) -> None:
    service = build_service()
    now = datetime.now(timezone.utc)

    if args.command == "materialize":
        report = await service.ensure_materialized(TimeWindow.spanning_days(now, args.days))
        logger.info(
            "Materialized: %d new, %d existing, %d failed series",
            report.inserted, report.conflicts, len(report.failed_series),
        )
    elif args.command == "reminders":
        sent = await service.send_reminders(SchedulingService.upcoming_window(now))
        logger.info("Reminders sent: %d", sent)
    elif args.command == "export":
        visits = await service.load_window(
            TimeWindow.spanning_days(now, args.days), exclude_cancelled=True,
        )
        Path(args.out).write_bytes(render_window(visits))
        logger.info("Wrote %d visit(s) to %s", len(visits), args.out)


def main() -> None:
    parser = argparse.ArgumentParser(description="CleanBook booking scheduler")
    sub = parser.add_subparsers(dest="command", required=True)

    materialize = sub.add_parser("materialize", help="generate upcoming occurrences")
    materialize.add_argument("--days", type=int, default=settings.INITIAL_HORIZON_DAYS)

    sub.add_parser("reminders", help="send SMS reminders for upcoming visits")

    export = sub.add_parser("export", help="write an iCalendar feed")
    export.add_argument("--days", type=int, default=14)
    export.add_argument("--out", default="bookings.ics")

    asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    main()
