"""
CleanBook Scheduler — Centralized configuration.

Loads all settings from .env and validates them.
Every other module reads configuration through the `settings` singleton.
"""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from cleanbook/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/bookings.db"

    # Booking defaults offered by the booking form
    DEFAULT_TIMEZONE: str = "Australia/Sydney"
    DEFAULT_DURATION_MINUTES: int = 120
    DEFAULT_SERIES_TITLE: str = "Regular clean"

    # How far ahead a brand-new series is materialized on creation
    INITIAL_HORIZON_DAYS: int = 90

    # SMS reminders go out for visits starting within this many hours
    REMINDER_LEAD_HOURS: int = 24

    # Mapbox forward geocoding (optional, for series locations)
    MAPBOX_TOKEN: str = ""

    # Dialpad SMS (optional, for reminders)
    DIALPAD_API_KEY: str = ""
    DIALPAD_USER_ID: str = ""

    # Local runs without the hosted identity service
    STAFF_SESSION: bool = False

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown IANA timezone: {v!r}") from exc
        return v

    @field_validator(
        "DEFAULT_DURATION_MINUTES", "INITIAL_HORIZON_DAYS", "REMINDER_LEAD_HOURS",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"Expected a positive integer, got {value}")
        return value

    @field_validator("STAFF_SESSION", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in {"1", "true", "yes", "on"}


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/bookings.db"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "Australia/Sydney"),
        DEFAULT_DURATION_MINUTES=os.getenv("DEFAULT_DURATION_MINUTES", "120"),
        DEFAULT_SERIES_TITLE=os.getenv("DEFAULT_SERIES_TITLE", "Regular clean"),
        INITIAL_HORIZON_DAYS=os.getenv("INITIAL_HORIZON_DAYS", "90"),
        REMINDER_LEAD_HOURS=os.getenv("REMINDER_LEAD_HOURS", "24"),
        MAPBOX_TOKEN=os.getenv("MAPBOX_TOKEN", ""),
        DIALPAD_API_KEY=os.getenv("DIALPAD_API_KEY", ""),
        DIALPAD_USER_ID=os.getenv("DIALPAD_USER_ID", ""),
        STAFF_SESSION=os.getenv("STAFF_SESSION", "false"),
    )


# Singleton, imported by all other modules as:
#   from cleanbook.config import settings
settings = _load_settings()
