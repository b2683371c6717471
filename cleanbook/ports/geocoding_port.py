"""Geocoding port — free-text address to candidate coordinates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class GeocodeCandidate:
    """One match for an address query."""

    label: str
    lat: float
    lng: float


class GeocodingPort(Protocol):
    """Abstract geocoding interface used by core modules."""

    async def geocode(self, query: str) -> list[GeocodeCandidate]: ...
