"""Mapbox geocoding adapter — implements GeocodingPort.

Uses the Mapbox forward geocoding endpoint to turn a free-text service
address into (label, coordinate) candidates for the dispatch map.

Gracefully degrades: returns an empty list on any failure (no token,
timeout, invalid response, etc.).
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from cleanbook.ports.geocoding_port import GeocodeCandidate

logger = logging.getLogger(__name__)

_GEOCODE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"
_TIMEOUT_SECONDS = 5


class MapboxGeocoder:
    """Mapbox implementation of GeocodingPort."""

    def __init__(self, token: str, country: str = "AU", limit: int = 5) -> None:
        self._token = token
        self._country = country
        self._limit = limit

    async def geocode(self, query: str) -> list[GeocodeCandidate]:
        if not query or not query.strip() or not self._token:
            return []

        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.get(
                    _GEOCODE_URL.format(query=quote(query.strip())),
                    params={
                        "access_token": self._token,
                        "autocomplete": "true",
                        "limit": self._limit,
                        "country": self._country,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except Exception as exc:
            logger.warning("Mapbox geocoding failed for '%s': %s", query, exc)
            return []

        candidates: list[GeocodeCandidate] = []
        for feature in data.get("features", []):
            center = feature.get("center") or []
            label = feature.get("place_name")
            if not label or len(center) != 2:
                continue
            lng, lat = center  # Mapbox orders coordinates [lng, lat]
            candidates.append(GeocodeCandidate(label=label, lat=float(lat), lng=float(lng)))

        if not candidates:
            logger.info("No geocoding results for '%s'", query)
        return candidates
