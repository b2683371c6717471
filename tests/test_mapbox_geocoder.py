"""Tests for cleanbook.adapters.mapbox_geocoder — Mapbox forward geocoding."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from cleanbook.adapters.mapbox_geocoder import MapboxGeocoder


def _mock_client(payload=None, error=None):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.get = AsyncMock(side_effect=error)
    else:
        mock_client.get = AsyncMock(return_value=mock_resp)
    return mock_client


class TestGeocode:
    @pytest.mark.asyncio
    async def test_returns_candidates_in_lat_lng_order(self):
        mock_client = _mock_client({
            "features": [
                {"place_name": "1 George St, Sydney NSW 2000", "center": [151.2073, -33.8688]},
                {"place_name": "1 George St, Parramatta NSW 2150", "center": [151.0036, -33.8150]},
            ]
        })

        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient", return_value=mock_client):
            result = await MapboxGeocoder("fake-token").geocode("1 George St")

        assert len(result) == 2
        assert result[0].label == "1 George St, Sydney NSW 2000"
        assert result[0].lat == -33.8688
        assert result[0].lng == 151.2073

    @pytest.mark.asyncio
    async def test_request_shape(self):
        mock_client = _mock_client({"features": []})

        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient", return_value=mock_client):
            await MapboxGeocoder("fake-token", country="NZ", limit=3).geocode("12 Queen St")

        url = mock_client.get.call_args.args[0]
        params = mock_client.get.call_args.kwargs["params"]
        assert url.endswith("/mapbox.places/12%20Queen%20St.json")
        assert params["access_token"] == "fake-token"
        assert params["country"] == "NZ"
        assert params["limit"] == 3

    @pytest.mark.asyncio
    async def test_skips_malformed_features(self):
        mock_client = _mock_client({
            "features": [
                {"place_name": "No centre"},
                {"center": [151.0, -33.0]},
                {"place_name": "Good", "center": [151.0, -33.0]},
            ]
        })

        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient", return_value=mock_client):
            result = await MapboxGeocoder("fake-token").geocode("somewhere")

        assert [c.label for c in result] == ["Good"]

    @pytest.mark.asyncio
    async def test_empty_query_skips_api(self):
        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient") as client_cls:
            assert await MapboxGeocoder("fake-token").geocode("   ") == []
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_token_skips_api(self):
        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient") as client_cls:
            assert await MapboxGeocoder("").geocode("1 George St") == []
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_returns_empty(self):
        mock_client = _mock_client(error=Exception("Connection timeout"))

        with patch("cleanbook.adapters.mapbox_geocoder.httpx.AsyncClient", return_value=mock_client):
            result = await MapboxGeocoder("fake-token").geocode("1 George St")

        assert result == []
