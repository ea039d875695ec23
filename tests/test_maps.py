"""Tests for geocoding, driving distance and stop backfill (Redis/httpx mocked)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config import settings
from fakes import FakeRepository, make_driver, make_route
from services.maps import (
    backfill_route_geometry, geocode, get_distance, great_circle_km, haversine_distance,
)


def _response(payload: dict):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_great_circle_one_degree_on_equator():
    assert round(great_circle_km(0.0, 0.0, 0.0, 1.0), 2) == 111.19


def test_haversine_applies_road_factor():
    assert haversine_distance(0.0, 0.0, 0.0, 1.0) == round(great_circle_km(0.0, 0.0, 0.0, 1.0) * 1.4, 2)


@pytest.mark.asyncio
async def test_geocode_cache_hit_skips_api():
    with patch("services.maps._get_redis") as mock_get_redis, patch("services.maps._get_http") as mock_get_http:
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {"lat": "41.88", "lon": "-87.63", "formatted": "Chicago, IL"}
        mock_get_redis.return_value = mock_conn

        result = await geocode("233 S Wacker Dr, Chicago, IL")

        assert result == {"lat": 41.88, "lon": -87.63, "formatted": "Chicago, IL"}
        mock_get_http.assert_not_called()


@pytest.mark.asyncio
async def test_geocode_calls_geoapify_and_caches():
    with patch("services.maps._get_redis") as mock_get_redis, \
            patch("services.maps._get_http") as mock_get_http, \
            patch.object(settings, "GEOAPIFY_API_KEY", "test-key"):
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {}
        mock_get_redis.return_value = mock_conn
        mock_http = AsyncMock()
        mock_http.get.return_value = _response({
            "features": [{"properties": {"lat": 39.1, "lon": -84.5, "formatted": "Cincinnati, OH"}}],
        })
        mock_get_http.return_value = mock_http

        result = await geocode("Cincinnati, OH")

        assert result == {"lat": 39.1, "lon": -84.5, "formatted": "Cincinnati, OH"}
        mock_conn.hset.assert_awaited_once()
        mock_conn.expire.assert_awaited_once()


@pytest.mark.asyncio
async def test_geocode_without_key_returns_none():
    with patch("services.maps._get_redis") as mock_get_redis, patch.object(settings, "GEOAPIFY_API_KEY", None):
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {}
        mock_get_redis.return_value = mock_conn
        assert await geocode("Nowhere") is None
    assert await geocode("   ") is None


@pytest.mark.asyncio
async def test_geocode_provider_down_returns_none():
    with patch("services.maps._get_redis") as mock_get_redis, \
            patch("services.maps._get_http") as mock_get_http, \
            patch.object(settings, "GEOAPIFY_API_KEY", "test-key"):
        mock_conn = AsyncMock()
        mock_conn.hgetall.side_effect = RedisConnectionError("redis down")
        mock_get_redis.return_value = mock_conn
        mock_http = AsyncMock()
        mock_http.get.side_effect = httpx.ConnectError("provider down")
        mock_get_http.return_value = mock_http

        assert await geocode("Cincinnati, OH") is None


@pytest.mark.asyncio
async def test_distance_unknown_without_coordinates():
    result = await get_distance(None, (41.0, -87.0))
    assert result["text"] == "unknown"
    assert result["miles"] is None and result["seconds"] is None


@pytest.mark.asyncio
async def test_distance_from_geoapify():
    with patch("services.maps._get_redis") as mock_get_redis, \
            patch("services.maps._get_http") as mock_get_http, \
            patch.object(settings, "GEOAPIFY_API_KEY", "test-key"):
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {}
        mock_get_redis.return_value = mock_conn
        mock_http = AsyncMock()
        mock_http.get.return_value = _response({"features": [{"properties": {"distance": 296.4, "time": 16200}}]})
        mock_get_http.return_value = mock_http

        result = await get_distance((41.88, -87.63), (39.10, -84.51))

        assert result == {"text": "296.4 mi, 4 h 30 min", "miles": 296.4, "seconds": 16200, "source": "geoapify"}
        mock_conn.hset.assert_awaited_once()


@pytest.mark.asyncio
async def test_distance_falls_back_to_estimate():
    with patch("services.maps._get_redis") as mock_get_redis, \
            patch("services.maps._get_http") as mock_get_http, \
            patch.object(settings, "GEOAPIFY_API_KEY", "test-key"):
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {}
        mock_get_redis.return_value = mock_conn
        mock_http = AsyncMock()
        mock_http.get.side_effect = httpx.ReadTimeout("slow")
        mock_get_http.return_value = mock_http

        result = await get_distance((0.0, 0.0), (0.0, 1.0))

        assert result["source"] == "estimate"
        assert result["miles"] == round(haversine_distance(0.0, 0.0, 0.0, 1.0) / 1.609344, 1)
        assert result["seconds"] > 0


@pytest.mark.asyncio
async def test_distance_cache_hit():
    with patch("services.maps._get_redis") as mock_get_redis:
        mock_conn = AsyncMock()
        mock_conn.hgetall.return_value = {"miles": "12.5", "seconds": "1500"}
        mock_get_redis.return_value = mock_conn

        result = await get_distance((41.0, -87.0), (41.1, -87.2))

    assert result == {"text": "12.5 mi, 25 min", "miles": 12.5, "seconds": 1500, "source": "cache"}


@pytest.mark.asyncio
async def test_backfill_fills_coordinates_and_legs():
    repo = FakeRepository()
    route = make_route(repo, make_driver(repo), [("start",), ("pickup",), ("end",)])
    start, pickup, end = sorted(route.stops, key=lambda s: s.sequence)
    start.latitude, start.longitude = 41.0, -87.0
    pickup.address = "Cincinnati, OH"
    end.address = "Nowhere"
    end.distance_from_previous = {"text": "5.0 mi, 10 min", "miles": 5.0, "seconds": 600}

    async def fake_geocode(address):
        return {"lat": 39.1, "lon": -84.5, "formatted": address} if address == "Cincinnati, OH" else None

    distance = AsyncMock(return_value={"text": "250.0 mi, 4 h 0 min", "miles": 250.0, "seconds": 14400, "source": "estimate"})

    changed = await backfill_route_geometry(route, geocoder=fake_geocode, distance=distance)

    assert changed == 1
    assert (pickup.latitude, pickup.longitude) == (39.1, -84.5)
    assert pickup.distance_from_previous == {"text": "250.0 mi, 4 h 0 min", "miles": 250.0, "seconds": 14400}
    assert end.latitude is None
    distance.assert_awaited_once_with((41.0, -87.0), (39.1, -84.5))
