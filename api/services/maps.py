"""
Geoapify Maps Service — geocoding and driving distance for route stops.

Only used to backfill stop coordinates and leg distances; never on the
critical path of a stop or route transition.

  1. Geocode cache in Redis (30-day TTL)
  2. Distance cache per coordinate pair (2-hour TTL)
  3. Great-circle estimate when the routing API is down
  4. "unknown" when there is nothing to measure
"""

import hashlib
import logging
import math

import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config import settings

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None
_http: httpx.AsyncClient | None = None

GEOAPIFY_GEOCODE_URL = "https://api.geoapify.com/v1/geocode/search"
GEOAPIFY_ROUTING_URL = "https://api.geoapify.com/v1/routing"

GEOCODE_CACHE_TTL = 30 * 24 * 3600   # 30 days
DISTANCE_CACHE_TTL = 2 * 3600         # 2 hours

KM_PER_MILE = 1.609344
ROAD_FACTOR = 1.4
HIGHWAY_SPEED_KMH = 80.0

UNKNOWN_DISTANCE = {"text": "unknown", "miles": None, "seconds": None, "source": "unknown"}


async def _get_redis() -> aioredis.Redis:
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


async def _get_http() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient(timeout=10.0)
    return _http


def _address_hash(address: str) -> str:
    """Normalize and hash an address for cache key."""
    normalized = " ".join(address.strip().lower().split())
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def _latlng_hash(lat: float, lng: float) -> str:
    """Hash lat/lng to 4 decimal places for distance cache."""
    key = f"{lat:.4f},{lng:.4f}"
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def _cache_get(key: str) -> dict:
    try:
        r = await _get_redis()
        return await r.hgetall(key) or {}
    except (RedisError, OSError) as e:
        logger.warning("Redis read failed for %s: %s", key, e)
        return {}


async def _cache_set(key: str, mapping: dict, ttl: int):
    try:
        r = await _get_redis()
        await r.hset(key, mapping={k: str(v) for k, v in mapping.items()})
        await r.expire(key, ttl)
    except (RedisError, OSError) as e:
        logger.warning("Redis write failed for %s: %s", key, e)


# ── Great-circle distance ──────────────────────────────────

def great_circle_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Straight-line distance in km (Haversine formula)."""
    R = 6371  # Earth radius in km
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Approximate road distance in km: great-circle times a road factor."""
    return round(great_circle_km(lat1, lng1, lat2, lng2) * ROAD_FACTOR, 2)


def estimate_duration(distance_km: float, avg_speed_kmh: float = HIGHWAY_SPEED_KMH) -> int:
    """Estimate driving time in seconds at an average truck speed."""
    return max(int(distance_km / avg_speed_kmh * 3600), 60)


def format_distance(miles: float, seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes = rem // 60
    duration = f"{hours} h {minutes} min" if hours else f"{minutes} min"
    return f"{miles:.1f} mi, {duration}"


# ── Geocoding ──────────────────────────────────────────────

async def geocode(address: str) -> dict | None:
    """
    Geocode a stop address. Redis cache first, then Geoapify.

    Returns:
        {"lat": float, "lon": float, "formatted": str} or None
    """
    if not address or not address.strip():
        return None

    cache_key = f"geo:{_address_hash(address)}"
    cached = await _cache_get(cache_key)
    if "lat" in cached:
        return {
            "lat": float(cached["lat"]),
            "lon": float(cached["lon"]),
            "formatted": cached.get("formatted", address),
        }

    if not settings.GEOAPIFY_API_KEY:
        logger.debug("No GEOAPIFY_API_KEY, skipping geocode of %r", address)
        return None

    try:
        http = await _get_http()
        resp = await http.get(
            GEOAPIFY_GEOCODE_URL,
            params={"text": address.strip(), "apiKey": settings.GEOAPIFY_API_KEY},
        )
        resp.raise_for_status()
        features = resp.json().get("features") or []
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("⚠️ Geoapify geocode failed for %r: %s", address, e)
        return None

    if not features:
        return None
    props = features[0].get("properties", {}) or {}
    if props.get("lat") is None or props.get("lon") is None:
        return None

    result = {
        "lat": float(props["lat"]),
        "lon": float(props["lon"]),
        "formatted": props.get("formatted") or address,
    }
    await _cache_set(cache_key, result, GEOCODE_CACHE_TTL)
    return result


# ── Driving distance ───────────────────────────────────────

async def get_distance(origin: tuple[float, float] | None, dest: tuple[float, float] | None) -> dict:
    """
    Driving distance between two (lat, lon) points.

    Returns:
        {"text": str, "miles": float|None, "seconds": int|None,
         "source": "cache"|"geoapify"|"estimate"|"unknown"}
    """
    if origin is None or dest is None:
        return dict(UNKNOWN_DISTANCE)

    cache_key = f"dist:{_latlng_hash(*origin)}:{_latlng_hash(*dest)}"
    cached = await _cache_get(cache_key)
    if "miles" in cached:
        miles, seconds = float(cached["miles"]), int(cached["seconds"])
        return {"text": format_distance(miles, seconds), "miles": miles, "seconds": seconds, "source": "cache"}

    if settings.GEOAPIFY_API_KEY:
        try:
            http = await _get_http()
            resp = await http.get(
                GEOAPIFY_ROUTING_URL,
                params={
                    "waypoints": f"{origin[0]},{origin[1]}|{dest[0]},{dest[1]}",
                    "mode": "truck",
                    "units": "imperial",
                    "apiKey": settings.GEOAPIFY_API_KEY,
                },
            )
            resp.raise_for_status()
            features = resp.json().get("features") or []
            if features:
                props = features[0].get("properties", {}) or {}
                distance = props.get("distance")
                time_s = props.get("time")
                if isinstance(distance, (int, float)) and isinstance(time_s, (int, float)):
                    miles = round(float(distance), 1)
                    seconds = int(time_s)
                    await _cache_set(cache_key, {"miles": miles, "seconds": seconds}, DISTANCE_CACHE_TTL)
                    return {
                        "text": format_distance(miles, seconds),
                        "miles": miles,
                        "seconds": seconds,
                        "source": "geoapify",
                    }
            logger.warning("⚠️ Geoapify routing returned no route for %s → %s", origin, dest)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("⚠️ Geoapify routing failed for %s → %s: %s", origin, dest, e)

    distance_km = haversine_distance(origin[0], origin[1], dest[0], dest[1])
    miles = round(distance_km / KM_PER_MILE, 1)
    seconds = estimate_duration(distance_km)
    return {"text": format_distance(miles, seconds), "miles": miles, "seconds": seconds, "source": "estimate"}


# ── Route backfill ─────────────────────────────────────────

def _coords(stop) -> tuple[float, float] | None:
    if stop.latitude is None or stop.longitude is None:
        return None
    return (float(stop.latitude), float(stop.longitude))


async def backfill_route_geometry(route, geocoder=geocode, distance=get_distance) -> int:
    """
    Fill missing stop coordinates from addresses, then missing leg distances.
    Returns the number of stops changed. Caller commits.
    """
    stops = sorted(route.stops, key=lambda s: s.sequence)
    changed = set()

    for stop in stops:
        if _coords(stop) is None and stop.address:
            geo = await geocoder(stop.address)
            if geo:
                stop.latitude = geo["lat"]
                stop.longitude = geo["lon"]
                changed.add(stop.id)

    for prev, stop in zip(stops, stops[1:]):
        if stop.distance_from_previous:
            continue
        a, b = _coords(prev), _coords(stop)
        if a is None or b is None:
            continue
        leg = await distance(a, b)
        stop.distance_from_previous = {k: leg[k] for k in ("text", "miles", "seconds")}
        changed.add(stop.id)

    return len(changed)
