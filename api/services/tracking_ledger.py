"""
Tracking Ledger — append-only location and action history for one active route.

Writes go through the ActiveTrackerCache so a ping costs one insert instead of
a fetch-then-save of the whole record. Entries are never updated once written;
a completed or cancelled record refuses further appends.

Statistics on finalize:
  - distance: pairwise great-circle distance over the location pings (metres)
  - duration: wall clock from tracking start to finalize (ms)
  - stops completed / photos uploaded: counted from the action history
  - average speed (km/h) and max reported speed
"""

import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Callable, Iterable

from db.repository import as_uuid
from models.tracking import RouteTracking, TrackingEntry
from schemas import RouteStatus, TrackingAction, TrackingStatus
from services.maps import great_circle_km
from services.tracker_cache import ActiveTracker, ActiveTrackerCache

logger = logging.getLogger(__name__)

PHOTO_ACTIONS = {TrackingAction.UPLOAD_VEHICLE_PHOTO.value, TrackingAction.UPLOAD_STOP_PHOTO.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    position: int
    kind: str
    timestamp: datetime
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    action: str | None = None
    details: dict = field(default_factory=dict)
    audit_log_id: uuid.UUID | None = None

    @classmethod
    def from_row(cls, row: TrackingEntry) -> "LedgerEntry":
        return cls(
            position=row.position,
            kind=row.kind,
            timestamp=row.timestamp,
            latitude=row.latitude,
            longitude=row.longitude,
            accuracy=row.accuracy,
            speed=row.speed,
            heading=row.heading,
            action=row.action,
            details=dict(row.details or {}),
            audit_log_id=row.audit_log_id,
        )


@dataclass
class TrackingStatistics:
    total_distance_m: int = 0
    total_duration_ms: int = 0
    stops_completed: int = 0
    photos_uploaded: int = 0
    avg_speed_kmh: float = 0.0
    max_speed: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def compute_statistics(
    locations: Iterable[LedgerEntry],
    actions: Iterable[LedgerEntry],
    started_at: datetime | None,
    ended_at: datetime,
) -> TrackingStatistics:
    points = [p for p in locations if p.latitude is not None and p.longitude is not None]

    distance_km = 0.0
    for prev, cur in zip(points, points[1:]):
        distance_km += great_circle_km(prev.latitude, prev.longitude, cur.latitude, cur.longitude)

    duration_ms = 0
    if started_at is not None:
        duration_ms = max(int((ended_at - started_at).total_seconds() * 1000), 0)

    kinds = [a.action for a in actions]
    speeds = [p.speed for p in points if p.speed is not None]

    avg_speed = 0.0
    if duration_ms > 0:
        avg_speed = round(distance_km / (duration_ms / 3_600_000), 2)

    return TrackingStatistics(
        total_distance_m=round(distance_km * 1000),
        total_duration_ms=duration_ms,
        stops_completed=kinds.count(TrackingAction.COMPLETE_STOP.value),
        photos_uploaded=sum(1 for k in kinds if k in PHOTO_ACTIONS),
        avg_speed_kmh=avg_speed,
        max_speed=max(speeds, default=0.0),
    )


def _tracker_from_record(record: RouteTracking, next_position: int) -> ActiveTracker:
    return ActiveTracker(
        tracking_id=record.id,
        route_id=record.route_id,
        driver_id=record.driver_id,
        truck_id=record.truck_id,
        started_at=record.started_at,
        next_position=next_position,
        status=record.status,
    )


class TrackingLedger:
    """
    Args:
        repo_scope: zero-arg callable returning an async context manager that
            yields a repository. Each ledger call uses its own short-lived one.
        cache: shared ActiveTrackerCache
    """

    def __init__(self, repo_scope, cache: ActiveTrackerCache, clock: Callable[[], datetime] = _utcnow):
        self._repo_scope = repo_scope
        self.cache = cache
        self._clock = clock

    async def initialize(self, route_id, driver_id, truck_id=None) -> ActiveTracker | None:
        """Create (or reopen) the tracking record when a route starts."""
        route_id = as_uuid(route_id)
        async with self.cache.hold(route_id) as slot:
            async with self._repo_scope() as repo:
                record = await repo.get_tracking(route_id)
                if record is None:
                    record = RouteTracking(
                        id=uuid.uuid4(),
                        route_id=route_id,
                        driver_id=as_uuid(driver_id),
                        truck_id=as_uuid(truck_id),
                        status=TrackingStatus.ACTIVE.value,
                        started_at=self._clock(),
                    )
                    repo.add(record)
                    await repo.commit()
                    logger.info("📍 Tracking started for route %s", route_id)
                elif record.status != TrackingStatus.ACTIVE.value:
                    logger.warning("Tracking record for route %s is %s, not reopening", route_id, record.status)
                    slot.tracker = None
                    return None

                slot.tracker = _tracker_from_record(record, await repo.next_entry_position(record.id))
                return slot.tracker

    async def _resolve(self, repo, route_id: uuid.UUID) -> ActiveTracker | None:
        """Cache miss path: load the record, or create it if the route is really active."""
        record = await repo.get_tracking(route_id)
        if record is None:
            route = await repo.get_route(route_id)
            if route is None or route.status != RouteStatus.IN_PROGRESS.value:
                return None
            driver = await repo.get_driver(route.driver_id)
            if driver is None or as_uuid(driver.current_route_id) != route_id:
                return None
            record = RouteTracking(
                id=uuid.uuid4(),
                route_id=route_id,
                driver_id=route.driver_id,
                truck_id=route.truck_id,
                status=TrackingStatus.ACTIVE.value,
                started_at=route.actual_start or self._clock(),
            )
            repo.add(record)
            await repo.commit()
            logger.warning("Tracking record for route %s was missing, created on demand", route_id)
        return _tracker_from_record(record, await repo.next_entry_position(record.id))

    async def _append(self, route_id, kind: str, **fields) -> LedgerEntry | None:
        route_id = as_uuid(route_id)
        async with self.cache.hold(route_id) as slot:
            async with self._repo_scope() as repo:
                tracker = slot.tracker or await self._resolve(repo, route_id)
                if tracker is None:
                    logger.warning("No tracking record for route %s, %s entry dropped", route_id, kind)
                    return None
                if tracker.status != TrackingStatus.ACTIVE.value:
                    logger.warning("Tracking for route %s is %s, %s entry refused", route_id, tracker.status, kind)
                    return None
                slot.tracker = tracker

                row = TrackingEntry(
                    tracking_id=tracker.tracking_id,
                    position=tracker.next_position,
                    kind=kind,
                    timestamp=self._clock(),
                    **fields,
                )
                try:
                    repo.add(row)
                    await repo.commit()
                except Exception:
                    # position may be stale now, reload on next append
                    slot.discard = True
                    raise
                tracker.next_position += 1
                return LedgerEntry.from_row(row)

    async def append_location(
        self,
        route_id,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
        *,
        speed: float | None = None,
        heading: float | None = None,
        context: dict | None = None,
        audit_log_id=None,
    ) -> LedgerEntry | None:
        return await self._append(
            route_id,
            "location",
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            speed=speed,
            heading=heading,
            details=dict(context or {}),
            audit_log_id=as_uuid(audit_log_id),
        )

    async def append_action(
        self,
        route_id,
        action: str,
        location: dict | None = None,
        details: dict | None = None,
        *,
        audit_log_id=None,
    ) -> LedgerEntry | None:
        action = TrackingAction(action).value
        location = location or {}
        return await self._append(
            route_id,
            "action",
            action=action,
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            accuracy=location.get("accuracy"),
            details=dict(details or {}),
            audit_log_id=as_uuid(audit_log_id),
        )

    async def finalize(self, route_id) -> TrackingStatistics | None:
        """Close the record, store statistics and drop the cache entry."""
        route_id = as_uuid(route_id)
        async with self.cache.hold(route_id) as slot:
            slot.discard = True
            async with self._repo_scope() as repo:
                record = await repo.get_tracking(route_id)
                if record is None:
                    logger.warning("No tracking record to finalize for route %s", route_id)
                    return None
                if record.status != TrackingStatus.ACTIVE.value:
                    return TrackingStatistics(**record.statistics) if record.statistics else None

                ended_at = self._clock()
                entries = [LedgerEntry.from_row(r) for r in await repo.list_tracking_entries(record.id)]
                try:
                    stats = compute_statistics(
                        [e for e in entries if e.kind == "location"],
                        [e for e in entries if e.kind == "action"],
                        record.started_at,
                        ended_at,
                    )
                except Exception:
                    logger.exception("Statistics failed for route %s, storing zeros", route_id)
                    stats = TrackingStatistics()

                record.status = TrackingStatus.COMPLETED.value
                record.ended_at = ended_at
                record.statistics = stats.as_dict()
                await repo.commit()
                logger.info(
                    "🏁 Tracking finalized for route %s: %sm, %d stop(s), %d photo(s)",
                    route_id, stats.total_distance_m, stats.stops_completed, stats.photos_uploaded,
                )
                return stats

    async def history(self, route_id) -> tuple[list[LedgerEntry], list[LedgerEntry]] | None:
        """(locations, actions) in append order, or None when the route was never tracked."""
        async with self._repo_scope() as repo:
            record = await repo.get_tracking(as_uuid(route_id))
            if record is None:
                return None
            entries = [LedgerEntry.from_row(r) for r in await repo.list_tracking_entries(record.id)]
        return (
            [e for e in entries if e.kind == "location"],
            [e for e in entries if e.kind == "action"],
        )

    async def summary(self, route_id) -> dict | None:
        route_id = as_uuid(route_id)
        async with self._repo_scope() as repo:
            record = await repo.get_tracking(route_id)
            if record is None:
                return None
            entries = await repo.list_tracking_entries(record.id)
        return {
            "route_id": record.route_id,
            "driver_id": record.driver_id,
            "truck_id": record.truck_id,
            "status": record.status,
            "started_at": record.started_at,
            "ended_at": record.ended_at,
            "location_count": sum(1 for e in entries if e.kind == "location"),
            "action_count": sum(1 for e in entries if e.kind == "action"),
            "cached": route_id in self.cache,
            "statistics": record.statistics,
        }
