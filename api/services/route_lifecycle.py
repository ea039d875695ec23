"""
Route Lifecycle Controller — every driver action on a route goes through here.

Route state machine (status / state):
  Planned                       ─start──▶  In Progress / Started
  In Progress / Started|Resumed ─stop───▶  In Progress / Stopped
  In Progress / Stopped         ─resume─▶  In Progress / Resumed
  In Progress / *               ─complete▶ Completed / None

Order of work for each action:
  1. validate against the current route and stop state (nothing written on failure)
  2. mutate route / stops and commit; the only step whose failure reaches the driver
  3. status propagation to TransportJob and Vehicle
  4. audit log record + tracking ledger entry
  5. best-effort geocoding backfill (start only)

Steps 3-5 are logged and swallowed. All actions on one route are serialised
by a per-route lock so they apply in the order they arrive.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from db.repository import DispatchRepository, as_uuid
from models.route import Route, RouteStop
from schemas import (
    PhotoType, RouteState, RouteStatus, StopStatus, TrackingAction, TruckStatus,
)
from services.audit import AuditLogger
from services.errors import (
    AlreadyInTargetState, DependencyError, DriverHasOtherActiveRoute, DriverNotFound,
    InvalidTransition, NotOwnedByDriver, PhotoNotFound, RouteNotFound,
)
from services.locks import KeyedLock
from services.status_propagation import StatusPropagationService
from services.stop_machine import (
    JOB_STOP_TYPES, TransitionContext, active_stop, find_stop, photo_leg,
    promote_next_stop, save_progress, stop_index, transition, vehicle_photo_urls,
)
from services.tracking_ledger import LedgerEntry, TrackingLedger

logger = logging.getLogger(__name__)

RUNNING_STATES = {RouteState.STARTED.value, RouteState.RESUMED.value}
RESOLVED_STOP_STATUSES = {StopStatus.COMPLETED.value, StopStatus.SKIPPED.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stop_facts(route: Route, stop: RouteStop) -> dict:
    """Plain snapshot of a stop, safe to use after the session has been rolled back."""
    return {
        "stop_id": str(stop.id),
        "stop_index": stop_index(route, stop),
        "stop_type": stop.stop_type,
        "stop_status": stop.status,
        "transport_job_id": str(stop.transport_job_id) if stop.transport_job_id else None,
    }


def _route_context(route: Route) -> dict:
    """Route position attached to each location ping."""
    context = {"route_status": route.status, "route_state": route.state}
    stop = active_stop(route)
    if stop is not None:
        context.update(
            stop_index=stop_index(route, stop),
            stop_type=stop.stop_type,
            stop_status=stop.status,
        )
    return context


class RouteLifecycleController:
    """
    Args:
        repo: repository bound to the request's session
        ledger: tracking ledger (own sessions, shared cache)
        audit: audit log writer
        route_locks: process-wide per-route lock
        propagation: defaults to a StatusPropagationService on ``repo``
        geocoder: ``async (route) -> int`` filling missing stop geometry, or None
    """

    def __init__(
        self,
        repo: DispatchRepository,
        ledger: TrackingLedger,
        audit: AuditLogger,
        route_locks: KeyedLock,
        propagation: StatusPropagationService | None = None,
        geocoder: Callable[[Route], Awaitable[int]] | None = None,
        *,
        require_resolved_stops: bool = False,
        geocode_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repo = repo
        self.ledger = ledger
        self.audit = audit
        self.route_locks = route_locks
        self.propagation = propagation or StatusPropagationService(repo, clock)
        self.geocoder = geocoder
        self.require_resolved_stops = require_resolved_stops
        self.geocode_timeout = geocode_timeout
        self._clock = clock

    # ── Plumbing ───────────────────────────────────────────

    async def _load(self, route_id, driver_id) -> Route:
        route = await self.repo.get_route(route_id)
        if route is None:
            raise RouteNotFound(f"Route {route_id} not found")
        if as_uuid(route.driver_id) != as_uuid(driver_id):
            raise NotOwnedByDriver("Route is not assigned to this driver")
        return route

    async def _commit(self):
        try:
            await self.repo.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Route update could not be saved: %s", e)
            await self._safe_rollback()
            raise DependencyError("Could not save the update, please retry") from e

    async def _safe_rollback(self):
        try:
            await self.repo.rollback()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Rollback failed: %s", e)

    async def _record_action(
        self,
        route_id,
        action: TrackingAction,
        actor_id,
        details: dict | None = None,
        location: dict | None = None,
        notes: str | None = None,
    ):
        """Audit record first, then the ledger entry pointing at it."""
        try:
            audit_id = await self.audit.record(
                action.value, "route", route_id, actor_id,
                details=details, notes=notes, location=location, route_id=route_id,
            )
            await self.ledger.append_action(route_id, action.value, location, details, audit_log_id=audit_id)
        except Exception:
            logger.exception("Could not record %s for route %s", action.value, route_id)

    async def _propagate(self, route_id, facts: dict):
        try:
            await self.propagation.on_stop_transition(
                route_id,
                facts["stop_index"],
                facts["stop_status"],
                facts["stop_type"],
                facts["transport_job_id"],
            )
        except Exception:
            logger.exception(
                "Status propagation failed for stop %s on route %s, job/vehicle may be stale",
                facts["stop_id"], route_id,
            )
            await self._safe_rollback()

    async def _backfill(self, route: Route):
        if self.geocoder is None:
            return
        route_id = route.id
        try:
            changed = await asyncio.wait_for(self.geocoder(route), timeout=self.geocode_timeout)
            if changed:
                await self.repo.commit()
                logger.info("🗺️ Backfilled geometry for %d stop(s) on route %s", changed, route_id)
        except asyncio.TimeoutError:
            logger.warning("Geocoding backfill timed out for route %s", route_id)
            await self._safe_rollback()
        except Exception:
            logger.exception("Geocoding backfill failed for route %s", route_id)
            await self._safe_rollback()

    async def _fresh(self, route_id) -> Route:
        return await self.repo.reload_route(route_id)

    async def _announce_promoted(self, route: Route, promoted: list[RouteStop], actor_id, location=None):
        for facts in [_stop_facts(route, s) for s in promoted]:
            await self._record_action(route.id, TrackingAction.START_STOP, actor_id, facts, location)

    def _mirror_photos(self, stop: RouteStop, job):
        """Job's photo list for this leg becomes exactly the stop's vehicle photos."""
        leg = photo_leg(stop.stop_type)
        if job is not None and leg is not None:
            setattr(job, leg, vehicle_photo_urls(stop))

    async def _job_for(self, stop: RouteStop):
        if stop.stop_type in JOB_STOP_TYPES and stop.transport_job_id is not None:
            return await self.repo.get_transport_job(stop.transport_job_id)
        return None

    # ── Route transitions ──────────────────────────────────

    async def start_route(self, route_id, driver_id, location: dict | None = None) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            if route.status == RouteStatus.IN_PROGRESS.value:
                raise AlreadyInTargetState("Route is already in progress")
            if route.status != RouteStatus.PLANNED.value:
                raise InvalidTransition(f"Route is {route.status.lower()} and cannot be started")

            driver = await self.repo.get_driver(driver_id)
            if driver is None:
                raise DriverNotFound(f"Driver {driver_id} not found")
            if driver.current_route_id is not None and as_uuid(driver.current_route_id) != route.id:
                raise DriverHasOtherActiveRoute(
                    f"Driver already has route {driver.current_route_id} in progress"
                )
            truck = await self.repo.get_truck(route.truck_id)

            route.status = RouteStatus.IN_PROGRESS.value
            route.state = RouteState.STARTED.value
            route.actual_start = self._clock()
            driver.current_route_id = route.id
            if truck is not None:
                truck.status = TruckStatus.IN_USE.value
                truck.current_driver_id = driver.id
            promoted = promote_next_stop(route)
            await self._commit()
            logger.info("🚛 Route %s started by driver %s", route.id, driver.id)

            try:
                await self.ledger.initialize(route.id, driver.id, route.truck_id)
            except Exception:
                logger.exception("Tracking ledger not initialised for route %s", route.id)

            await self._record_action(
                route.id, TrackingAction.START_ROUTE, driver.id,
                {"route_number": route.route_number, "truck_id": str(route.truck_id) if route.truck_id else None},
                location,
            )
            if location:
                await self._ping(route, location)
            await self._announce_promoted(route, [promoted] if promoted else [], driver.id, location)
            rid = route.id
            await self._backfill(route)
            return await self._fresh(rid)

    async def stop_route(self, route_id, driver_id, location: dict | None = None) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            if route.status != RouteStatus.IN_PROGRESS.value:
                raise InvalidTransition("Route is not in progress")
            if route.state == RouteState.STOPPED.value:
                raise AlreadyInTargetState("Route is already stopped")
            if route.state not in RUNNING_STATES:
                raise InvalidTransition(f"Route cannot be stopped from state {route.state}")

            route.state = RouteState.STOPPED.value
            await self._commit()
            logger.info("⏸️ Route %s stopped", route.id)
            await self._record_action(route.id, TrackingAction.STOP_ROUTE, driver_id, location=location)
            return await self._fresh(route.id)

    async def resume_route(self, route_id, driver_id, location: dict | None = None) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            if route.status != RouteStatus.IN_PROGRESS.value:
                raise InvalidTransition("Route is not in progress")
            if route.state == RouteState.RESUMED.value:
                raise AlreadyInTargetState("Route is already resumed")
            if route.state != RouteState.STOPPED.value:
                raise InvalidTransition("Only a stopped route can be resumed")

            route.state = RouteState.RESUMED.value
            await self._commit()
            logger.info("▶️ Route %s resumed", route.id)
            await self._record_action(route.id, TrackingAction.RESUME_ROUTE, driver_id, location=location)
            return await self._fresh(route.id)

    async def complete_route(self, route_id, driver_id, location: dict | None = None) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            if route.status == RouteStatus.COMPLETED.value:
                raise AlreadyInTargetState("Route is already completed")
            if route.status != RouteStatus.IN_PROGRESS.value:
                raise InvalidTransition("Route has not been started")
            if self.require_resolved_stops:
                open_stops = [s for s in route.stops if s.status not in RESOLVED_STOP_STATUSES]
                if open_stops:
                    raise InvalidTransition(f"{len(open_stops)} stop(s) are still open")

            route.status = RouteStatus.COMPLETED.value
            route.state = None
            route.actual_end = self._clock()

            driver = await self.repo.get_driver(route.driver_id)
            if driver is not None and as_uuid(driver.current_route_id) == route.id:
                driver.current_route_id = None
            truck = await self.repo.get_truck(route.truck_id)
            if truck is not None:
                truck.status = TruckStatus.AVAILABLE.value
                truck.current_driver_id = None
            await self._commit()
            logger.info("✅ Route %s completed", route.id)

            rid = route.id
            await self._record_action(rid, TrackingAction.COMPLETE_ROUTE, driver_id, location=location)
            try:
                await self.ledger.finalize(rid)
            except Exception:
                logger.exception("Tracking ledger not finalised for route %s", rid)
            return await self._fresh(rid)

    # ── Stop actions ───────────────────────────────────────

    async def complete_stop(
        self,
        route_id,
        driver_id,
        stop_id,
        checklist: list[dict] | None = None,
        photos: list[dict] | None = None,
        notes: str | None = None,
        location: dict | None = None,
    ) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            stop = find_stop(route, stop_id)
            job = await self._job_for(stop)

            context = TransitionContext(
                route=route, checklist=checklist, photos=photos, notes=notes, now=self._clock(),
            )
            transition(stop, StopStatus.COMPLETED.value, context)
            self._mirror_photos(stop, job)
            facts = _stop_facts(route, stop)
            promoted = [_stop_facts(route, s) for s in context.promoted]
            submitted = checklist is not None or stop.stop_type in JOB_STOP_TYPES
            items = len(stop.checklist or [])
            rid = route.id
            await self._commit()
            logger.info("📦 Stop %s (%s) completed on route %s", stop.sequence, stop.stop_type, rid)

            await self._propagate(rid, facts)

            if submitted:
                await self._record_action(
                    rid, TrackingAction.CHECKLIST_SUBMITTED, driver_id,
                    {**facts, "items": items}, location,
                )
            for photo in photos or []:
                await self._record_photo(rid, driver_id, facts, photo, location)
            await self._record_action(rid, TrackingAction.COMPLETE_STOP, driver_id, facts, location, notes)
            for p in promoted:
                await self._record_action(rid, TrackingAction.START_STOP, driver_id, p, location)
            return await self._fresh(rid)

    async def update_stop(
        self,
        route_id,
        driver_id,
        stop_id,
        checklist: list[dict] | None = None,
        notes: str | None = None,
        location: dict | None = None,
    ) -> Route:
        """Save checklist progress and notes on the active stop before it is submitted."""
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            stop = find_stop(route, stop_id)

            newly_checked = save_progress(stop, route, checklist=checklist, notes=notes)
            facts = _stop_facts(route, stop)
            rid = route.id
            await self._commit()

            for item in newly_checked:
                await self._record_action(
                    rid, TrackingAction.CHECKLIST_ITEM_CHECKED, driver_id,
                    {**facts, "item": item}, location, f"Completed checklist item: {item}",
                )
            return await self._fresh(rid)

    async def skip_stop(self, route_id, driver_id, stop_id, reason: str, location: dict | None = None) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            stop = find_stop(route, stop_id)

            context = TransitionContext(route=route, reason=reason, now=self._clock())
            transition(stop, StopStatus.SKIPPED.value, context)
            facts = _stop_facts(route, stop)
            promoted = [_stop_facts(route, s) for s in context.promoted]
            rid = route.id
            await self._commit()
            logger.info("⏭️ Stop %s (%s) skipped on route %s: %s", stop.sequence, stop.stop_type, rid, reason)

            await self._propagate(rid, facts)
            await self._record_action(
                rid, TrackingAction.SKIP_STOP, driver_id, {**facts, "reason": reason.strip()}, location,
            )
            for p in promoted:
                await self._record_action(rid, TrackingAction.START_STOP, driver_id, p, location)
            return await self._fresh(rid)

    async def _record_photo(self, route_id, driver_id, facts: dict, photo: dict, location=None):
        action = (
            TrackingAction.UPLOAD_VEHICLE_PHOTO
            if photo.get("photo_type") == PhotoType.VEHICLE.value
            else TrackingAction.UPLOAD_STOP_PHOTO
        )
        details = {**facts, "url": photo.get("url"), "photo_category": photo.get("photo_category")}
        await self._record_action(route_id, action, driver_id, details, location)

    def _check_photo_target(self, route: Route, stop: RouteStop):
        if route.status != RouteStatus.IN_PROGRESS.value:
            raise InvalidTransition("Route is not in progress")
        if stop.status == StopStatus.PENDING.value:
            raise InvalidTransition("Stop is not in progress")

    async def add_stop_photos(
        self, route_id, driver_id, stop_id, photos: list[dict], location: dict | None = None,
    ) -> Route:
        """Attach photos to the active or an already finished stop."""
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            stop = find_stop(route, stop_id)
            self._check_photo_target(route, stop)
            job = await self._job_for(stop) if stop.status == StopStatus.COMPLETED.value else None

            stop.photos = list(stop.photos or []) + [dict(p) for p in photos]
            self._mirror_photos(stop, job)
            facts = _stop_facts(route, stop)
            rid = route.id
            await self._commit()

            for photo in photos:
                await self._record_photo(rid, driver_id, facts, photo, location)
            return await self._fresh(rid)

    async def remove_stop_photo(self, route_id, driver_id, stop_id, photo_index: int) -> Route:
        async with self.route_locks.hold(as_uuid(route_id)):
            route = await self._load(route_id, driver_id)
            stop = find_stop(route, stop_id)
            self._check_photo_target(route, stop)
            photos = list(stop.photos or [])
            if not 0 <= photo_index < len(photos):
                raise PhotoNotFound(f"Stop has no photo at index {photo_index}")
            job = await self._job_for(stop) if stop.status == StopStatus.COMPLETED.value else None

            removed = photos.pop(photo_index)
            stop.photos = photos
            self._mirror_photos(stop, job)
            facts = _stop_facts(route, stop)
            rid = route.id
            await self._commit()

            try:
                await self.audit.record(
                    "remove_stop_photo", "route", rid, driver_id,
                    details={**facts, "url": removed.get("url")}, route_id=rid,
                )
            except Exception:
                logger.exception("Could not audit photo removal on route %s", rid)
            return await self._fresh(rid)

    # ── Location pings ─────────────────────────────────────

    async def _ping(self, route: Route, location: dict, speed=None, heading=None) -> LedgerEntry | None:
        try:
            return await self.ledger.append_location(
                route.id,
                location["latitude"],
                location["longitude"],
                location.get("accuracy"),
                speed=speed,
                heading=heading,
                context=_route_context(route),
            )
        except Exception:
            logger.exception("Location ping not recorded for route %s", route.id)
            return None

    async def record_location(
        self,
        driver_id,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
        speed: float | None = None,
        heading: float | None = None,
        route_id=None,
    ) -> LedgerEntry | None:
        """
        Update the driver's last known position and append a ping to the
        ledger of their active route. Duplicate pings are appended as-is.
        """
        driver = await self.repo.get_driver(driver_id)
        if driver is None:
            raise DriverNotFound(f"Driver {driver_id} not found")

        route = None
        target = as_uuid(route_id) or as_uuid(driver.current_route_id)
        if target is not None:
            route = await self.repo.get_route(target)
            if route is not None and route_id is not None and as_uuid(route.driver_id) != driver.id:
                raise NotOwnedByDriver("Route is not assigned to this driver")

        driver.current_lat = latitude
        driver.current_lng = longitude
        driver.last_location_update = self._clock()
        await self._commit()

        if route is None or route.status != RouteStatus.IN_PROGRESS.value:
            return None
        location = {"latitude": latitude, "longitude": longitude, "accuracy": accuracy}
        return await self._ping(route, location, speed=speed, heading=heading)
