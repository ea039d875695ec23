"""FastAPI dependencies — wire request-scoped services onto process-wide state."""

from dataclasses import dataclass, field

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db.database import get_db
from db.repository import DispatchRepository, repository_scope
from services.audit import AuditLogger
from services.locks import KeyedLock
from services.maps import backfill_route_geometry
from services.route_lifecycle import RouteLifecycleController
from services.status_propagation import StatusPropagationService
from services.tracker_cache import ActiveTrackerCache
from services.tracking_ledger import TrackingLedger


@dataclass
class TrackingRuntime:
    """Process-wide components shared by every request. Lives on ``app.state.tracking``."""

    cache: ActiveTrackerCache
    ledger: TrackingLedger
    audit: AuditLogger
    route_locks: KeyedLock = field(default_factory=KeyedLock)


def build_runtime(repo_scope=repository_scope) -> TrackingRuntime:
    cache = ActiveTrackerCache(idle_timeout=settings.TRACKER_IDLE_TIMEOUT_SEC)
    return TrackingRuntime(
        cache=cache,
        ledger=TrackingLedger(repo_scope, cache),
        audit=AuditLogger(repo_scope),
    )


async def get_repository(db: AsyncSession = Depends(get_db)) -> DispatchRepository:
    return DispatchRepository(db)


def get_runtime(request: Request) -> TrackingRuntime:
    return request.app.state.tracking


def get_propagation(repo: DispatchRepository = Depends(get_repository)) -> StatusPropagationService:
    return StatusPropagationService(repo)


def get_controller(
    repo: DispatchRepository = Depends(get_repository),
    runtime: TrackingRuntime = Depends(get_runtime),
) -> RouteLifecycleController:
    return RouteLifecycleController(
        repo,
        runtime.ledger,
        runtime.audit,
        runtime.route_locks,
        geocoder=backfill_route_geometry,
        require_resolved_stops=settings.REQUIRE_RESOLVED_STOPS_ON_COMPLETE,
        geocode_timeout=settings.GEOCODE_TIMEOUT_SEC,
    )
