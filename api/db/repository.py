"""
Repository — the only place that issues SQL for the dispatch services.

Services take a repository instead of a raw session so the same code runs
against Postgres in production and an in-memory double in tests.
"""

import uuid
from contextlib import asynccontextmanager

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import async_session
from models.route import Route, RouteStop
from models.transport_job import TransportJob
from models.vehicle import Vehicle
from models.driver import Driver
from models.truck import Truck
from models.tracking import RouteTracking, TrackingEntry


def as_uuid(value) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class DispatchRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Lookups ────────────────────────────────────────────

    async def get_route(self, route_id) -> Route | None:
        return await self.session.get(Route, as_uuid(route_id))

    async def reload_route(self, route_id) -> Route | None:
        """Re-read a route and its stops, discarding any expired in-session state."""
        return await self.session.get(Route, as_uuid(route_id), populate_existing=True)

    async def get_driver(self, driver_id) -> Driver | None:
        return await self.session.get(Driver, as_uuid(driver_id))

    async def get_truck(self, truck_id) -> Truck | None:
        if truck_id is None:
            return None
        return await self.session.get(Truck, as_uuid(truck_id))

    async def get_transport_job(self, job_id) -> TransportJob | None:
        return await self.session.get(TransportJob, as_uuid(job_id))

    async def get_vehicle(self, vehicle_id) -> Vehicle | None:
        if vehicle_id is None:
            return None
        return await self.session.get(Vehicle, as_uuid(vehicle_id))

    async def find_job_stops(self, job_id) -> list[RouteStop]:
        """All pickup/drop stops that reference a transport job, across routes."""
        result = await self.session.execute(
            select(RouteStop).where(
                RouteStop.transport_job_id == as_uuid(job_id),
                RouteStop.stop_type.in_(("pickup", "drop")),
            )
        )
        return list(result.scalars().all())

    async def list_vehicle_jobs(self, vehicle_id) -> list[TransportJob]:
        result = await self.session.execute(
            select(TransportJob).where(TransportJob.vehicle_id == as_uuid(vehicle_id))
        )
        return list(result.scalars().all())

    async def list_route_jobs(self, route_id) -> list[TransportJob]:
        rid = as_uuid(route_id)
        result = await self.session.execute(
            select(TransportJob).where(
                or_(TransportJob.pickup_route_id == rid, TransportJob.drop_route_id == rid)
            )
        )
        return list(result.scalars().all())

    # ── Tracking ledger ────────────────────────────────────

    async def get_tracking(self, route_id) -> RouteTracking | None:
        result = await self.session.execute(
            select(RouteTracking).where(RouteTracking.route_id == as_uuid(route_id))
        )
        return result.scalar_one_or_none()

    async def list_tracking_entries(self, tracking_id) -> list[TrackingEntry]:
        result = await self.session.execute(
            select(TrackingEntry)
            .where(TrackingEntry.tracking_id == as_uuid(tracking_id))
            .order_by(TrackingEntry.position)
        )
        return list(result.scalars().all())

    async def next_entry_position(self, tracking_id) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(TrackingEntry.position), -1) + 1)
            .where(TrackingEntry.tracking_id == as_uuid(tracking_id))
        )
        return int(result.scalar_one())

    # ── Unit of work ───────────────────────────────────────

    def add(self, obj):
        self.session.add(obj)

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        await self.session.rollback()


@asynccontextmanager
async def repository_scope():
    """Short-lived repository on its own session, for work outside a request."""
    async with async_session() as session:
        yield DispatchRepository(session)
