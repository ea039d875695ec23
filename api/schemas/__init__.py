"""Pydantic schemas and status enums for the route execution API."""

from __future__ import annotations
import uuid
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────

class RouteStatus(str, Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class RouteState(str, Enum):
    STARTED = "Started"
    STOPPED = "Stopped"
    RESUMED = "Resumed"
    COMPLETED = "Completed"


class StopType(str, Enum):
    START = "start"
    PICKUP = "pickup"
    DROP = "drop"
    BREAK = "break"
    REST = "rest"
    FUEL = "fuel"
    END = "end"


class StopStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"


class TransportJobStatus(str, Enum):
    NEEDS_DISPATCH = "Needs Dispatch"
    PUBLISHED_TO_CENTRAL_DISPATCH = "Published to Central Dispatch"
    DISPATCHED = "Dispatched"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    EXCEPTION = "Exception"


class VehicleStatus(str, Enum):
    PURCHASED_INTAKE_NEEDED = "Purchased – Intake Needed"
    INTAKE_COMPLETE = "Intake Completed"
    READY_FOR_TRANSPORT = "Ready for Transport"
    PUBLISHED_TO_CENTRAL_DISPATCH = "Published to Central Dispatch"
    IN_TRANSPORT = "In Transport"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class TruckStatus(str, Enum):
    AVAILABLE = "Available"
    IN_USE = "In Use"
    MAINTENANCE = "Maintenance"
    OUT_OF_SERVICE = "Out of Service"


class TrackingStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TrackingAction(str, Enum):
    START_ROUTE = "start_route"
    STOP_ROUTE = "stop_route"
    RESUME_ROUTE = "resume_route"
    COMPLETE_ROUTE = "complete_route"
    START_STOP = "start_stop"
    COMPLETE_STOP = "complete_stop"
    SKIP_STOP = "skip_stop"
    CHECKLIST_ITEM_CHECKED = "checklist_item_checked"
    CHECKLIST_SUBMITTED = "checklist_submitted"
    UPLOAD_VEHICLE_PHOTO = "upload_vehicle_photo"
    UPLOAD_STOP_PHOTO = "upload_stop_photo"
    ADD_REPORT = "add_report"
    ADD_FUEL_EXPENSE = "add_fuel_expense"
    LOCATION_UPDATE = "location_update"


class PhotoType(str, Enum):
    VEHICLE = "vehicle"
    STOP = "stop"


# ── Shared ─────────────────────────────────────────────────

class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(None, ge=0)


class LocationPing(GeoPoint):
    speed: float | None = None      # m/s
    heading: float | None = None    # degrees


# ── Driver Action Requests ─────────────────────────────────

class RouteActionRequest(BaseModel):
    current_location: GeoPoint | None = None


class ChecklistItem(BaseModel):
    item: str
    checked: bool = False
    notes: str | None = None
    completed_at: datetime | None = None


class StopPhoto(BaseModel):
    url: str
    timestamp: datetime | None = None
    location: GeoPoint | None = None
    notes: str | None = None
    photo_type: PhotoType = PhotoType.STOP
    photo_category: str | None = None


class CompleteStopRequest(RouteActionRequest):
    checklist: list[ChecklistItem] | None = None
    notes: str | None = None
    photos: list[StopPhoto] | None = None


class UpdateStopRequest(RouteActionRequest):
    checklist: list[ChecklistItem] | None = None
    notes: str | None = None


class SkipStopRequest(RouteActionRequest):
    reason: str = ""


class StopPhotosRequest(RouteActionRequest):
    photos: list[StopPhoto] = Field(..., min_length=1)


class DriverLocationUpdate(LocationPing):
    route_id: uuid.UUID | None = None


# ── Responses ──────────────────────────────────────────────

class StopResponse(BaseModel):
    id: uuid.UUID
    stop_type: str
    sequence: int
    status: str
    transport_job_id: uuid.UUID | None
    label: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    distance_from_previous: dict | None = None
    checklist: list[dict] = []
    photos: list[dict] = []
    notes: str | None = None
    skip_reason: str | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class RouteResponse(BaseModel):
    id: uuid.UUID
    route_number: str | None
    driver_id: uuid.UUID
    truck_id: uuid.UUID | None
    status: str
    state: str | None
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    stops: list[StopResponse] = []

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    position: int
    kind: str
    timestamp: datetime
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    action: str | None = None
    details: dict = {}
    audit_log_id: uuid.UUID | None = None

    class Config:
        from_attributes = True


class TrackingStatisticsResponse(BaseModel):
    total_distance_m: int = 0
    total_duration_ms: int = 0
    stops_completed: int = 0
    photos_uploaded: int = 0
    avg_speed_kmh: float = 0.0
    max_speed: float = 0.0


class TrackingSummaryResponse(BaseModel):
    route_id: uuid.UUID
    driver_id: uuid.UUID
    truck_id: uuid.UUID | None
    status: str
    started_at: datetime | None
    ended_at: datetime | None
    location_count: int
    action_count: int
    cached: bool
    statistics: TrackingStatisticsResponse | None = None


class TrackingHistoryResponse(BaseModel):
    route_id: uuid.UUID
    locations: list[LedgerEntryResponse]
    actions: list[LedgerEntryResponse]


class RecomputeResponse(BaseModel):
    transport_jobs: dict[uuid.UUID, str | None]
    vehicles: dict[uuid.UUID, str | None]
