"""RouteTracking and TrackingEntry ORM models — the per-route tracking ledger.

Entries are insert-only: corrections are new rows, never updates.
"""

import uuid
from datetime import datetime
from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, UniqueConstraint, Enum as PgEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class RouteTracking(Base):
    __tablename__ = "route_trackings"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    route_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("routes.id"), unique=True, nullable=False)
    driver_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    truck_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("trucks.id"))
    status: Mapped[str] = mapped_column(
        PgEnum("active", "completed", "cancelled", name="tracking_status", create_type=False),
        default="active",
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    statistics: Mapped[dict | None] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class TrackingEntry(Base):
    __tablename__ = "tracking_entries"
    __table_args__ = (UniqueConstraint("tracking_id", "position", name="uq_tracking_entry_position"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tracking_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("route_trackings.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)  # location, action
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    accuracy: Mapped[float | None] = mapped_column(Float)
    speed: Mapped[float | None] = mapped_column(Float)
    heading: Mapped[float | None] = mapped_column(Float)

    action: Mapped[str | None] = mapped_column(String(40))
    details: Mapped[dict] = mapped_column(JSONB, default=dict)
    audit_log_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("audit_logs.id"))
