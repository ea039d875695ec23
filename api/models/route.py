"""Route and RouteStop ORM models — a driver's ordered multi-stop trip."""

import uuid
from datetime import datetime
from sqlalchemy import String, Integer, Numeric, Text, DateTime, ForeignKey, UniqueConstraint, Enum as PgEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from db.database import Base


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    route_number: Mapped[str | None] = mapped_column(String(30), unique=True)

    # Assignment (ids only, resolved through the repository)
    driver_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    truck_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("trucks.id"))

    # Schedule
    planned_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    planned_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    status: Mapped[str] = mapped_column(
        PgEnum("Planned", "In Progress", "Completed", name="route_status", create_type=False),
        default="Planned",
    )
    # Only set while status is "In Progress"
    state: Mapped[str | None] = mapped_column(
        PgEnum("Started", "Stopped", "Resumed", "Completed", name="route_state", create_type=False),
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    stops = relationship(
        "RouteStop",
        lazy="selectin",
        order_by="RouteStop.sequence",
        cascade="all, delete-orphan",
    )


class RouteStop(Base):
    __tablename__ = "route_stops"
    __table_args__ = (UniqueConstraint("route_id", "sequence", name="uq_route_stop_sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    route_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("routes.id", ondelete="CASCADE"), nullable=False)
    stop_type: Mapped[str] = mapped_column(
        PgEnum("start", "pickup", "drop", "break", "rest", "fuel", "end", name="route_stop_type", create_type=False),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum("Pending", "In Progress", "Completed", "Skipped", name="route_stop_status", create_type=False),
        default="Pending",
    )
    # Required for pickup / drop stops
    transport_job_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("transport_jobs.id"))
    label: Mapped[str | None] = mapped_column(String(120))

    # Location
    address: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Numeric(10, 7))
    longitude: Mapped[float | None] = mapped_column(Numeric(10, 7))
    distance_from_previous: Mapped[dict | None] = mapped_column(JSONB)  # {text, miles, seconds}

    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Driver-filled data
    checklist: Mapped[list] = mapped_column(JSONB, default=list)
    photos: Mapped[list] = mapped_column(JSONB, default=list)
    notes: Mapped[str | None] = mapped_column(Text)
    skip_reason: Mapped[str | None] = mapped_column(Text)
