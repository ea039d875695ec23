"""Truck ORM model — the vehicle carrier."""

import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class Truck(Base):
    __tablename__ = "trucks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    truck_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    license_plate: Mapped[str | None] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(
        PgEnum("Available", "In Use", "Maintenance", "Out of Service", name="truck_status", create_type=False),
        default="Available",
    )
    current_driver_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("drivers.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
