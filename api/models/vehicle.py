"""Vehicle ORM model — the car being carried."""

import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    vin: Mapped[str] = mapped_column(String(17), unique=True, nullable=False)
    year: Mapped[int | None] = mapped_column(Integer)
    make: Mapped[str | None] = mapped_column(String(60))
    model: Mapped[str | None] = mapped_column(String(60))
    status: Mapped[str] = mapped_column(
        PgEnum(
            "Purchased – Intake Needed", "Intake Completed", "Ready for Transport",
            "Published to Central Dispatch", "In Transport", "Delivered", "Cancelled",
            name="vehicle_status", create_type=False,
        ),
        default="Purchased – Intake Needed",
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
