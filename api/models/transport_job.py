"""TransportJob ORM model — moving one vehicle from a pickup stop to a drop stop."""

import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Enum as PgEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class TransportJob(Base):
    __tablename__ = "transport_jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    job_number: Mapped[str | None] = mapped_column(String(30), unique=True)
    vehicle_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("vehicles.id"))

    # Pickup and drop may live on two different routes
    pickup_route_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("routes.id"))
    drop_route_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("routes.id"))

    status: Mapped[str] = mapped_column(
        PgEnum(
            "Needs Dispatch", "Published to Central Dispatch", "Dispatched",
            "In Transit", "Delivered", "Cancelled", "Exception",
            name="transport_job_status", create_type=False,
        ),
        default="Needs Dispatch",
    )
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Proof of condition — vehicle photo urls mirrored from the stops
    pickup_photos: Mapped[list] = mapped_column(JSONB, default=list)
    delivery_photos: Mapped[list] = mapped_column(JSONB, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
