"""Vehicle model definition."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow

if TYPE_CHECKING:
    from .booking import Booking


class Vehicle(Base):
    """Vehicle entity, the reservable resource."""

    __tablename__ = "vehicles"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Vehicle details
    make: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(64), nullable=False)
    license_plate: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    # Rates are stored as minor units, e.g. centavos
    daily_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    with_driver_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Administrative availability; a disabled vehicle cannot be reserved
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    maintenance_status: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("daily_rate >= 0", name="ck_vehicle_daily_rate_non_negative"),
        CheckConstraint("with_driver_rate >= 0", name="ck_vehicle_with_driver_rate_non_negative"),
        CheckConstraint("length(license_plate) > 0", name="ck_vehicle_license_plate_not_empty"),
    )

    # Relationships
    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="vehicle")

    def __repr__(self) -> str:
        return (
            f"<Vehicle(id={self.id}, plate='{self.license_plate}', "
            f"daily_rate={self.daily_rate}, is_available={self.is_available})>"
        )
