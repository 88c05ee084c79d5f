"""Booking model definition."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow

if TYPE_CHECKING:
    from .payment import Payment
    from .vehicle import Vehicle


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class BookingPaymentStatus(str, Enum):
    """Settlement state of a booking."""
    UNPAID = "unpaid"
    PAID = "paid"


# Bookings in these states no longer occupy the vehicle
INACTIVE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.REJECTED})


def _enum_column(enum_cls: type[Enum]) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


class Booking(Base):
    """Booking entity, a reservation of one vehicle over ``[start_date, end_date)``."""

    __tablename__ = "bookings"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Human readable reference, e.g. BK-7QX2LM-250601
    booking_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    vehicle_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("vehicles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Half-open rental interval; end_date is the return day
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    pickup_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    return_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    with_driver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        _enum_column(BookingPaymentStatus),
        nullable=False,
        default=BookingPaymentStatus.UNPAID
    )

    # Minor units
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

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
        CheckConstraint("start_date < end_date", name="ck_booking_interval_ordered"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_amount_non_negative"),
        CheckConstraint("length(customer_id) > 0", name="ck_booking_customer_id_not_empty"),
        Index("ix_bookings_vehicle_interval", "vehicle_id", "start_date", "end_date"),
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    vehicle: Mapped["Vehicle"] = relationship("Vehicle", back_populates="bookings")
    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="booking",
        order_by="Payment.created_at"
    )

    @property
    def is_active(self) -> bool:
        """Whether the booking still occupies its vehicle."""
        return self.status not in INACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, number='{self.booking_number}', vehicle_id={self.vehicle_id}, "
            f"interval=[{self.start_date}, {self.end_date}), status={self.status})>"
        )
