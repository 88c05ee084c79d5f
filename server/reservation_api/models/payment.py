"""Payment model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow

if TYPE_CHECKING:
    from .booking import Booking


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base):
    """Payment attempt against a booking. Amounts are minor units."""

    __tablename__ = "payments"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    payment_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Charges
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    processing_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True
    )

    # Webhook idempotency key
    transaction_reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
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
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint("processing_fee >= 0", name="ck_payment_fee_non_negative"),
        CheckConstraint("tax_amount >= 0", name="ck_payment_tax_non_negative"),
        CheckConstraint(
            "total_amount = amount + processing_fee + tax_amount",
            name="ck_payment_total_composition"
        ),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= total_amount)",
            name="ck_payment_refund_bounded"
        ),
    )

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, reference='{self.transaction_reference}', "
            f"booking_id={self.booking_id}, total={self.total_amount}, status={self.status})>"
        )
