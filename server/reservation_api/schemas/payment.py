"""Payment-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.payment import PaymentStatus


class CreatePaymentRequest(BaseModel):
    """Request schema for paying a booking."""

    booking_id: str = Field(..., description="Booking to pay for")
    payment_method: str = Field(..., description="Payment method, e.g. GCASH")
    amount: Optional[int] = Field(None, gt=0, description="Base amount in minor units; defaults to the booking total")


class RefundRequest(BaseModel):
    """Request schema for refunding a payment."""

    amount: Optional[int] = Field(None, description="Refund amount in minor units; defaults to the full total")
    reason: Optional[str] = Field(None, max_length=2000, description="Refund reason")


class Payment(BaseModel):
    """Payment response schema."""

    id: str = Field(..., description="Unique payment ID")
    payment_number: str = Field(..., description="Human readable payment reference")
    booking_id: str = Field(..., description="Paid booking ID")
    amount: int = Field(..., description="Base amount in minor units")
    processing_fee: int = Field(..., description="Processing fee in minor units")
    tax_amount: int = Field(..., description="Tax in minor units")
    total_amount: int = Field(..., description="Charged total in minor units")
    currency: str = Field(..., description="ISO 4217 currency code")
    payment_method: str = Field(..., description="Payment method")
    status: PaymentStatus = Field(..., description="Payment status")
    transaction_reference: str = Field(..., description="Reference shared with the payment provider")
    failure_reason: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(..., description="Creation time (ISO 8601)")


class PaymentResult(BaseModel):
    """Response schema for a processed payment."""

    message: str = Field(..., description="Outcome summary")
    payment: Payment
    payment_details: Dict[str, Any] = Field(default_factory=dict, description="Processor details")


class PaymentMethods(BaseModel):
    """Accepted payment methods."""

    methods: List[str]
    currency: str


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    status: str = Field("success")
    event: str
    transaction_reference: str
    payment_status: PaymentStatus
    applied: bool = Field(..., description="False when the event was a duplicate or out of order")
