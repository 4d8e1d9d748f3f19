"""
결제(Payment) 스키마
"""

from pydantic import BaseModel, Field
from decimal import Decimal
import datetime
from typing import Optional
from models.payment import PaymentStatus


class CreateIntentRequest(BaseModel):
    appointment_id: int = Field(..., description="결제 대상 예약 ID")


class CreateIntentResponse(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    payment_id: int


class UpdateStatusRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    status: PaymentStatus


class RefundRequest(BaseModel):
    reason: str = Field(default="Refunded by admin", min_length=1)


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    psychologist_id: int
    appointment_id: Optional[int] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    stripe_payment_intent_id: str
    refund_reason: Optional[str] = None
    needs_reconciliation: bool
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class PaymentActionResponse(BaseModel):
    message: str
    payment: PaymentResponse


class PaymentListResponse(BaseModel):
    total: int
    payments: list[PaymentResponse]
