"""Razorpay webhook envelope schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

PAYMENT_CAPTURED = "payment.captured"


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    order_id: str
    amount: Optional[int] = None  # paise
    currency: Optional[str] = None
    status: Optional[str] = None
    error_description: Optional[str] = None


class PaymentWrapper(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entity: PaymentEntity


class PaymentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment: PaymentWrapper


class PaymentCapturedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    payload: PaymentPayload
