from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .order import OrderResponse


class PaymentIntentRequest(BaseModel):
    order_id: int


class PaymentIntentResponse(BaseModel):
    """Client secret the app uses to complete payment out-of-band"""

    client_secret: Optional[str] = None
    payment_intent_id: str
    amount: Decimal
    currency: str
    order_id: Optional[int] = None


class RefundRequest(BaseModel):
    order_id: int
    reason: str = Field(..., min_length=1, max_length=500)


class ProcessRefundRequest(BaseModel):
    order_id: int
    reason: Optional[str] = Field(None, max_length=500)


class PaymentDetailsResponse(BaseModel):
    order_id: int
    order_number: str
    total_amount: Decimal
    payment_status: str
    payment_method: str
    payment_method_type: Optional[str] = None
    card_brand: Optional[str] = None
    wallet_type: Optional[str] = None
    payment_intent_id: Optional[str] = None
    intent_status: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_requested: bool = False


class VerifyPaymentResponse(BaseModel):
    order: OrderResponse
    verified: bool
    intent_status: Optional[str] = None
    message: str


class WebhookAck(BaseModel):
    received: bool
