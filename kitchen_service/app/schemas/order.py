from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"


class OrderItemCreate(BaseModel):
    """Line item as submitted by the client; price is looked up server-side"""

    dish_id: int
    quantity: int = Field(..., ge=1, le=99)


class DeliveryAddress(BaseModel):
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)
    landmark: Optional[str] = Field(None, max_length=200)
    instructions: Optional[str] = Field(None, max_length=500)


class DeliveryInfo(BaseModel):
    delivery_type: str = Field("pickup", pattern="^(pickup|delivery)$")
    delivery_address: Optional[DeliveryAddress] = None
    contact_phone: str = Field(..., pattern=PHONE_PATTERN)
    special_instructions: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def require_address_for_delivery(self) -> "DeliveryInfo":
        if self.delivery_type == "delivery" and self.delivery_address is None:
            raise ValueError("delivery_address is required for delivery orders")
        return self


class CreateOrderRequest(DeliveryInfo):
    """Create order request model"""

    items: List[OrderItemCreate] = Field(..., min_length=1, max_length=50)
    customer_email: Optional[EmailStr] = None


class UpdateOrderStatusRequest(BaseModel):
    status: str
    notes: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


# Snapshots handed to side effects; detached from the database session


class OrderItemSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dish_id: int
    dish_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int
    customer_email: Optional[str] = None
    status: str
    payment_status: str
    total_amount: Decimal
    delivery_type: str
    delivery_address: Optional[Dict[str, Any]] = None
    status_timestamps: Dict[str, str] = {}
    estimated_delivery_time: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    items: List[OrderItemSnapshot] = []


class OrderItemResponse(OrderItemSnapshot):
    id: int


class OrderResponse(BaseModel):
    """Full order representation returned by the API"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    total_amount: Decimal
    delivery_type: str
    delivery_address: Optional[Dict[str, Any]] = None
    contact_phone: str
    special_instructions: Optional[str] = None
    status_timestamps: Dict[str, str] = {}
    payment_method: str
    payment_method_type: Optional[str] = None
    card_brand: Optional[str] = None
    wallet_type: Optional[str] = None
    payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_requested: bool = False
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []


class OrderActionResponse(BaseModel):
    order: OrderResponse
    message: str


class OrderListResponse(BaseModel):
    """Order list response model"""

    orders: List[OrderResponse]
    total: int
    skip: int
    limit: int
    message: str


class OrderStatisticsResponse(BaseModel):
    total_orders: int
    orders_by_status: Dict[str, int]
    completed_revenue: Decimal
    message: str
