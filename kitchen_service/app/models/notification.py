from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import KitchenServiceBaseModel


class NotificationType(Enum):
    ORDER_PLACED = "order-placed"
    KITCHEN_STARTED = "kitchen-started"
    READY_PICKUP = "ready-pickup"
    READY_DELIVERY = "ready-delivery"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_SUCCESS = "payment-success"
    PAYMENT_FAILED = "payment-failed"
    REFUND_REQUESTED = "refund-requested"
    REFUND_PROCESSED = "refund-processed"
    REFUND_ISSUED = "refund-issued"
    ORDER_UPDATED = "order-updated"
    SYSTEM_ALERT = "system-alert"


class NotificationPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Notification(KitchenServiceBaseModel):
    __tablename__ = "notifications"

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    priority: Mapped[str] = mapped_column(
        String(20), default=NotificationPriority.MEDIUM.value, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, index=True
    )
