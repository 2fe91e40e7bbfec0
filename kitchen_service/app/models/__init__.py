"""
Kitchen Service Models

All models inherit from KitchenServiceBaseModel which provides common fields.
"""

from .base import KitchenServiceBase, KitchenServiceBaseModel, utc_now
from .dish import Dish
from .notification import Notification, NotificationPriority, NotificationType
from .order import (
    FULFILLMENT_SEQUENCE,
    TERMINAL_STATUSES,
    DeliveryType,
    Order,
    OrderItem,
    OrderStatus,
    OrderVisibility,
    PaymentMethod,
    PaymentStatus,
    ViewerRole,
)
from .payment_event import PaymentEvent, PaymentEventOutcome

__all__ = [
    # Base classes
    "KitchenServiceBase",
    "KitchenServiceBaseModel",
    "utc_now",
    # Order models
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "DeliveryType",
    "ViewerRole",
    "OrderVisibility",
    "FULFILLMENT_SEQUENCE",
    "TERMINAL_STATUSES",
    # Payment events
    "PaymentEvent",
    "PaymentEventOutcome",
    # Notifications
    "Notification",
    "NotificationType",
    "NotificationPriority",
    # Catalog
    "Dish",
]
