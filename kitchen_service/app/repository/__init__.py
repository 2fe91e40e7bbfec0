from .dish_repository import DishRepository
from .notification_repository import NotificationRepository
from .order_repository import OrderRepository
from .payment_event_repository import PaymentEventRepository

__all__ = [
    "DishRepository",
    "NotificationRepository",
    "OrderRepository",
    "PaymentEventRepository",
]
