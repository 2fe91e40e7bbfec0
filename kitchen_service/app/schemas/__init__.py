"""
Kitchen Service schemas package
"""

from .notification import (
    MarkReadRequest,
    NotificationListResponse,
    NotificationResponse,
    NotificationStatsResponse,
    NotificationUpdateResponse,
    UnreadCountResponse,
)
from .order import (
    CancelOrderRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    DeliveryAddress,
    OrderActionResponse,
    OrderItemCreate,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    OrderSnapshot,
    OrderStatisticsResponse,
    UpdateOrderStatusRequest,
)
from .payment import (
    PaymentDetailsResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    ProcessRefundRequest,
    RefundRequest,
    VerifyPaymentResponse,
    WebhookAck,
)

__all__ = [
    "OrderItemCreate",
    "DeliveryAddress",
    "CreateOrderRequest",
    "UpdateOrderStatusRequest",
    "CancelOrderRequest",
    "ConfirmPaymentRequest",
    "OrderSnapshot",
    "OrderItemResponse",
    "OrderResponse",
    "OrderActionResponse",
    "OrderListResponse",
    "OrderStatisticsResponse",
    # Payments
    "PaymentIntentRequest",
    "PaymentIntentResponse",
    "RefundRequest",
    "ProcessRefundRequest",
    "PaymentDetailsResponse",
    "VerifyPaymentResponse",
    "WebhookAck",
    # Notifications
    "NotificationResponse",
    "NotificationListResponse",
    "MarkReadRequest",
    "NotificationUpdateResponse",
    "UnreadCountResponse",
    "NotificationStatsResponse",
]
