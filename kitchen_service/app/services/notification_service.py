"""
Notification feed service.

Notifications are written as side effects of order transitions, after the
order itself has been committed, so every operation opens its own session
from the session factory instead of sharing the request session.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import DomainValidationError, NotFoundError
from ..models.base import utc_now
from ..models.notification import NotificationPriority, NotificationType
from ..realtime.publisher import RealtimeEventPublisher
from ..repository.notification_repository import NotificationRepository
from ..schemas.notification import NotificationResponse
from ..schemas.order import OrderSnapshot
from ..utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.notifications")

HIGH = NotificationPriority.HIGH.value
MEDIUM = NotificationPriority.MEDIUM.value

# type -> (title, message template, priority)
NOTIFICATION_TEMPLATES: Dict[str, Tuple[str, str, str]] = {
    NotificationType.ORDER_PLACED.value: (
        "Order Placed Successfully!",
        "Your order #{order_number} has been placed and confirmed.",
        HIGH,
    ),
    NotificationType.KITCHEN_STARTED.value: (
        "Kitchen Started Preparing",
        "Your order #{order_number} is now being prepared in our kitchen.",
        MEDIUM,
    ),
    NotificationType.READY_PICKUP.value: (
        "Order Ready for Pickup!",
        "Your order #{order_number} is ready for pickup.",
        HIGH,
    ),
    NotificationType.READY_DELIVERY.value: (
        "Order Ready for Delivery!",
        "Your order #{order_number} is ready and will be with you in about "
        "{estimated_minutes} minutes.",
        HIGH,
    ),
    NotificationType.OUT_FOR_DELIVERY.value: (
        "Order Out for Delivery",
        "Your order #{order_number} is on its way!",
        HIGH,
    ),
    NotificationType.DELIVERED.value: (
        "Order Delivered!",
        "Your order #{order_number} has been completed. Enjoy your meal!",
        HIGH,
    ),
    NotificationType.CANCELLED.value: (
        "Order Cancelled",
        "Your order #{order_number} has been cancelled.{reason_suffix}",
        HIGH,
    ),
    NotificationType.PAYMENT_SUCCESS.value: (
        "Payment Successful!",
        "Payment of ${total_amount} for order #{order_number} was successful.",
        HIGH,
    ),
    NotificationType.PAYMENT_FAILED.value: (
        "Payment Failed",
        "Payment for order #{order_number} failed. Please try again.",
        HIGH,
    ),
    NotificationType.REFUND_REQUESTED.value: (
        "Refund Requested",
        "We received your refund request for order #{order_number}. "
        "Our team will review it shortly.",
        MEDIUM,
    ),
    NotificationType.REFUND_PROCESSED.value: (
        "Refund Processed",
        "Refund of ${refund_amount} for order #{order_number} has been processed.",
        MEDIUM,
    ),
    NotificationType.REFUND_ISSUED.value: (
        "Refund Issued",
        "A refund of ${refund_amount} for order #{order_number} has been issued "
        "to your original payment method.",
        HIGH,
    ),
}


class NotificationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: RealtimeEventPublisher,
        ttl_days: int = 30,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.ttl_days = ttl_days

    async def create_notification(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        priority: str = MEDIUM,
    ) -> NotificationResponse:
        """Persist a notification, then push it and the new unread count"""
        if notification_type not in {t.value for t in NotificationType}:
            raise DomainValidationError(
                f"Unknown notification type: {notification_type}"
            )

        async with self.session_factory() as session:
            repository = NotificationRepository(session)
            notification = await repository.create_notification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                data=data or {},
                priority=priority,
                expires_at=utc_now() + timedelta(days=self.ttl_days),
            )
            unread_count = await repository.count_unread(user_id)

        response = NotificationResponse.model_validate(notification)
        logger.info(
            "Notification created",
            extra={
                "notification_id": str(notification.id),
                "user_id": str(user_id),
                "notification_type": notification_type,
            },
        )

        await self.publisher.publish_notification_created(
            user_id, response.model_dump(mode="json")
        )
        await self.publisher.publish_unread_count(user_id, unread_count)
        return response

    async def notify_order(
        self, order: OrderSnapshot, notification_type: str, **additional: Any
    ) -> NotificationResponse:
        """Create a templated notification about an order for its owner"""
        title, template, priority = NOTIFICATION_TEMPLATES[notification_type]
        reason = additional.get("reason")
        refund_amount = Decimal(str(additional.get("refund_amount") or order.total_amount))
        message = template.format(
            order_number=order.order_number,
            total_amount=f"{order.total_amount:.2f}",
            refund_amount=f"{refund_amount:.2f}",
            estimated_minutes=additional.get("estimated_minutes", 30),
            reason_suffix=f" Reason: {reason}" if reason else "",
        )
        data = {
            "order_id": order.id,
            "order_number": order.order_number,
            "total_amount": float(order.total_amount),
            "status": order.status,
            "payment_status": order.payment_status,
            **{
                key: float(value) if key.endswith("amount") else value
                for key, value in additional.items()
                if value is not None
            },
        }
        return await self.create_notification(
            user_id=order.user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
            priority=priority,
        )

    # Feed operations

    async def list_notifications(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 20,
        notification_type: Optional[str] = None,
        read: Optional[bool] = None,
    ) -> Dict[str, Any]:
        async with self.session_factory() as session:
            repository = NotificationRepository(session)
            notifications, total = await repository.get_notifications_by_user(
                user_id,
                skip=skip,
                limit=limit,
                notification_type=notification_type,
                read=read,
            )
            unread_count = await repository.count_unread(user_id)

        return {
            "notifications": [
                NotificationResponse.model_validate(n) for n in notifications
            ],
            "total": total,
            "unread_count": unread_count,
            "skip": skip,
            "limit": limit,
        }

    async def get_unread_count(self, user_id: int) -> int:
        async with self.session_factory() as session:
            return await NotificationRepository(session).count_unread(user_id)

    async def mark_as_read(
        self, user_id: int, notification_ids: Sequence[int]
    ) -> Dict[str, int]:
        async with self.session_factory() as session:
            repository = NotificationRepository(session)
            updated = await repository.mark_as_read(user_id, notification_ids)
            unread_count = await repository.count_unread(user_id)

        await self.publisher.publish_notification_updated(
            user_id, "marked-read", notification_ids=list(notification_ids)
        )
        await self.publisher.publish_unread_count(user_id, unread_count)
        return {"updated": updated, "unread_count": unread_count}

    async def mark_all_as_read(self, user_id: int) -> Dict[str, int]:
        async with self.session_factory() as session:
            repository = NotificationRepository(session)
            updated = await repository.mark_all_as_read(user_id)

        await self.publisher.publish_notification_updated(user_id, "marked-all-read")
        await self.publisher.publish_unread_count(user_id, 0)
        return {"updated": updated, "unread_count": 0}

    async def delete_notification(self, user_id: int, notification_id: int) -> int:
        async with self.session_factory() as session:
            repository = NotificationRepository(session)
            if not await repository.delete_notification(user_id, notification_id):
                raise NotFoundError(
                    "Notification not found", notification_id=notification_id
                )
            unread_count = await repository.count_unread(user_id)

        await self.publisher.publish_notification_updated(
            user_id, "deleted", notification_id=notification_id
        )
        await self.publisher.publish_unread_count(user_id, unread_count)
        return unread_count

    async def get_statistics(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            by_type = await NotificationRepository(
                session
            ).get_notification_count_by_type()

        return {
            "total": sum(entry["count"] for entry in by_type.values()),
            "unread": sum(entry["unread"] for entry in by_type.values()),
            "by_type": by_type,
        }

    async def purge_expired(self) -> int:
        async with self.session_factory() as session:
            removed = await NotificationRepository(session).delete_expired()
        if removed:
            logger.info("Expired notifications purged", extra={"removed": removed})
        return removed

