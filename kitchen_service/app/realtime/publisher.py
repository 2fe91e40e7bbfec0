"""
Realtime events emitted on order, payment and notification changes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..schemas.order import OrderSnapshot
from ..utils.logging import setup_kitchen_logging
from .gateway import RealtimeGateway

logger = setup_kitchen_logging("kitchen_service.realtime.events")


class RealtimeEvent(BaseModel):
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = {}

    def payload(self) -> Dict[str, Any]:
        return {**self.data, "timestamp": self.timestamp.isoformat()}


def order_payload(order: OrderSnapshot, **extra: Any) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "status_timestamps": dict(order.status_timestamps),
        "total_amount": float(order.total_amount),
        **extra,
    }


class RealtimeEventPublisher:
    """Builds realtime events and routes them to their audiences"""

    def __init__(self, gateway: RealtimeGateway):
        self.gateway = gateway

    async def _publish_to_user(self, user_id: Any, event: RealtimeEvent) -> None:
        delivered = await self.gateway.route_to_user(
            user_id, event.event_type, event.payload()
        )
        logger.debug(
            f"Published {event.event_type} event.",
            extra={"audience": f"user-{user_id}", "delivered": delivered},
        )

    async def _publish_to_admins(self, event: RealtimeEvent) -> None:
        delivered = await self.gateway.route_to_role(
            "admin", event.event_type, event.payload()
        )
        logger.debug(
            f"Published {event.event_type} event.",
            extra={"audience": "role-admin", "delivered": delivered},
        )

    async def _publish_to_order(self, order_id: Any, event: RealtimeEvent) -> None:
        delivered = await self.gateway.route_to_order_channel(
            order_id, event.event_type, event.payload()
        )
        logger.debug(
            f"Published {event.event_type} event.",
            extra={"audience": f"order-{order_id}", "delivered": delivered},
        )

    # Order lifecycle

    async def publish_order_placed(self, order: OrderSnapshot) -> None:
        event = RealtimeEvent(
            event_type="order-placed",
            data=order_payload(
                order,
                user_id=order.user_id,
                delivery_type=order.delivery_type,
                items_count=len(order.items),
            ),
        )
        await self._publish_to_user(order.user_id, event)
        await self._publish_to_admins(event)

    async def publish_order_status_updated(
        self, order: OrderSnapshot, previous_status: Optional[str] = None
    ) -> None:
        event = RealtimeEvent(
            event_type="order-status-updated",
            data=order_payload(
                order,
                previous_status=previous_status,
                estimated_delivery_time=(
                    order.estimated_delivery_time.isoformat()
                    if order.estimated_delivery_time
                    else None
                ),
            ),
        )
        await self._publish_to_user(order.user_id, event)
        await self._publish_to_admins(event)

    # Payments

    async def publish_payment_success(self, order: OrderSnapshot) -> None:
        event = RealtimeEvent(
            event_type="payment-success",
            data=order_payload(order, payment_intent_id=order.payment_intent_id),
        )
        await self._publish_to_order(order.id, event)
        await self._publish_to_user(order.user_id, event)

    async def publish_payment_failed(
        self,
        user_id: Any,
        order: Optional[OrderSnapshot] = None,
        error_message: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ) -> None:
        data: Dict[str, Any] = (
            order_payload(order) if order else {"payment_status": "failed"}
        )
        data.update({"error": error_message, "payment_intent_id": payment_intent_id})
        event = RealtimeEvent(event_type="payment-failed", data=data)
        if order is not None:
            await self._publish_to_order(order.id, event)
        await self._publish_to_user(user_id, event)

    # Refunds

    async def publish_refund_requested(self, order: OrderSnapshot, reason: str) -> None:
        event = RealtimeEvent(
            event_type="refund-requested",
            data=order_payload(order, user_id=order.user_id, reason=reason),
        )
        await self._publish_to_admins(event)

    async def publish_refund_processed(
        self, order: OrderSnapshot, refund_id: Optional[str], amount: Any
    ) -> None:
        event = RealtimeEvent(
            event_type="refund-processed",
            data=order_payload(order, refund_id=refund_id, refund_amount=float(amount)),
        )
        await self._publish_to_order(order.id, event)
        await self._publish_to_user(order.user_id, event)
        await self._publish_to_admins(event)

    # Notification feed

    async def publish_notification_created(
        self, user_id: Any, notification: Dict[str, Any]
    ) -> None:
        event = RealtimeEvent(event_type="notification-created", data=notification)
        await self._publish_to_user(user_id, event)

    async def publish_notification_updated(
        self, user_id: Any, update_type: str, **data: Any
    ) -> None:
        event = RealtimeEvent(
            event_type="notification-updated", data={"type": update_type, **data}
        )
        await self._publish_to_user(user_id, event)

    async def publish_unread_count(self, user_id: Any, count: int) -> None:
        event = RealtimeEvent(event_type="unread-count-updated", data={"count": count})
        await self._publish_to_user(user_id, event)
