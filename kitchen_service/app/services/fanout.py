"""
Fan-out plans for order transitions.

Each method returns the side effects one committed transition triggers.
Nothing here runs anything; the dispatcher executes the returned list.
Emails are always placed last since they are the slowest.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

from ..models.notification import NotificationType
from ..models.order import DeliveryType, OrderStatus
from ..realtime.publisher import RealtimeEventPublisher
from ..schemas.order import OrderSnapshot
from .email_service import EmailService
from .notification_service import NotificationService
from .side_effects import SideEffect

STATUS_NOTIFICATIONS = {
    OrderStatus.PREPARING.value: NotificationType.KITCHEN_STARTED.value,
    OrderStatus.OUT_FOR_DELIVERY.value: NotificationType.OUT_FOR_DELIVERY.value,
    OrderStatus.COMPLETED.value: NotificationType.DELIVERED.value,
}

STATUS_EMAILS = frozenset({OrderStatus.READY.value, OrderStatus.COMPLETED.value})


class OrderFanout:
    def __init__(
        self,
        notifications: NotificationService,
        publisher: RealtimeEventPublisher,
        email: EmailService,
        ready_eta_minutes: int = 30,
    ):
        self.notifications = notifications
        self.publisher = publisher
        self.email = email
        self.ready_eta_minutes = ready_eta_minutes

    @staticmethod
    def _effect(
        name: str, order: OrderSnapshot, action: Callable[[], Awaitable[Any]]
    ) -> SideEffect:
        return SideEffect(
            name=name,
            action=action,
            context={"order_id": order.id, "order_number": order.order_number},
        )

    def _notify(self, order: OrderSnapshot, notification_type: str, **extra: Any) -> SideEffect:
        return self._effect(
            f"notification:{notification_type}",
            order,
            lambda: self.notifications.notify_order(order, notification_type, **extra),
        )

    def payment_confirmed(self, order: OrderSnapshot) -> List[SideEffect]:
        return [
            self._effect(
                "realtime:order-placed",
                order,
                lambda: self.publisher.publish_order_placed(order),
            ),
            self._effect(
                "realtime:payment-success",
                order,
                lambda: self.publisher.publish_payment_success(order),
            ),
            self._notify(order, NotificationType.ORDER_PLACED.value),
            self._notify(
                order,
                NotificationType.PAYMENT_SUCCESS.value,
                payment_intent_id=order.payment_intent_id,
            ),
            self._effect(
                "email:order-placed",
                order,
                lambda: self.email.send_order_placed_alert(order),
            ),
        ]

    def payment_failed(
        self,
        user_id: int,
        order: Optional[OrderSnapshot],
        error_message: Optional[str],
        payment_intent_id: Optional[str],
    ) -> List[SideEffect]:
        effects = [
            SideEffect(
                name="realtime:payment-failed",
                action=lambda: self.publisher.publish_payment_failed(
                    user_id,
                    order=order,
                    error_message=error_message,
                    payment_intent_id=payment_intent_id,
                ),
                context={"user_id": user_id, "payment_intent_id": payment_intent_id},
            )
        ]
        if order is not None:
            effects.append(
                self._notify(
                    order, NotificationType.PAYMENT_FAILED.value, error=error_message
                )
            )
        return effects

    def status_updated(
        self, order: OrderSnapshot, previous_status: str
    ) -> List[SideEffect]:
        effects = [
            self._effect(
                "realtime:order-status-updated",
                order,
                lambda: self.publisher.publish_order_status_updated(
                    order, previous_status
                ),
            )
        ]

        if order.status == OrderStatus.READY.value:
            if order.delivery_type == DeliveryType.DELIVERY.value:
                effects.append(
                    self._notify(
                        order,
                        NotificationType.READY_DELIVERY.value,
                        estimated_minutes=self.ready_eta_minutes,
                        delivery_address=order.delivery_address,
                    )
                )
            else:
                effects.append(
                    self._notify(
                        order,
                        NotificationType.READY_PICKUP.value,
                        estimated_minutes=self.ready_eta_minutes,
                    )
                )
        elif order.status in STATUS_NOTIFICATIONS:
            effects.append(self._notify(order, STATUS_NOTIFICATIONS[order.status]))

        if order.status in STATUS_EMAILS:
            effects.append(
                self._effect(
                    f"email:status-{order.status}",
                    order,
                    lambda: self.email.send_status_update(order, order.status),
                )
            )
        return effects

    def cancelled(
        self,
        order: OrderSnapshot,
        previous_status: str,
        reason: Optional[str] = None,
        refund_id: Optional[str] = None,
        refund_amount: Optional[Decimal] = None,
    ) -> List[SideEffect]:
        effects = [
            self._effect(
                "realtime:order-status-updated",
                order,
                lambda: self.publisher.publish_order_status_updated(
                    order, previous_status
                ),
            ),
            self._notify(order, NotificationType.CANCELLED.value, reason=reason),
        ]
        if refund_amount is not None:
            effects.extend(
                [
                    self._notify(
                        order,
                        NotificationType.REFUND_ISSUED.value,
                        refund_id=refund_id,
                        refund_amount=refund_amount,
                    ),
                    self._effect(
                        "realtime:refund-processed",
                        order,
                        lambda: self.publisher.publish_refund_processed(
                            order, refund_id, refund_amount
                        ),
                    ),
                ]
            )
        effects.append(
            self._effect(
                "email:cancellation",
                order,
                lambda: self.email.send_cancellation_alert(order, reason),
            )
        )
        return effects

    def refund_requested(self, order: OrderSnapshot, reason: str) -> List[SideEffect]:
        return [
            self._notify(order, NotificationType.REFUND_REQUESTED.value, reason=reason),
            self._effect(
                "realtime:refund-requested",
                order,
                lambda: self.publisher.publish_refund_requested(order, reason),
            ),
        ]

    def refund_processed(
        self,
        order: OrderSnapshot,
        previous_status: str,
        refund_id: str,
        refund_amount: Decimal,
        reason: Optional[str] = None,
    ) -> List[SideEffect]:
        return [
            self._notify(
                order,
                NotificationType.REFUND_PROCESSED.value,
                refund_id=refund_id,
                refund_amount=refund_amount,
                reason=reason,
            ),
            self._notify(
                order,
                NotificationType.REFUND_ISSUED.value,
                refund_id=refund_id,
                refund_amount=refund_amount,
            ),
            self._effect(
                "realtime:refund-processed",
                order,
                lambda: self.publisher.publish_refund_processed(
                    order, refund_id, refund_amount
                ),
            ),
            self._effect(
                "realtime:order-status-updated",
                order,
                lambda: self.publisher.publish_order_status_updated(
                    order, previous_status
                ),
            ),
        ]
