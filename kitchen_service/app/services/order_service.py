"""
Order lifecycle coordinator.

Every operation performs one authoritative write to the order record and
returns a ``TransitionResult`` carrying the committed order plus the side
effects it triggers. Writes are compare-and-swap on the status the decision
was based on, so a concurrent transition of the same order surfaces as a
ConflictError instead of silently overwriting it.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainValidationError,
    ExternalServiceError,
    NotFoundError,
    OrderNumberGenerationError,
)
from ..core.settings import KitchenServiceSettings
from ..models.base import utc_now
from ..models.order import (
    FULFILLMENT_SEQUENCE,
    DeliveryType,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ViewerRole,
)
from ..repository.dish_repository import DishRepository
from ..repository.order_repository import OrderRepository
from ..schemas.order import CreateOrderRequest, OrderSnapshot
from ..utils.logging import setup_kitchen_logging
from .fanout import OrderFanout
from .order_numbers import (
    OrderNumberGenerator,
    SequentialOrderNumberGenerator,
    TimestampOrderNumberGenerator,
)
from .payment_gateway import PaymentGateway, PaymentMethodDetails
from .side_effects import TransitionResult

logger = setup_kitchen_logging("kitchen_service.orders")

CENT = Decimal("0.01")

ADMIN_STATUS_TARGETS = frozenset(
    {
        OrderStatus.PREPARING.value,
        OrderStatus.READY.value,
        OrderStatus.OUT_FOR_DELIVERY.value,
        OrderStatus.COMPLETED.value,
    }
)

SIMULATED_INTENT_PREFIX = "sim_"
GATEWAY_INTENT_PREFIX = "pi_"

REFUND_WRITE_ATTEMPTS = 3


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def stamp_status(
    timestamps: Optional[Dict[str, str]], status: str, at: Optional[str] = None
) -> Dict[str, str]:
    """Return a copy of ``timestamps`` with ``status`` stamped unless already set"""
    stamped = dict(timestamps or {})
    stamped.setdefault(status, at or now_iso())
    return stamped


def snapshot(order: Order) -> OrderSnapshot:
    return OrderSnapshot.model_validate(order)


def is_gateway_intent(payment_intent_id: Optional[str]) -> bool:
    return bool(payment_intent_id) and payment_intent_id.startswith(  # type: ignore[union-attr]
        GATEWAY_INTENT_PREFIX
    )


class OrderService:
    def __init__(
        self,
        session: AsyncSession,
        payment_gateway: PaymentGateway,
        fanout: OrderFanout,
        settings: KitchenServiceSettings,
    ):
        self.session = session
        self.payment_gateway = payment_gateway
        self.fanout = fanout
        self.settings = settings
        self.order_repository = OrderRepository(session)
        self.dish_repository = DishRepository(session)

    # =====================================================
    # LOOKUPS AND GUARDS
    # =====================================================

    async def load_order(self, order_id: int) -> Order:
        order = await self.order_repository.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    async def record_refund(
        self, order: Order, values: Dict[str, Any]
    ) -> Tuple[Order, str]:
        """Write an already executed refund as ``cancelled`` + ``refunded``.

        The gateway has moved the money, so losing the status race to a
        concurrent transition must not discard the write: the order is re-read
        and the write retried against its current status while it is still
        ``paid``. Returns the updated order and the status it moved from.
        """
        current = order
        for attempt in range(1, REFUND_WRITE_ATTEMPTS + 1):
            try:
                updated = await self.order_repository.apply_transition(
                    current.id,
                    current.status,
                    {
                        **values,
                        "status": OrderStatus.CANCELLED.value,
                        "payment_status": PaymentStatus.REFUNDED.value,
                        "status_timestamps": stamp_status(
                            current.status_timestamps, OrderStatus.CANCELLED.value
                        ),
                    },
                    expected_payment_status=PaymentStatus.PAID.value,
                )
                return updated, current.status
            except ConflictError:
                current = await self.load_order(order.id)
                logger.warning(
                    "Order changed while recording refund",
                    extra={
                        "order_id": str(order.id),
                        "order_number": order.order_number,
                        "attempt": attempt,
                        "current_status": current.status,
                        "payment_status": current.payment_status,
                        "refund_id": values.get("refund_id"),
                    },
                )
                if current.payment_status != PaymentStatus.PAID.value:
                    break

        logger.error(
            "Refund issued at gateway but not recorded on order",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "refund_id": values.get("refund_id"),
                "refund_amount": str(values.get("refund_amount")),
            },
        )
        raise ConflictError(
            "Refund was issued but the order could not be updated",
            order_id=order.id,
            current_status=current.status,
            payment_status=current.payment_status,
            refund_id=values.get("refund_id"),
        )

    @staticmethod
    def _require_owner(order: Order, user_id: int, action: str) -> None:
        if order.user_id != user_id:
            raise AuthorizationError(
                f"Not authorized to {action} this order", order_id=order.id
            )

    # =====================================================
    # CREATION
    # =====================================================

    async def price_items(self, items: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], Decimal]:
        """Re-price line items from the live catalog.

        Client-supplied prices are never trusted; each dish must exist and be
        available right now.
        """
        priced: List[Dict[str, Any]] = []
        total = Decimal("0.00")
        for item in items:
            dish = await self.dish_repository.get_dish(item["dish_id"])
            if dish is None:
                raise DomainValidationError(
                    f"Dish {item['dish_id']} not found", dish_id=item["dish_id"]
                )
            if not dish.availability:
                raise DomainValidationError(
                    f"{dish.name} is currently unavailable", dish_id=dish.id
                )

            unit_price = Decimal(str(dish.price)).quantize(CENT)
            subtotal = (unit_price * item["quantity"]).quantize(CENT)
            priced.append(
                {
                    "dish_id": dish.id,
                    "dish_name": dish.name,
                    "quantity": item["quantity"],
                    "unit_price": unit_price,
                    "subtotal": subtotal,
                }
            )
            total += subtotal
        return priced, total.quantize(CENT)

    async def _persist_new_order(
        self,
        generator: OrderNumberGenerator,
        user_id: int,
        items: List[Dict[str, Any]],
        total_amount: Decimal,
        **fields: Any,
    ) -> Tuple[Order, bool]:
        """Insert with a fresh order number, retrying on collision.

        Returns (order, created). When the insert collides on the payment
        intent instead, the existing order is returned with created=False.
        """
        payment_intent_id = fields.get("payment_intent_id")
        for attempt in range(self.settings.ORDER_NUMBER_MAX_ATTEMPTS):
            order_number = await generator.candidate(attempt)
            try:
                order = await self.order_repository.create_order(
                    order_number=order_number,
                    user_id=user_id,
                    items=items,
                    total_amount=total_amount,
                    **fields,
                )
                return order, True
            except IntegrityError:
                await self.session.rollback()
                if payment_intent_id:
                    existing = await self.order_repository.get_order_by_payment_intent(
                        payment_intent_id
                    )
                    if existing:
                        return existing, False
                logger.warning(
                    "Order number collision, retrying",
                    extra={"order_number": order_number, "attempt": attempt + 1},
                )

        raise OrderNumberGenerationError(
            "Could not generate a unique order number",
            attempts=self.settings.ORDER_NUMBER_MAX_ATTEMPTS,
        )

    async def create_order(
        self,
        user_id: int,
        request: CreateOrderRequest,
        customer_email: Optional[str] = None,
    ) -> TransitionResult:
        """Persist a pending, unpaid order. No fan-out: the kitchen only
        sees orders once they are paid."""
        items, total_amount = await self.price_items(
            [item.model_dump() for item in request.items]
        )

        order, _ = await self._persist_new_order(
            SequentialOrderNumberGenerator(self.order_repository),
            user_id=user_id,
            items=items,
            total_amount=total_amount,
            customer_email=customer_email or request.customer_email,
            delivery_type=request.delivery_type,
            delivery_address=(
                request.delivery_address.model_dump()
                if request.delivery_address
                else None
            ),
            contact_phone=request.contact_phone,
            special_instructions=request.special_instructions,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            status_timestamps={},
        )

        logger.info(
            "Order created successfully.",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": str(user_id),
                "total_amount": str(total_amount),
            },
        )
        return TransitionResult(order=order)

    async def create_paid_order(
        self, order_data: Dict[str, Any], payment_intent_id: str
    ) -> TransitionResult:
        """Materialize a payment-first order directly as placed and paid.

        A second call for the same payment intent returns the existing order
        with no side effects.
        """
        existing = await self.order_repository.get_order_by_payment_intent(
            payment_intent_id
        )
        if existing:
            return TransitionResult(order=existing, details={"created": False})

        items = [
            {
                "dish_id": int(item["dish_id"]),
                "dish_name": item["dish_name"],
                "quantity": int(item["quantity"]),
                "unit_price": Decimal(str(item["unit_price"])),
                "subtotal": Decimal(str(item["subtotal"])),
            }
            for item in order_data["items"]
        ]
        details = await self._payment_method_details_for_intent(payment_intent_id)

        order, created = await self._persist_new_order(
            TimestampOrderNumberGenerator(),
            user_id=int(order_data["user_id"]),
            items=items,
            total_amount=Decimal(str(order_data["total_amount"])),
            customer_email=order_data.get("customer_email"),
            delivery_type=order_data.get("delivery_type", DeliveryType.PICKUP.value),
            delivery_address=order_data.get("delivery_address"),
            contact_phone=order_data["contact_phone"],
            special_instructions=order_data.get("special_instructions"),
            status=OrderStatus.PLACED.value,
            payment_status=PaymentStatus.PAID.value,
            status_timestamps=stamp_status({}, OrderStatus.PLACED.value),
            payment_method=PaymentMethod.STRIPE.value,
            payment_intent_id=payment_intent_id,
            **self._payment_method_columns(details),
        )
        if not created:
            return TransitionResult(order=order, details={"created": False})

        logger.info(
            "Payment-first order created.",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "payment_intent_id": payment_intent_id,
            },
        )
        return TransitionResult(
            order=order,
            side_effects=self.fanout.payment_confirmed(snapshot(order)),
            details={"created": True},
        )

    # =====================================================
    # PAYMENT CONFIRMATION
    # =====================================================

    @staticmethod
    def _payment_method_columns(details: PaymentMethodDetails) -> Dict[str, Any]:
        columns = {
            "payment_method_type": details.type,
            "card_brand": details.card_brand,
            "wallet_type": details.wallet_type,
        }
        return {key: value for key, value in columns.items() if value is not None}

    async def _payment_method_details_for_intent(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> PaymentMethodDetails:
        """Best-effort lookup of card brand / wallet; never fails the caller"""
        try:
            if payment_method_id is None:
                intent = await self.payment_gateway.retrieve_intent(payment_intent_id)
                payment_method_id = intent.payment_method
            if not payment_method_id:
                return PaymentMethodDetails()
            return await self.payment_gateway.retrieve_payment_method(payment_method_id)
        except ExternalServiceError as e:
            logger.warning(
                "Could not retrieve payment method details",
                extra={"payment_intent_id": payment_intent_id, "error": str(e)},
            )
            return PaymentMethodDetails()

    async def mark_paid(
        self,
        order: Order,
        payment_intent_id: str,
        payment_method: str = PaymentMethod.STRIPE.value,
        payment_method_id: Optional[str] = None,
    ) -> TransitionResult:
        """pending -> placed / paid, shared by the client and webhook paths.

        If the other path already confirmed this order with the same intent,
        the call converges on the committed state and emits nothing.
        """
        if order.status != OrderStatus.PENDING.value:
            return self._converged_or_conflict(order, payment_intent_id)

        details = PaymentMethodDetails()
        if payment_method == PaymentMethod.STRIPE.value:
            details = await self._payment_method_details_for_intent(
                payment_intent_id, payment_method_id
            )

        values: Dict[str, Any] = {
            "status": OrderStatus.PLACED.value,
            "payment_status": PaymentStatus.PAID.value,
            "status_timestamps": stamp_status(
                order.status_timestamps, OrderStatus.PLACED.value
            ),
            "payment_intent_id": payment_intent_id,
            "payment_method": payment_method,
            **self._payment_method_columns(details),
        }
        try:
            updated = await self.order_repository.apply_transition(
                order.id, OrderStatus.PENDING.value, values
            )
        except ConflictError:
            current = await self.load_order(order.id)
            return self._converged_or_conflict(current, payment_intent_id)

        logger.info(
            "Order payment confirmed.",
            extra={
                "order_id": str(updated.id),
                "order_number": updated.order_number,
                "payment_intent_id": payment_intent_id,
                "payment_method": payment_method,
            },
        )
        return TransitionResult(
            order=updated, side_effects=self.fanout.payment_confirmed(snapshot(updated))
        )

    @staticmethod
    def _converged_or_conflict(order: Order, payment_intent_id: str) -> TransitionResult:
        if (
            order.payment_status == PaymentStatus.PAID.value
            and order.payment_intent_id == payment_intent_id
        ):
            return TransitionResult(order=order, details={"already_confirmed": True})
        raise ConflictError(
            "Order is not awaiting payment",
            order_id=order.id,
            current_status=order.status,
            current_payment_status=order.payment_status,
        )

    async def confirm_payment(
        self, order_id: int, user_id: int, payment_intent_id: str
    ) -> TransitionResult:
        """Client-driven confirmation after the payment sheet succeeds"""
        order = await self.load_order(order_id)
        self._require_owner(order, user_id, "confirm payment for")

        if order.status != OrderStatus.PENDING.value:
            return self._converged_or_conflict(order, payment_intent_id)

        intent = await self.payment_gateway.retrieve_intent(payment_intent_id)
        if intent.metadata.get("order_id") not in (None, str(order.id)):
            raise DomainValidationError(
                "Payment does not belong to this order",
                order_id=order.id,
                payment_intent_id=payment_intent_id,
            )
        if not intent.succeeded:
            raise DomainValidationError(
                "Payment has not succeeded",
                order_id=order.id,
                payment_status=intent.status,
            )

        return await self.mark_paid(
            order, intent.id, payment_method_id=intent.payment_method
        )

    async def simulate_payment(self, order_id: int, user_id: int) -> TransitionResult:
        """Development-only confirmation without the payment processor"""
        if not self.settings.is_development:
            raise AuthorizationError("Payment simulation is disabled in this environment")

        order = await self.load_order(order_id)
        self._require_owner(order, user_id, "pay for")
        return await self.mark_paid(
            order,
            f"{SIMULATED_INTENT_PREFIX}{order.order_number}",
            payment_method=PaymentMethod.SIMULATED.value,
        )

    # =====================================================
    # FULFILLMENT
    # =====================================================

    async def update_order_status(
        self, order_id: int, new_status: str, notes: Optional[str] = None
    ) -> TransitionResult:
        """Admin-only forward move along the fulfillment sequence"""
        order = await self.load_order(order_id)
        context = {"order_id": order.id, "current_status": order.status}

        if new_status == OrderStatus.CANCELLED.value:
            raise AuthorizationError(
                "Admins cannot cancel orders. Only customers can cancel their own orders.",
                **context,
            )
        if new_status not in ADMIN_STATUS_TARGETS:
            raise DomainValidationError(f"Invalid status target: {new_status}", **context)
        if order.is_terminal:
            raise ConflictError(f"Order is already {order.status}", **context)
        if order.status == OrderStatus.PENDING.value:
            raise DomainValidationError("Order has not been paid yet", **context)
        if (
            new_status == OrderStatus.OUT_FOR_DELIVERY.value
            and order.delivery_type != DeliveryType.DELIVERY.value
        ):
            raise DomainValidationError(
                "Only delivery orders can go out for delivery", **context
            )
        if FULFILLMENT_SEQUENCE.index(new_status) <= FULFILLMENT_SEQUENCE.index(
            order.status
        ):
            raise DomainValidationError(
                f"Cannot move order from {order.status} to {new_status}", **context
            )

        now = utc_now()
        values: Dict[str, Any] = {
            "status": new_status,
            "status_timestamps": stamp_status(order.status_timestamps, new_status),
        }
        if notes:
            values["notes"] = notes
        if new_status == OrderStatus.READY.value:
            values["estimated_delivery_time"] = now + timedelta(
                minutes=self.settings.READY_ETA_MINUTES
            )
        elif new_status == OrderStatus.COMPLETED.value:
            values["actual_delivery_time"] = now

        previous_status = order.status
        updated = await self.order_repository.apply_transition(
            order.id, previous_status, values
        )

        logger.info(
            "Order status updated successfully.",
            extra={
                "order_id": str(updated.id),
                "order_number": updated.order_number,
                "old_status": previous_status,
                "new_status": new_status,
            },
        )
        return TransitionResult(
            order=updated,
            side_effects=self.fanout.status_updated(snapshot(updated), previous_status),
        )

    async def cancel_order(
        self, order_id: int, user_id: int, reason: Optional[str] = None
    ) -> TransitionResult:
        """Customer self-cancel, refunding when the order was paid.

        A gateway refund failure does not block the cancellation; the order is
        cancelled and stays ``paid`` for manual reconciliation.
        """
        order = await self.load_order(order_id)
        self._require_owner(order, user_id, "cancel")
        if order.is_terminal:
            raise ConflictError(
                "Order cannot be cancelled",
                order_id=order.id,
                current_status=order.status,
            )

        values: Dict[str, Any] = {
            "status": OrderStatus.CANCELLED.value,
            "status_timestamps": stamp_status(
                order.status_timestamps, OrderStatus.CANCELLED.value
            ),
        }
        refund_id: Optional[str] = None
        refund_amount: Optional[Decimal] = None
        refund_error: Optional[str] = None

        if order.payment_status == PaymentStatus.PAID.value:
            if is_gateway_intent(order.payment_intent_id):
                try:
                    refund = await self.payment_gateway.create_refund(
                        order.payment_intent_id,  # type: ignore[arg-type]
                        reason="requested_by_customer",
                        metadata={
                            "order_id": str(order.id),
                            "order_number": order.order_number,
                            "cancelled_by": "customer",
                        },
                    )
                    refund_id, refund_amount = refund.id, refund.amount
                except ExternalServiceError as e:
                    refund_error = str(e)
                    logger.warning(
                        "Refund on cancellation failed; order left paid",
                        extra={
                            "order_id": str(order.id),
                            "order_number": order.order_number,
                            "payment_intent_id": order.payment_intent_id,
                            "error": refund_error,
                        },
                    )
            else:
                # Simulated payment: nothing to reverse at the gateway
                refund_id = f"synthetic_{order.order_number}"
                refund_amount = Decimal(order.total_amount)

        if refund_amount is not None:
            updated, previous_status = await self.record_refund(
                order, {"refund_id": refund_id, "refund_amount": refund_amount}
            )
        else:
            previous_status = order.status
            updated = await self.order_repository.apply_transition(
                order.id,
                previous_status,
                values,
                expected_payment_status=order.payment_status,
            )

        logger.info(
            "Order cancelled.",
            extra={
                "order_id": str(updated.id),
                "order_number": updated.order_number,
                "previous_status": previous_status,
                "payment_status": updated.payment_status,
                "refund_id": refund_id,
            },
        )
        return TransitionResult(
            order=updated,
            side_effects=self.fanout.cancelled(
                snapshot(updated),
                previous_status,
                reason=reason,
                refund_id=refund_id,
                refund_amount=refund_amount,
            ),
            details={
                "refunded": refund_amount is not None,
                "refund_error": refund_error,
            },
        )

    async def delete_order(
        self, order_id: int, viewer: ViewerRole, user_id: Optional[int] = None
    ) -> Order:
        """Hide a terminal order from one viewer class only"""
        order = await self.load_order(order_id)
        if viewer == ViewerRole.CUSTOMER:
            self._require_owner(order, user_id, "delete")  # type: ignore[arg-type]
        if not order.is_terminal:
            raise ConflictError(
                "Only completed or cancelled orders can be deleted",
                order_id=order.id,
                current_status=order.status,
            )
        if not order.visibility.is_visible_to(viewer):
            return order

        values = order.visibility.column_values(viewer, utc_now())
        updated = await self.order_repository.apply_transition(
            order.id, order.status, values
        )
        logger.info(
            "Order hidden for viewer.",
            extra={"order_id": str(order.id), "viewer": viewer.value},
        )
        return updated

    # =====================================================
    # QUERIES
    # =====================================================

    async def get_order(
        self, order_id: int, user_id: int, user_role: Optional[str]
    ) -> Order:
        order = await self.load_order(order_id)
        viewer = ViewerRole.ADMIN if user_role == "admin" else ViewerRole.CUSTOMER
        if viewer == ViewerRole.CUSTOMER:
            self._require_owner(order, user_id, "view")
        if not order.visibility.is_visible_to(viewer):
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    async def list_my_orders(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 50,
        status_filter: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        return await self.order_repository.get_orders_for_user(
            user_id, skip=skip, limit=limit, status_filter=status_filter
        )

    async def list_admin_orders(
        self, skip: int = 0, limit: int = 50, status_filter: Optional[str] = None
    ) -> Tuple[List[Order], int]:
        return await self.order_repository.get_orders_for_admin(
            skip=skip, limit=limit, status_filter=status_filter
        )

    async def get_statistics(self) -> Dict[str, Any]:
        """Aggregates over the full order history, soft-deleted orders included"""
        counts = await self.order_repository.get_status_counts()
        return {
            "total_orders": sum(counts.values()),
            "orders_by_status": {
                status.value: counts.get(status.value, 0) for status in OrderStatus
            },
            "completed_revenue": (
                await self.order_repository.get_completed_revenue()
            ).quantize(CENT),
        }
