"""
Payment reconciliation: intents, webhook events and refunds.

Webhook events go through the payment event table before anything else
happens. A processed or ignored event id is acknowledged without repeating
its side effects; a failed (or stale in-flight) one is reclaimed and retried
on redelivery.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    ConflictError,
    DomainValidationError,
    ExternalServiceError,
    NotFoundError,
    WebhookProcessingError,
)
from ..core.settings import KitchenServiceSettings
from ..models.base import utc_now
from ..models.order import Order, OrderStatus, PaymentStatus
from ..models.payment_event import PaymentEvent, PaymentEventOutcome
from ..repository.order_repository import OrderRepository
from ..repository.payment_event_repository import PaymentEventRepository
from ..schemas.order import CreateOrderRequest
from ..utils.logging import setup_kitchen_logging
from .fanout import OrderFanout
from .order_service import (
    OrderService,
    is_gateway_intent,
    snapshot,
)
from .payment_gateway import (
    PaymentGateway,
    PaymentIntent,
    WebhookEvent,
    decode_order_metadata,
    encode_order_metadata,
    from_minor_units,
)
from .side_effects import SideEffect, TransitionResult

logger = setup_kitchen_logging("kitchen_service.payments")

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

PROCESSING = PaymentEventOutcome.PROCESSING.value
PROCESSED = PaymentEventOutcome.PROCESSED.value
IGNORED = PaymentEventOutcome.IGNORED.value
FAILED = PaymentEventOutcome.FAILED.value


@dataclass
class WebhookResult:
    event_id: str
    outcome: str
    side_effects: List[SideEffect] = field(default_factory=list)
    duplicate: bool = False


class PaymentService:
    def __init__(
        self,
        session: AsyncSession,
        payment_gateway: PaymentGateway,
        fanout: OrderFanout,
        settings: KitchenServiceSettings,
        order_service: Optional[OrderService] = None,
    ):
        self.session = session
        self.payment_gateway = payment_gateway
        self.fanout = fanout
        self.settings = settings
        self.order_service = order_service or OrderService(
            session, payment_gateway, fanout, settings
        )
        self.order_repository = OrderRepository(session)
        self.event_repository = PaymentEventRepository(session)

    # =====================================================
    # PAYMENT INTENTS
    # =====================================================

    async def create_payment_intent(self, order_id: int, user_id: int) -> PaymentIntent:
        """Order-first: attach a new intent to an existing pending order"""
        order = await self.order_service.get_order(order_id, user_id, "customer")
        if order.payment_status == PaymentStatus.PAID.value:
            raise ConflictError("Order is already paid", order_id=order.id)
        if order.status != OrderStatus.PENDING.value:
            raise ConflictError(
                "Order is not awaiting payment",
                order_id=order.id,
                current_status=order.status,
            )

        intent = await self.payment_gateway.create_intent(
            amount=order.total_amount,
            currency=self.settings.PAYMENT_CURRENCY,
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": str(order.user_id),
            },
        )
        await self.order_repository.apply_transition(
            order.id,
            OrderStatus.PENDING.value,
            {"payment_intent_id": intent.id},
        )

        logger.info(
            "Payment intent created.",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "payment_intent_id": intent.id,
                "amount": str(intent.amount),
            },
        )
        return intent

    async def create_payment_intent_for_unsaved_order(
        self,
        user_id: int,
        request: CreateOrderRequest,
        customer_email: Optional[str] = None,
    ) -> Tuple[PaymentIntent, Decimal]:
        """Payment-first: price the payload and carry it in the intent metadata.

        Nothing is persisted; the order is built when the success webhook
        arrives.
        """
        items, total_amount = await self.order_service.price_items(
            [item.model_dump() for item in request.items]
        )
        order_data: Dict[str, Any] = {
            "user_id": user_id,
            "customer_email": customer_email or request.customer_email,
            "items": items,
            "total_amount": total_amount,
            "delivery_type": request.delivery_type,
            "delivery_address": (
                request.delivery_address.model_dump()
                if request.delivery_address
                else None
            ),
            "contact_phone": request.contact_phone,
            "special_instructions": request.special_instructions,
        }
        metadata = encode_order_metadata(order_data)
        metadata["user_id"] = str(user_id)

        intent = await self.payment_gateway.create_intent(
            amount=total_amount,
            currency=self.settings.PAYMENT_CURRENCY,
            metadata=metadata,
        )
        logger.info(
            "Payment intent created for unsaved order.",
            extra={
                "user_id": str(user_id),
                "payment_intent_id": intent.id,
                "amount": str(total_amount),
                "metadata_chunks": metadata["order_data_chunks"],
            },
        )
        return intent, total_amount

    # =====================================================
    # WEBHOOKS
    # =====================================================

    async def handle_webhook(
        self, raw_body: bytes, signature_header: Optional[str]
    ) -> WebhookResult:
        """Verify, deduplicate and apply one payment processor event.

        Raises WebhookSignatureError before the event table is touched, and
        WebhookProcessingError after recording a failed outcome.
        """
        event = await self.payment_gateway.verify_webhook_signature(
            raw_body, signature_header
        )

        short_circuit = await self._claim_event(event)
        if short_circuit is not None:
            logger.info(
                "Duplicate webhook event acknowledged",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "outcome": short_circuit.outcome,
                },
            )
            return short_circuit

        try:
            outcome, side_effects, metadata, error = await asyncio.wait_for(
                self._apply_event(event),
                timeout=self.settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            await self.session.rollback()
            await self.event_repository.finalize(event.id, FAILED, error=message)
            logger.error(
                "Webhook event processing failed",
                exc_info=True,
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "error_type": type(e).__name__,
                },
            )
            raise WebhookProcessingError(
                "Webhook event processing failed", event_id=event.id
            ) from e

        await self.event_repository.finalize(
            event.id, outcome, error=error, metadata=metadata
        )
        logger.info(
            "Webhook event processed",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "outcome": outcome,
                "order_id": metadata.get("order_id"),
            },
        )
        return WebhookResult(event_id=event.id, outcome=outcome, side_effects=side_effects)

    def _is_stale(self, record: PaymentEvent) -> bool:
        age = utc_now() - (record.updated_at or record.created_at)
        return age > timedelta(seconds=self.settings.WEBHOOK_STALE_AFTER_SECONDS)

    async def _claim_event(self, event: WebhookEvent) -> Optional[WebhookResult]:
        """Take ownership of an event id, or return the ack to send instead"""
        record = await self.event_repository.get_by_event_id(event.id)
        if record is None:
            try:
                await self.event_repository.record_processing(event.id, event.type)
                return None
            except IntegrityError:
                # Concurrent delivery of the same event inserted first
                await self.session.rollback()
                return WebhookResult(event.id, PROCESSING, duplicate=True)

        if record.outcome in (PROCESSED, IGNORED):
            return WebhookResult(event.id, record.outcome, duplicate=True)
        if record.outcome == PROCESSING and not self._is_stale(record):
            return WebhookResult(event.id, PROCESSING, duplicate=True)

        if await self.event_repository.reclaim_for_retry(record):
            logger.info(
                "Retrying webhook event",
                extra={
                    "event_id": event.id,
                    "previous_outcome": record.outcome,
                    "retry_count": record.retry_count + 1,
                },
            )
            return None
        return WebhookResult(event.id, PROCESSING, duplicate=True)

    async def _apply_event(
        self, event: WebhookEvent
    ) -> Tuple[str, List[SideEffect], Dict[str, Any], Optional[str]]:
        """Returns (outcome, side effects, record metadata, note)"""
        if event.type == PAYMENT_SUCCEEDED:
            try:
                result = await self._payment_succeeded(event.data_object)
            except ConflictError as e:
                # Order moved on (e.g. cancelled before payment landed)
                return IGNORED, [], self._intent_metadata(event.data_object), e.message
            if result is None:
                return IGNORED, [], {}, "No order reference in payment metadata"
            return (
                PROCESSED,
                result.side_effects,
                self._order_metadata(result.order),
                None,
            )

        if event.type == PAYMENT_FAILED:
            return await self._payment_failed(event.data_object)

        logger.debug(
            "Unhandled webhook event type", extra={"event_type": event.type}
        )
        return IGNORED, [], {}, None

    @staticmethod
    def _order_metadata(order: Order) -> Dict[str, Any]:
        return {
            "order_id": order.id,
            "user_id": order.user_id,
            "amount": order.total_amount,
        }

    @staticmethod
    def _intent_metadata(intent: Dict[str, Any]) -> Dict[str, Any]:
        metadata = intent.get("metadata") or {}
        return {
            "order_id": int(metadata["order_id"]) if metadata.get("order_id") else None,
            "user_id": int(metadata["user_id"]) if metadata.get("user_id") else None,
            "amount": (
                from_minor_units(intent["amount"])
                if intent.get("amount") is not None
                else None
            ),
        }

    async def _payment_succeeded(
        self, intent: Dict[str, Any]
    ) -> Optional[TransitionResult]:
        metadata = intent.get("metadata") or {}
        payment_intent_id = intent["id"]

        if metadata.get("order_id"):
            order = await self.order_repository.get_order_by_id(int(metadata["order_id"]))
            if order is None:
                raise NotFoundError(
                    "Order referenced by payment not found",
                    order_id=metadata["order_id"],
                )
            return await self.order_service.mark_paid(
                order,
                payment_intent_id,
                payment_method_id=intent.get("payment_method"),
            )

        order_data = decode_order_metadata(metadata)
        if order_data is None:
            logger.warning(
                "Payment succeeded without order reference",
                extra={"payment_intent_id": payment_intent_id},
            )
            return None
        return await self.order_service.create_paid_order(order_data, payment_intent_id)

    async def _payment_failed(
        self, intent: Dict[str, Any]
    ) -> Tuple[str, List[SideEffect], Dict[str, Any], Optional[str]]:
        metadata = intent.get("metadata") or {}
        payment_intent_id = intent["id"]
        error_message = (intent.get("last_payment_error") or {}).get("message")
        record_metadata = self._intent_metadata(intent)

        if metadata.get("order_id"):
            order = await self.order_repository.get_order_by_id(int(metadata["order_id"]))
            if order is None:
                raise NotFoundError(
                    "Order referenced by payment not found",
                    order_id=metadata["order_id"],
                )
            if order.status != OrderStatus.PENDING.value:
                return IGNORED, [], record_metadata, f"Order is already {order.status}"

            updated = await self.order_repository.apply_transition(
                order.id,
                OrderStatus.PENDING.value,
                {
                    "payment_status": PaymentStatus.FAILED.value,
                    "payment_intent_id": payment_intent_id,
                },
                expected_payment_status=order.payment_status,
            )
            logger.warning(
                "Order payment failed.",
                extra={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "payment_intent_id": payment_intent_id,
                },
            )
            return (
                PROCESSED,
                self.fanout.payment_failed(
                    updated.user_id, snapshot(updated), error_message, payment_intent_id
                ),
                record_metadata,
                error_message,
            )

        # Payment-first: nothing was persisted, only tell the user
        if not metadata.get("user_id"):
            return IGNORED, [], record_metadata, "No user reference in payment metadata"
        return (
            PROCESSED,
            self.fanout.payment_failed(
                int(metadata["user_id"]), None, error_message, payment_intent_id
            ),
            record_metadata,
            error_message,
        )

    # =====================================================
    # REFUNDS
    # =====================================================

    async def request_refund(
        self, order_id: int, user_id: int, reason: str
    ) -> TransitionResult:
        """Customer asks for a refund; an admin executes it later"""
        order = await self.order_service.get_order(order_id, user_id, "customer")
        context = {"order_id": order.id, "payment_status": order.payment_status}
        if order.payment_status == PaymentStatus.REFUNDED.value:
            raise ConflictError("Order has already been refunded", **context)
        if order.payment_status != PaymentStatus.PAID.value:
            raise DomainValidationError("Only paid orders can be refunded", **context)
        if order.refund_requested:
            raise ConflictError("Refund has already been requested", **context)

        updated = await self.order_repository.apply_transition(
            order.id,
            order.status,
            {
                "refund_requested": True,
                "refund_reason": reason,
                "refund_requested_at": utc_now(),
            },
            expected_payment_status=PaymentStatus.PAID.value,
        )
        logger.info(
            "Refund requested.",
            extra={"order_id": str(order.id), "order_number": order.order_number},
        )
        return TransitionResult(
            order=updated,
            side_effects=self.fanout.refund_requested(snapshot(updated), reason),
        )

    async def process_refund(
        self, order_id: int, reason: Optional[str] = None
    ) -> TransitionResult:
        """Admin refund; sets refunded and cancelled in the same write.

        Unlike refund-on-cancel, a gateway failure here is a hard failure and
        nothing is written.
        """
        order = await self.order_service.load_order(order_id)
        context = {
            "order_id": order.id,
            "current_status": order.status,
            "payment_status": order.payment_status,
        }
        if order.payment_status == PaymentStatus.REFUNDED.value:
            raise ConflictError("Order has already been refunded", **context)
        if order.payment_status != PaymentStatus.PAID.value:
            raise DomainValidationError("Only paid orders can be refunded", **context)

        refund_reason = reason or order.refund_reason
        if is_gateway_intent(order.payment_intent_id):
            refund = await self.payment_gateway.create_refund(
                order.payment_intent_id,  # type: ignore[arg-type]
                reason="requested_by_customer",
                metadata={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "refunded_by": "admin",
                },
            )
            refund_id, refund_amount = refund.id, refund.amount
        else:
            refund_id = f"synthetic_{order.order_number}"
            refund_amount = Decimal(order.total_amount)

        updated, previous_status = await self.order_service.record_refund(
            order,
            {
                "refund_id": refund_id,
                "refund_amount": refund_amount,
                "refund_reason": refund_reason,
            },
        )
        logger.info(
            "Refund processed.",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "refund_id": refund_id,
                "refund_amount": str(refund_amount),
            },
        )
        return TransitionResult(
            order=updated,
            side_effects=self.fanout.refund_processed(
                snapshot(updated),
                previous_status,
                refund_id=refund_id,
                refund_amount=refund_amount,
                reason=refund_reason,
            ),
        )

    # =====================================================
    # PAYMENT QUERIES
    # =====================================================

    async def get_payment_details(
        self, order_id: int, user_id: int, user_role: Optional[str]
    ) -> Dict[str, Any]:
        order = await self.order_service.get_order(order_id, user_id, user_role)
        details: Dict[str, Any] = {
            "order_id": order.id,
            "order_number": order.order_number,
            "total_amount": order.total_amount,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "payment_method_type": order.payment_method_type,
            "card_brand": order.card_brand,
            "wallet_type": order.wallet_type,
            "payment_intent_id": order.payment_intent_id,
            "refund_id": order.refund_id,
            "refund_amount": order.refund_amount,
            "refund_requested": order.refund_requested,
            "intent_status": None,
        }
        if is_gateway_intent(order.payment_intent_id):
            try:
                intent = await self.payment_gateway.retrieve_intent(
                    order.payment_intent_id  # type: ignore[arg-type]
                )
                details["intent_status"] = intent.status
            except ExternalServiceError as e:
                logger.warning(
                    "Could not retrieve payment intent",
                    extra={"order_id": str(order.id), "error": str(e)},
                )
        return details

    async def verify_payment_status(self, order_id: int, user_id: int) -> TransitionResult:
        """Server-side check of the intent, confirming the order if it succeeded"""
        order = await self.order_service.get_order(order_id, user_id, "customer")
        if order.status != OrderStatus.PENDING.value or not is_gateway_intent(
            order.payment_intent_id
        ):
            return TransitionResult(
                order=order,
                details={
                    "verified": order.payment_status == PaymentStatus.PAID.value,
                    "intent_status": None,
                },
            )

        intent = await self.payment_gateway.retrieve_intent(
            order.payment_intent_id  # type: ignore[arg-type]
        )
        if not intent.succeeded:
            return TransitionResult(
                order=order,
                details={"verified": False, "intent_status": intent.status},
            )

        result = await self.order_service.mark_paid(
            order, intent.id, payment_method_id=intent.payment_method
        )
        result.details.update({"verified": True, "intent_status": intent.status})
        return result
