"""
Payment gateway adapter.

``PaymentGateway`` is the interface the order services depend on;
``StripePaymentGateway`` implements it with the Stripe SDK. SDK calls are
blocking, so they run in the threadpool.
"""

import json
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..core.exceptions import ExternalServiceError, WebhookSignatureError
from ..utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.payment_gateway")

# Stripe caps metadata values at 500 characters
METADATA_VALUE_LIMIT = 500
ORDER_DATA_CHUNKS_KEY = "order_data_chunks"
ORDER_DATA_KEY_PREFIX = "order_data_"


class PaymentIntent(BaseModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    amount: Decimal
    currency: str
    metadata: Dict[str, str] = {}
    payment_method: Optional[str] = None
    last_payment_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class Refund(BaseModel):
    id: str
    amount: Decimal
    status: str


class PaymentMethodDetails(BaseModel):
    type: Optional[str] = None
    card_brand: Optional[str] = None
    wallet_type: Optional[str] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    data_object: Dict[str, Any] = {}


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def encode_order_metadata(order_data: Dict[str, Any]) -> Dict[str, str]:
    """Split a JSON order payload across metadata keys within the value limit"""
    encoded = json.dumps(order_data, separators=(",", ":"), default=str)
    chunks = [
        encoded[i : i + METADATA_VALUE_LIMIT]
        for i in range(0, len(encoded), METADATA_VALUE_LIMIT)
    ]
    metadata = {f"{ORDER_DATA_KEY_PREFIX}{i}": chunk for i, chunk in enumerate(chunks)}
    metadata[ORDER_DATA_CHUNKS_KEY] = str(len(chunks))
    return metadata


def decode_order_metadata(metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Reassemble an order payload written by ``encode_order_metadata``"""
    chunk_count = metadata.get(ORDER_DATA_CHUNKS_KEY)
    if not chunk_count:
        return None
    try:
        encoded = "".join(
            metadata[f"{ORDER_DATA_KEY_PREFIX}{i}"] for i in range(int(chunk_count))
        )
        return json.loads(encoded)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Malformed order metadata: {e}") from e


class PaymentGateway(ABC):
    """Operations the order services need from the payment processor"""

    @abstractmethod
    async def create_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent: ...

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> PaymentIntent: ...

    @abstractmethod
    async def verify_webhook_signature(
        self, raw_body: bytes, signature_header: Optional[str]
    ) -> WebhookEvent: ...

    @abstractmethod
    async def create_refund(
        self, intent_id: str, reason: str, metadata: Dict[str, str]
    ) -> Refund: ...

    @abstractmethod
    async def retrieve_payment_method(self, method_id: str) -> PaymentMethodDetails: ...


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripePaymentGateway(PaymentGateway):
    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str]):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ExternalServiceError("Payment processor is not configured")
        return self.api_key

    async def _call(self, operation: str, func: Any, **kwargs: Any) -> Any:
        api_key = self._require_api_key()
        try:
            return await run_in_threadpool(func, api_key=api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                f"Stripe {operation} failed",
                extra={
                    "operation": operation,
                    "error_type": type(e).__name__,
                    "error_message": getattr(e, "user_message", None) or str(e),
                },
            )
            raise ExternalServiceError(
                f"Payment processor error during {operation}", operation=operation
            ) from e

    @staticmethod
    def _to_intent(intent: Any) -> PaymentIntent:
        last_error = getattr(intent, "last_payment_error", None)
        payment_method = getattr(intent, "payment_method", None)
        if payment_method is not None and not isinstance(payment_method, str):
            payment_method = payment_method.id
        return PaymentIntent(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount=from_minor_units(intent.amount),
            currency=intent.currency,
            metadata={k: str(v) for k, v in _as_dict(intent.metadata).items()},
            payment_method=payment_method,
            last_payment_error=getattr(last_error, "message", None) if last_error else None,
        )

    async def create_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        intent = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return self._to_intent(intent)

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        intent = await self._call(
            "retrieve_intent", stripe.PaymentIntent.retrieve, id=intent_id
        )
        return self._to_intent(intent)

    async def verify_webhook_signature(
        self, raw_body: bytes, signature_header: Optional[str]
    ) -> WebhookEvent:
        if not self.webhook_secret or not signature_header:
            raise WebhookSignatureError("Missing webhook signature")
        try:
            await run_in_threadpool(
                stripe.Webhook.construct_event,
                raw_body,
                signature_header,
                self.webhook_secret,
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise WebhookSignatureError("Webhook signature verification failed") from e

        payload = json.loads(raw_body)
        return WebhookEvent(
            id=payload["id"],
            type=payload["type"],
            data_object=payload.get("data", {}).get("object", {}),
        )

    async def create_refund(
        self, intent_id: str, reason: str, metadata: Dict[str, str]
    ) -> Refund:
        refund = await self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=intent_id,
            reason=reason,
            metadata=metadata,
        )
        return Refund(
            id=refund.id, amount=from_minor_units(refund.amount), status=refund.status
        )

    async def retrieve_payment_method(self, method_id: str) -> PaymentMethodDetails:
        method = await self._call(
            "retrieve_payment_method", stripe.PaymentMethod.retrieve, id=method_id
        )
        details = PaymentMethodDetails(type=method.type)
        card = getattr(method, "card", None)
        if method.type == "card" and card is not None:
            details.card_brand = getattr(card, "brand", None)
            wallet = getattr(card, "wallet", None)
            if wallet is not None:
                details.wallet_type = getattr(wallet, "type", None)
        return details
