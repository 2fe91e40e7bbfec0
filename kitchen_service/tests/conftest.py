"""
Pytest configuration and fixtures for Kitchen Service tests.
"""

import json
import os
import tempfile
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
import pytest

# Set up test environment before the settings singleton is created
_TEST_DB_DIR = tempfile.mkdtemp(prefix="kitchen_service_tests_")
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "kitchen-test-secret"
os.environ["KITCHEN_DATABASE_URL"] = (
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'kitchen.db')}"
)

from kitchen_service.app.api.deps import get_async_session  # noqa: E402
from kitchen_service.app.core.database import KitchenServiceDatabaseManager  # noqa: E402
from kitchen_service.app.core.exceptions import (  # noqa: E402
    ExternalServiceError,
    WebhookSignatureError,
)
from kitchen_service.app.core.settings import get_settings  # noqa: E402
from kitchen_service.app.models.dish import Dish  # noqa: E402
from kitchen_service.app.main import create_app  # noqa: E402
from kitchen_service.app.realtime import (  # noqa: E402
    RealtimeEventPublisher,
    RealtimeGateway,
)
from kitchen_service.app.services.email_service import EmailService  # noqa: E402
from kitchen_service.app.services.fanout import OrderFanout  # noqa: E402
from kitchen_service.app.services.notification_service import (  # noqa: E402
    NotificationService,
)
from kitchen_service.app.services.order_service import OrderService  # noqa: E402
from kitchen_service.app.services.payment_gateway import (  # noqa: E402
    PaymentGateway,
    PaymentIntent,
    PaymentMethodDetails,
    Refund,
    WebhookEvent,
)
from kitchen_service.app.services.payment_service import PaymentService  # noqa: E402
from kitchen_service.app.services.side_effects import SideEffectDispatcher  # noqa: E402
from kitchen_service.app.utils.jwt_handler import JWTHandler  # noqa: E402

VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentGateway(PaymentGateway):
    """In-memory payment processor double"""

    def __init__(self) -> None:
        self.intents: Dict[str, PaymentIntent] = {}
        self.refund_calls: List[Dict[str, Any]] = []
        self.fail_refunds = False
        self._counter = 0

    async def create_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        self._counter += 1
        intent_id = f"pi_test_{self._counter}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            metadata=metadata,
            payment_method="pm_card_visa",
        )
        self.intents[intent_id] = intent
        return intent

    def succeed(self, intent_id: str) -> PaymentIntent:
        intent = self.intents[intent_id].model_copy(update={"status": "succeeded"})
        self.intents[intent_id] = intent
        return intent

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        if intent_id not in self.intents:
            raise ExternalServiceError("No such payment intent")
        return self.intents[intent_id]

    async def verify_webhook_signature(
        self, raw_body: bytes, signature_header: Optional[str]
    ) -> WebhookEvent:
        if signature_header != VALID_SIGNATURE:
            raise WebhookSignatureError("Webhook signature verification failed")
        payload = json.loads(raw_body)
        return WebhookEvent(
            id=payload["id"], type=payload["type"], data_object=payload["data"]["object"]
        )

    async def create_refund(
        self, intent_id: str, reason: str, metadata: Dict[str, str]
    ) -> Refund:
        self.refund_calls.append(
            {"intent_id": intent_id, "reason": reason, "metadata": metadata}
        )
        if self.fail_refunds:
            raise ExternalServiceError("Refund declined")
        intent = self.intents.get(intent_id)
        return Refund(
            id=f"re_test_{len(self.refund_calls)}",
            amount=intent.amount if intent else Decimal("0.00"),
            status="succeeded",
        )

    async def retrieve_payment_method(self, method_id: str) -> PaymentMethodDetails:
        return PaymentMethodDetails(type="card", card_brand="visa")


def webhook_body(event_id: str, event_type: str, intent: Dict[str, Any]) -> bytes:
    return json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": intent}}
    ).encode()


def intent_object(intent: PaymentIntent, **overrides: Any) -> Dict[str, Any]:
    """Webhook ``data.object`` for a fake intent"""
    obj = {
        "id": intent.id,
        "amount": int(intent.amount * 100),
        "currency": intent.currency,
        "status": intent.status,
        "metadata": dict(intent.metadata),
        "payment_method": intent.payment_method,
    }
    obj.update(overrides)
    return obj


@pytest.fixture(scope="session")
def test_settings():
    """Get test settings."""
    return get_settings()


@pytest.fixture(scope="session")
def jwt_handler(test_settings) -> JWTHandler:
    return JWTHandler(secret_key=test_settings.SECRET_KEY, algorithm=test_settings.ALGORITHM)


@pytest.fixture
def make_token(jwt_handler):
    def _make_token(user_id: int, role: str = "user", email: str = "diner@example.com") -> str:
        return jwt_handler.encode_token(
            {"user_id": user_id, "email": email, "username": f"user{user_id}", "roles": [role]}
        )

    return _make_token


@pytest.fixture
async def db_manager(tmp_path) -> AsyncGenerator[KitchenServiceDatabaseManager, None]:
    """Fresh SQLite database per test."""
    manager = KitchenServiceDatabaseManager(
        f"sqlite+aiosqlite:///{tmp_path / 'kitchen.db'}"
    )
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
async def db_session(db_manager) -> AsyncGenerator[Any, None]:
    async with db_manager.async_session_maker() as session:
        yield session


@pytest.fixture
async def dishes(db_manager) -> Dict[str, Dish]:
    """Seed the catalog: two available dishes and one sold out."""
    async with db_manager.async_session_maker() as session:
        seeded = {
            "pad_thai": Dish(name="Pad Thai", price=Decimal("12.99"), availability=True),
            "spring_rolls": Dish(
                name="Spring Rolls", price=Decimal("4.99"), availability=True
            ),
            "soup": Dish(name="Seasonal Soup", price=Decimal("6.50"), availability=False),
        }
        session.add_all(seeded.values())
        await session.commit()
        return seeded


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def realtime_gateway(jwt_handler) -> RealtimeGateway:
    return RealtimeGateway(jwt_handler)


@pytest.fixture
def publisher(realtime_gateway) -> RealtimeEventPublisher:
    return RealtimeEventPublisher(realtime_gateway)


@pytest.fixture
def notification_service(db_manager, publisher) -> NotificationService:
    return NotificationService(db_manager.async_session_maker, publisher)


@pytest.fixture
def fanout(notification_service, publisher, test_settings) -> OrderFanout:
    # No SendGrid key in tests, so emails are skipped
    return OrderFanout(notification_service, publisher, EmailService(test_settings))


@pytest.fixture
def dispatcher() -> SideEffectDispatcher:
    return SideEffectDispatcher(timeout_seconds=5)


@pytest.fixture
def order_service(db_session, payment_gateway, fanout, test_settings) -> OrderService:
    return OrderService(db_session, payment_gateway, fanout, test_settings)


@pytest.fixture
def payment_service(
    db_session, payment_gateway, fanout, test_settings, order_service
) -> PaymentService:
    return PaymentService(
        db_session, payment_gateway, fanout, test_settings, order_service
    )


@pytest.fixture
def app(db_manager, payment_gateway, notification_service, fanout, dispatcher):
    """Application wired to the per-test database and fakes."""
    application = create_app()
    application.state.payment_gateway = payment_gateway
    application.state.notification_service = notification_service
    application.state.fanout = fanout
    application.state.dispatcher = dispatcher

    async def override_session():
        async with db_manager.async_session_maker() as session:
            yield session

    application.dependency_overrides[get_async_session] = override_session
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    # ASGITransport runs background tasks before returning the response
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
