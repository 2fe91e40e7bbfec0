"""
Unit tests for the order lifecycle coordinator.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from kitchen_service.app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainValidationError,
    ExternalServiceError,
)
from kitchen_service.app.models.order import Order
from kitchen_service.app.services.order_service import (
    OrderService,
    is_gateway_intent,
    stamp_status,
)
from kitchen_service.app.services.payment_gateway import Refund

PLACED_AT = "2026-03-01T12:00:00+00:00"


def make_order(**overrides) -> Order:
    fields = {
        "id": 1,
        "order_number": "VK000001",
        "user_id": 7,
        "status": "placed",
        "payment_status": "paid",
        "total_amount": Decimal("30.97"),
        "delivery_type": "pickup",
        "contact_phone": "5551234",
        "status_timestamps": {"placed": PLACED_AT},
        "payment_method": "stripe",
        "payment_intent_id": "pi_123",
        "refund_requested": False,
        "is_deleted_by_customer": False,
        "is_deleted_by_admin": False,
        "items": [],
    }
    fields.update(overrides)
    return Order(**fields)


def merged(order: Order, values: dict) -> Order:
    """The row apply_transition would return after writing ``values``"""
    for key, value in values.items():
        setattr(order, key, value)
    return order


class TestStampStatus:
    def test_first_write_wins(self):
        stamped = stamp_status({"placed": PLACED_AT}, "placed", at="2026-03-02T00:00:00+00:00")

        assert stamped == {"placed": PLACED_AT}

    def test_returns_copy(self):
        original = {"placed": PLACED_AT}

        stamped = stamp_status(original, "preparing")

        assert "preparing" in stamped
        assert original == {"placed": PLACED_AT}

    def test_gateway_intent_prefix(self):
        assert is_gateway_intent("pi_3Nabc")
        assert not is_gateway_intent("sim_VK000001")
        assert not is_gateway_intent(None)


class TestOrderService:
    """Test cases for OrderService transitions with a mocked repository."""

    @pytest.fixture
    def mock_session(self):
        return Mock(spec=AsyncSession)

    @pytest.fixture
    def payment_gateway(self):
        return AsyncMock()

    @pytest.fixture
    def fanout(self):
        fanout = Mock()
        fanout.status_updated.return_value = ["status-effect"]
        fanout.cancelled.return_value = ["cancel-effect"]
        fanout.payment_confirmed.return_value = ["paid-effect"]
        return fanout

    @pytest.fixture
    def order_service(self, mock_session, payment_gateway, fanout, test_settings):
        service = OrderService(mock_session, payment_gateway, fanout, test_settings)
        service.order_repository = Mock()
        service.order_repository.apply_transition = AsyncMock(
            side_effect=lambda order_id, expected, values, **kwargs: merged(
                service._current, values
            )
        )
        return service

    def given_order(self, service, **overrides) -> Order:
        order = make_order(**overrides)
        service._current = order
        service.order_repository.get_order_by_id = AsyncMock(return_value=order)
        return order

    # Admin status updates

    @pytest.mark.asyncio
    async def test_admin_cannot_cancel(self, order_service):
        # Arrange
        self.given_order(order_service, status="preparing")

        # Act & Assert
        with pytest.raises(AuthorizationError) as exc_info:
            await order_service.update_order_status(1, "cancelled")

        assert exc_info.value.context["current_status"] == "preparing"
        order_service.order_repository.apply_transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backward_move_is_rejected(self, order_service):
        self.given_order(order_service, status="ready")

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(1, "preparing")

        order_service.order_repository.apply_transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_status_is_rejected(self, order_service):
        self.given_order(order_service, status="preparing")

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(1, "preparing")

    @pytest.mark.asyncio
    async def test_pickup_cannot_go_out_for_delivery(self, order_service):
        self.given_order(order_service, status="ready", delivery_type="pickup")

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(1, "out-for-delivery")

    @pytest.mark.asyncio
    async def test_unpaid_order_cannot_be_advanced(self, order_service):
        self.given_order(order_service, status="pending", payment_status="pending")

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(1, "preparing")

    @pytest.mark.parametrize("terminal", ["completed", "cancelled"])
    @pytest.mark.asyncio
    async def test_terminal_order_cannot_be_updated(self, order_service, terminal):
        self.given_order(order_service, status=terminal)

        with pytest.raises(ConflictError):
            await order_service.update_order_status(1, "completed")

    @pytest.mark.asyncio
    async def test_unknown_target_is_rejected(self, order_service):
        self.given_order(order_service)

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(1, "teleported")

    @pytest.mark.asyncio
    async def test_ready_stamps_and_sets_eta(self, order_service, fanout):
        # Arrange
        self.given_order(
            order_service,
            status="preparing",
            status_timestamps={"placed": PLACED_AT, "preparing": PLACED_AT},
        )

        # Act
        result = await order_service.update_order_status(1, "ready", notes="Bag 4")

        # Assert
        order_id, expected, values = order_service.order_repository.apply_transition.await_args.args
        assert (order_id, expected) == (1, "preparing")
        assert values["status"] == "ready"
        assert values["notes"] == "Bag 4"
        assert values["estimated_delivery_time"] is not None
        assert values["status_timestamps"]["placed"] == PLACED_AT
        assert "ready" in values["status_timestamps"]
        assert result.side_effects == ["status-effect"]
        assert fanout.status_updated.call_args.args[1] == "preparing"

    @pytest.mark.asyncio
    async def test_delivery_order_can_skip_to_completed(self, order_service):
        self.given_order(order_service, status="ready", delivery_type="delivery")

        result = await order_service.update_order_status(1, "completed")

        assert result.order.status == "completed"
        assert result.order.actual_delivery_time is not None

    # Customer cancellation

    @pytest.mark.asyncio
    async def test_only_owner_can_cancel(self, order_service):
        self.given_order(order_service, user_id=7)

        with pytest.raises(AuthorizationError):
            await order_service.cancel_order(1, user_id=8)

    @pytest.mark.asyncio
    async def test_cancel_pending_order_has_no_refund(self, order_service, payment_gateway):
        self.given_order(order_service, status="pending", payment_status="pending")

        result = await order_service.cancel_order(1, user_id=7, reason="Changed my mind")

        payment_gateway.create_refund.assert_not_awaited()
        assert result.order.status == "cancelled"
        assert result.order.payment_status == "pending"
        assert result.details == {"refunded": False, "refund_error": None}

    @pytest.mark.asyncio
    async def test_cancel_paid_order_refunds_through_gateway(
        self, order_service, payment_gateway, fanout
    ):
        # Arrange
        self.given_order(order_service)
        payment_gateway.create_refund.return_value = Refund(
            id="re_1", amount=Decimal("30.97"), status="succeeded"
        )

        # Act
        result = await order_service.cancel_order(1, user_id=7)

        # Assert
        payment_gateway.create_refund.assert_awaited_once()
        assert result.order.payment_status == "refunded"
        assert result.order.refund_id == "re_1"
        kwargs = order_service.order_repository.apply_transition.await_args.kwargs
        assert kwargs["expected_payment_status"] == "paid"
        assert fanout.cancelled.call_args.kwargs["refund_amount"] == Decimal("30.97")

    @pytest.mark.asyncio
    async def test_refund_is_recorded_when_kitchen_moves_order_meanwhile(
        self, order_service, payment_gateway
    ):
        # Arrange
        order = self.given_order(order_service)
        payment_gateway.create_refund.return_value = Refund(
            id="re_1", amount=Decimal("30.97"), status="succeeded"
        )

        def kitchen_wins_first_write(order_id, expected, values, **kwargs):
            if expected == "placed":
                order.status = "preparing"
                raise ConflictError("Order was modified concurrently")
            return merged(order, values)

        order_service.order_repository.apply_transition.side_effect = (
            kitchen_wins_first_write
        )

        # Act
        result = await order_service.cancel_order(1, user_id=7)

        # Assert
        assert order_service.order_repository.apply_transition.await_count == 2
        retry = order_service.order_repository.apply_transition.await_args
        assert retry.args[1] == "preparing"
        assert retry.kwargs["expected_payment_status"] == "paid"
        assert result.order.status == "cancelled"
        assert result.order.payment_status == "refunded"
        assert result.order.refund_id == "re_1"
        payment_gateway.create_refund.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unrecordable_refund_raises_conflict(self, order_service, payment_gateway):
        # Arrange
        order = self.given_order(order_service)
        payment_gateway.create_refund.return_value = Refund(
            id="re_1", amount=Decimal("30.97"), status="succeeded"
        )

        def refunded_elsewhere(order_id, expected, values, **kwargs):
            order.payment_status = "refunded"
            raise ConflictError("Order was modified concurrently")

        order_service.order_repository.apply_transition.side_effect = refunded_elsewhere

        # Act & Assert
        with pytest.raises(ConflictError) as exc_info:
            await order_service.cancel_order(1, user_id=7)

        assert exc_info.value.context["refund_id"] == "re_1"
        assert order_service.order_repository.apply_transition.await_count == 1

    @pytest.mark.asyncio
    async def test_refund_failure_still_cancels(self, order_service, payment_gateway):
        # Arrange
        self.given_order(order_service)
        payment_gateway.create_refund.side_effect = ExternalServiceError("Refund declined")

        # Act
        result = await order_service.cancel_order(1, user_id=7)

        # Assert
        assert result.order.status == "cancelled"
        assert result.order.payment_status == "paid"
        assert result.details["refunded"] is False
        assert result.details["refund_error"] == "Refund declined"

    @pytest.mark.asyncio
    async def test_simulated_payment_gets_synthetic_refund(
        self, order_service, payment_gateway
    ):
        self.given_order(
            order_service, payment_method="simulated", payment_intent_id="sim_VK000001"
        )

        result = await order_service.cancel_order(1, user_id=7)

        payment_gateway.create_refund.assert_not_awaited()
        assert result.order.refund_id == "synthetic_VK000001"
        assert result.order.refund_amount == Decimal("30.97")

    @pytest.mark.asyncio
    async def test_cancel_terminal_order_conflicts(self, order_service):
        self.given_order(order_service, status="completed")

        with pytest.raises(ConflictError):
            await order_service.cancel_order(1, user_id=7)

    # Payment confirmation

    @pytest.mark.asyncio
    async def test_mark_paid_converges_when_other_path_won(self, order_service):
        # Arrange
        pending = make_order(status="pending", payment_status="pending", payment_intent_id=None)
        already_paid = make_order(payment_intent_id="pi_123")
        order_service.order_repository.apply_transition = AsyncMock(
            side_effect=ConflictError("Order was modified concurrently")
        )
        order_service.order_repository.get_order_by_id = AsyncMock(return_value=already_paid)
        order_service.payment_gateway.retrieve_payment_method.return_value = Mock(
            type="card", card_brand="visa", wallet_type=None
        )

        # Act
        result = await order_service.mark_paid(pending, "pi_123", payment_method_id="pm_1")

        # Assert
        assert result.details == {"already_confirmed": True}
        assert result.side_effects == []

    @pytest.mark.asyncio
    async def test_mark_paid_with_different_intent_conflicts(self, order_service):
        already_paid = make_order(payment_intent_id="pi_other")

        with pytest.raises(ConflictError):
            await order_service.mark_paid(already_paid, "pi_123")

    @pytest.mark.asyncio
    async def test_simulation_disabled_outside_development(
        self, mock_session, payment_gateway, fanout, test_settings
    ):
        settings = test_settings.model_copy(update={"ENVIRONMENT": "production"})
        service = OrderService(mock_session, payment_gateway, fanout, settings)

        with pytest.raises(AuthorizationError):
            await service.simulate_payment(1, user_id=7)
