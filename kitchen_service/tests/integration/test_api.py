"""
Integration tests for the HTTP API.
"""

import pytest

from kitchen_service.tests.conftest import VALID_SIGNATURE, intent_object, webhook_body

CUSTOMER_ID = 7
ADMIN_ID = 1


@pytest.fixture
def customer_headers(make_token):
    return {"Authorization": f"Bearer {make_token(CUSTOMER_ID)}"}


@pytest.fixture
def admin_headers(make_token):
    return {"Authorization": f"Bearer {make_token(ADMIN_ID, role='admin', email='chef@example.com')}"}


@pytest.fixture
def order_payload(dishes):
    return {
        "items": [
            {"dish_id": dishes["pad_thai"].id, "quantity": 2},
            {"dish_id": dishes["spring_rolls"].id, "quantity": 1},
        ],
        "contact_phone": "5551234567",
    }


async def create_paid_order(client, headers, payload):
    created = await client.post("/api/v1/orders", json=payload, headers=headers)
    order_id = created.json()["order"]["id"]
    paid = await client.post(f"/api/v1/orders/{order_id}/simulate-payment", headers=headers)
    assert paid.status_code == 200
    return paid.json()["order"]


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_orders_require_token(self, client):
        response = await client.get("/api/v1/orders")

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "authentication_error"

    @pytest.mark.asyncio
    async def test_cookie_token_is_accepted(self, client, make_token):
        client.cookies.set("auth_token", make_token(CUSTOMER_ID))

        response = await client.get("/api/v1/orders")

        assert response.status_code == 200
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_admin_routes_reject_customers(self, client, customer_headers):
        response = await client.get("/api/v1/admin/stats", headers=customer_headers)

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "authorization_error"

    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["service"] == "kitchen_service"


class TestOrderFlow:
    @pytest.mark.asyncio
    async def test_create_order(self, client, customer_headers, order_payload):
        # Act
        response = await client.post(
            "/api/v1/orders", json=order_payload, headers=customer_headers
        )

        # Assert
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["total_amount"] == "30.97"
        assert order["status"] == "pending"
        assert order["order_number"] == "VK000001"
        assert order["status_timestamps"] == {}

    @pytest.mark.asyncio
    async def test_delivery_order_requires_address(self, client, customer_headers, order_payload):
        order_payload["delivery_type"] = "delivery"

        response = await client.post(
            "/api/v1/orders", json=order_payload, headers=customer_headers
        )

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unavailable_dish_is_400(self, client, customer_headers, dishes):
        payload = {
            "items": [{"dish_id": dishes["soup"].id, "quantity": 1}],
            "contact_phone": "5551234567",
        }

        response = await client.post("/api/v1/orders", json=payload, headers=customer_headers)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_full_kitchen_flow(
        self, client, customer_headers, admin_headers, order_payload
    ):
        # Arrange
        order = await create_paid_order(client, customer_headers, order_payload)
        assert list(order["status_timestamps"]) == ["placed"]

        # Act
        board = await client.get("/api/v1/admin/orders", headers=admin_headers)
        for target in ("preparing", "ready", "completed"):
            response = await client.put(
                f"/api/v1/orders/{order['id']}/status",
                json={"status": target},
                headers=admin_headers,
            )
            assert response.status_code == 200

        # Assert
        assert [o["id"] for o in board.json()["orders"]] == [order["id"]]
        final = (await client.get(f"/api/v1/orders/{order['id']}", headers=customer_headers)).json()
        assert final["status"] == "completed"
        assert list(final["status_timestamps"]) == ["placed", "preparing", "ready", "completed"]

        feed = (await client.get("/api/v1/notifications", headers=customer_headers)).json()
        types = {n["type"] for n in feed["notifications"]}
        assert {"order-placed", "payment-success", "kitchen-started", "ready-pickup", "delivered"} <= types

        stats = (await client.get("/api/v1/admin/stats", headers=admin_headers)).json()
        assert stats["orders_by_status"]["completed"] == 1
        assert stats["completed_revenue"] == "30.97"

    @pytest.mark.asyncio
    async def test_admin_cancel_is_forbidden(
        self, client, customer_headers, admin_headers, order_payload
    ):
        order = await create_paid_order(client, customer_headers, order_payload)

        response = await client.put(
            f"/api/v1/orders/{order['id']}/status",
            json={"status": "cancelled"},
            headers=admin_headers,
        )

        assert response.status_code == 403
        assert response.json()["error"]["details"]["current_status"] == "placed"

    @pytest.mark.asyncio
    async def test_customer_cannot_update_status(self, client, customer_headers, order_payload):
        order = await create_paid_order(client, customer_headers, order_payload)

        response = await client.put(
            f"/api/v1/orders/{order['id']}/status",
            json={"status": "preparing"},
            headers=customer_headers,
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cancel_simulated_order_refunds(
        self, client, customer_headers, order_payload
    ):
        order = await create_paid_order(client, customer_headers, order_payload)

        response = await client.put(
            f"/api/v1/orders/{order['id']}/cancel",
            json={"reason": "Ordered twice"},
            headers=customer_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Order cancelled and refunded"
        assert body["order"]["payment_status"] == "refunded"
        assert body["order"]["refund_id"] == f"synthetic_{order['order_number']}"

    @pytest.mark.asyncio
    async def test_other_customer_cannot_view_order(
        self, client, customer_headers, make_token, order_payload
    ):
        created = await client.post("/api/v1/orders", json=order_payload, headers=customer_headers)
        stranger = {"Authorization": f"Bearer {make_token(99)}"}

        response = await client.get(
            f"/api/v1/orders/{created.json()['order']['id']}", headers=stranger
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_hides_from_customer_only(
        self, client, customer_headers, admin_headers, order_payload
    ):
        created = await client.post("/api/v1/orders", json=order_payload, headers=customer_headers)
        order_id = created.json()["order"]["id"]
        await client.put(f"/api/v1/orders/{order_id}/cancel", headers=customer_headers)

        response = await client.delete(f"/api/v1/orders/{order_id}", headers=customer_headers)

        assert response.status_code == 200
        mine = (await client.get("/api/v1/orders", headers=customer_headers)).json()
        assert mine["total"] == 0
        admin_view = await client.get(f"/api/v1/orders/{order_id}", headers=admin_headers)
        assert admin_view.status_code == 200


class TestPaymentsApi:
    @pytest.mark.asyncio
    async def test_webhook_rejects_bad_signature(self, client):
        response = await client.post(
            "/api/v1/payments/webhook",
            content=webhook_body("evt_1", "payment_intent.succeeded", {"id": "pi_1"}),
            headers={"stripe-signature": "t=1,v1=forged"},
        )

        assert response.status_code == 400
        assert response.json() == {"received": False}

    @pytest.mark.asyncio
    async def test_payment_first_checkout_via_webhook(
        self, client, customer_headers, order_payload, payment_gateway
    ):
        # Arrange
        intent_response = await client.post(
            "/api/v1/payments/create-payment-intent-for-order",
            json=order_payload,
            headers=customer_headers,
        )
        intent_id = intent_response.json()["payment_intent_id"]
        body = webhook_body(
            "evt_checkout",
            "payment_intent.succeeded",
            intent_object(payment_gateway.succeed(intent_id)),
        )

        # Act
        first = await client.post(
            "/api/v1/payments/webhook",
            content=body,
            headers={"stripe-signature": VALID_SIGNATURE},
        )
        second = await client.post(
            "/api/v1/payments/webhook",
            content=body,
            headers={"stripe-signature": VALID_SIGNATURE},
        )

        # Assert
        assert intent_response.json()["amount"] == "30.97"
        assert first.json() == {"received": True}
        assert second.json() == {"received": True}
        orders = (await client.get("/api/v1/orders", headers=customer_headers)).json()
        assert orders["total"] == 1
        assert orders["orders"][0]["order_number"].startswith("VKP")
        count = (
            await client.get("/api/v1/notifications/unread-count", headers=customer_headers)
        ).json()
        assert count["unread_count"] == 2

    @pytest.mark.asyncio
    async def test_webhook_processing_failure_is_500_without_detail(
        self, client, customer_headers, order_payload, payment_gateway
    ):
        intent_response = await client.post(
            "/api/v1/payments/create-payment-intent-for-order",
            json=order_payload,
            headers=customer_headers,
        )
        intent = payment_gateway.succeed(intent_response.json()["payment_intent_id"])
        metadata = {**intent.metadata, "order_data_0": "{broken"}

        response = await client.post(
            "/api/v1/payments/webhook",
            content=webhook_body(
                "evt_broken", "payment_intent.succeeded", intent_object(intent, metadata=metadata)
            ),
            headers={"stripe-signature": VALID_SIGNATURE},
        )

        assert response.status_code == 500
        assert response.json() == {"received": False}

    @pytest.mark.asyncio
    async def test_refund_request_then_admin_refund(
        self, client, customer_headers, admin_headers, order_payload
    ):
        order = await create_paid_order(client, customer_headers, order_payload)

        requested = await client.post(
            "/api/v1/payments/request-refund",
            json={"order_id": order["id"], "reason": "Missing spring rolls"},
            headers=customer_headers,
        )
        forbidden = await client.post(
            "/api/v1/payments/refund",
            json={"order_id": order["id"]},
            headers=customer_headers,
        )
        processed = await client.post(
            "/api/v1/payments/refund",
            json={"order_id": order["id"]},
            headers=admin_headers,
        )

        assert requested.status_code == 200
        assert requested.json()["order"]["refund_requested"] is True
        assert forbidden.status_code == 403
        assert processed.status_code == 200
        assert processed.json()["order"]["status"] == "cancelled"
        assert processed.json()["order"]["payment_status"] == "refunded"

    @pytest.mark.asyncio
    async def test_payment_details(self, client, customer_headers, order_payload):
        order = await create_paid_order(client, customer_headers, order_payload)

        response = await client.get(
            f"/api/v1/payments/details/{order['id']}", headers=customer_headers
        )

        assert response.status_code == 200
        details = response.json()
        assert details["payment_method"] == "simulated"
        assert details["payment_status"] == "paid"
        assert details["intent_status"] is None
