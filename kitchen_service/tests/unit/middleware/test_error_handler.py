"""
Unit tests for Kitchen Service error handling.
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from kitchen_service.app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
)
from kitchen_service.app.middleware.error import setup_kitchen_error_handling


class Payload(BaseModel):
    quantity: int


def build_app() -> FastAPI:
    app = FastAPI()
    setup_kitchen_error_handling(app)

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("Order is already completed", order_id=5, current_status="completed")

    @app.get("/forbidden")
    async def forbidden():
        raise AuthorizationError("Admins cannot cancel orders")

    @app.get("/gateway")
    async def gateway():
        raise ExternalServiceError("Payment processor error during create_refund")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    @app.post("/validate")
    async def validate(payload: Payload):
        return payload

    return app


class TestKitchenServiceErrorHandler:
    def setup_method(self):
        self.client = TestClient(build_app(), raise_server_exceptions=False)

    def test_conflict_envelope_carries_context(self):
        response = self.client.get("/conflict", headers={"X-Correlation-ID": "abc"})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["type"] == "conflict"
        assert error["message"] == "Order is already completed"
        assert error["correlation_id"] == "abc"
        assert error["details"] == {"order_id": 5, "current_status": "completed"}
        assert error["path"] == "/conflict"

    def test_authorization_error_is_403(self):
        response = self.client.get("/forbidden")

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "authorization_error"

    def test_external_service_error_is_502(self):
        response = self.client.get("/gateway")

        assert response.status_code == 502
        assert response.json()["error"]["details"]["service"] == "payment_gateway"

    def test_unhandled_exception_does_not_leak_message(self):
        response = self.client.get("/boom")

        assert response.status_code == 500
        assert "hunter2" not in response.text

    def test_request_validation_error_is_422(self):
        response = self.client.post("/validate", json={"quantity": "many"})

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "validation_error"
