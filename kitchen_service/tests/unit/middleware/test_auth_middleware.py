"""
Unit tests for Kitchen Service Authentication Middleware.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import HTTPException
from starlette.responses import JSONResponse

from kitchen_service.app.middleware.auth.auth_middleware import (
    DEFAULT_EXCLUDE_PATHS,
    AuthenticatedUser,
    KitchenServiceAuthMiddleware,
)
from kitchen_service.app.utils.jwt_handler import JWTHandler


def make_request(path="/api/v1/orders", cookies=None, headers=None):
    request = Mock()
    request.url.path = path
    request.method = "GET"
    request.cookies = cookies or {}
    request.headers = headers or {}
    request.state = Mock(spec=[])
    return request


class TestKitchenServiceAuthMiddleware:
    """Test cases for authentication middleware."""

    @pytest.fixture
    def jwt_handler(self):
        return JWTHandler(secret_key="unit-test-secret")

    @pytest.fixture
    def middleware(self, jwt_handler):
        return KitchenServiceAuthMiddleware(app=Mock(), jwt_handler=jwt_handler)

    @pytest.fixture
    def token(self, jwt_handler):
        return jwt_handler.encode_token(
            {"user_id": 42, "email": "diner@example.com", "roles": ["user"]}
        )

    def test_default_exclude_paths_include_webhook(self, middleware):
        """The payment webhook authenticates by signature, not by token."""
        assert middleware.exclude_paths == DEFAULT_EXCLUDE_PATHS
        assert middleware._should_skip_auth("/api/v1/payments/webhook")
        assert middleware._should_skip_auth("/health")
        assert not middleware._should_skip_auth("/api/v1/orders")

    @pytest.mark.asyncio
    async def test_dispatch_skips_excluded_path(self, middleware):
        # Arrange
        request = make_request(path="/health")
        call_next = AsyncMock(return_value="ok")

        # Act
        response = await middleware.dispatch(request, call_next)

        # Assert
        call_next.assert_called_once_with(request)
        assert response == "ok"

    @pytest.mark.asyncio
    async def test_dispatch_missing_token_returns_401(self, middleware):
        # Arrange
        request = make_request()
        call_next = AsyncMock()

        # Act
        response = await middleware.dispatch(request, call_next)

        # Assert
        call_next.assert_not_called()
        assert isinstance(response, JSONResponse)
        assert response.status_code == 401
        body = json.loads(response.body)
        assert body["error"]["type"] == "authentication_error"
        assert body["error"]["details"]["reason"] == "missing_token"

    @pytest.mark.asyncio
    async def test_dispatch_invalid_token_returns_401(self, middleware):
        # Arrange
        request = make_request(headers={"Authorization": "Bearer not-a-jwt"})
        call_next = AsyncMock()

        # Act
        response = await middleware.dispatch(request, call_next)

        # Assert
        assert response.status_code == 401
        assert json.loads(response.body)["error"]["details"]["reason"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_dispatch_bearer_token_sets_request_state(self, middleware, token):
        # Arrange
        request = make_request(headers={"Authorization": f"Bearer {token}"})
        call_next = AsyncMock(return_value="ok")

        # Act
        response = await middleware.dispatch(request, call_next)

        # Assert
        assert response == "ok"
        assert request.state.user_id == "42"
        assert request.state.user_role == "user"
        assert request.state.user_email == "diner@example.com"

    def test_cookie_token_takes_precedence_over_header(self, middleware, token):
        request = make_request(
            cookies={"auth_token": token},
            headers={"Authorization": "Bearer something-else"},
        )

        extracted, source = middleware._extract_token(request)

        assert extracted == token
        assert source == "cookie"

    @pytest.mark.parametrize("placeholder", ["null", "undefined"])
    def test_placeholder_cookie_is_treated_as_missing(self, middleware, placeholder):
        request = make_request(cookies={"access_token": placeholder})

        result = middleware._authenticate_request(request)

        assert result == {"authenticated": False, "reason": "missing_token"}


class TestAuthenticatedUser:
    @pytest.mark.asyncio
    async def test_requires_authenticated_request(self):
        request = make_request()
        request.state.user_id = None

        with pytest.raises(HTTPException) as exc_info:
            await AuthenticatedUser()(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_wrong_role(self):
        request = make_request()
        request.state.user_id = "7"
        request.state.user_role = "user"

        with pytest.raises(HTTPException) as exc_info:
            await AuthenticatedUser(required_role="admin")(request)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_returns_user_context(self):
        request = make_request()
        request.state.user_id = "1"
        request.state.user_role = "admin"
        request.state.user_email = "chef@example.com"

        user = await AuthenticatedUser(required_role="admin")(request)

        assert user == {"user_id": "1", "role": "admin", "email": "chef@example.com"}
