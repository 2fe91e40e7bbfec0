"""
Authentication middleware for Kitchen Service.
Validates the access token and attaches the user context to the request.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kitchen_service.app.core.settings import get_settings
from kitchen_service.app.utils.jwt_handler import JWTHandler
from kitchen_service.app.utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service_auth")

DEFAULT_EXCLUDE_PATHS = [
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/v1/payments/webhook",
    "/ws",
]

TOKEN_COOKIES = ("auth_token", "access_token")


class KitchenServiceAuthMiddleware(BaseHTTPMiddleware):
    """
    Authentication middleware for Kitchen Service.

    Accepts the token from the ``auth_token``/``access_token`` cookie or an
    ``Authorization: Bearer`` header. Webhook, health and docs paths are
    public; the webhook authenticates with its own signature.
    """

    def __init__(
        self,
        app: Any,
        exclude_paths: Optional[List[str]] = None,
        jwt_handler: Optional[JWTHandler] = None,
    ):
        super().__init__(app)
        self.exclude_paths = exclude_paths or DEFAULT_EXCLUDE_PATHS

        if jwt_handler:
            self.jwt_handler = jwt_handler
        else:
            settings = get_settings()
            self.jwt_handler = JWTHandler(
                secret_key=settings.SECRET_KEY, algorithm=settings.ALGORITHM
            )

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if self._should_skip_auth(request.url.path):
            return await call_next(request)

        correlation_id = request.headers.get("X-Correlation-ID", "unknown")
        auth_result = self._authenticate_request(request)

        if not auth_result["authenticated"]:
            logger.warning(
                f"Authentication failed: {auth_result['reason']}",
                extra={
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "method": request.method,
                    "reason": auth_result["reason"],
                    "event_type": "auth_failed",
                },
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": {
                        "type": "authentication_error",
                        "message": "Authentication required",
                        "correlation_id": correlation_id,
                        "details": {"reason": auth_result["reason"]},
                    }
                },
            )

        request.state.user_id = auth_result["user_id"]
        request.state.user_role = auth_result["user_role"]
        request.state.user_email = auth_result["user_email"]
        request.state.token_data = auth_result["token_data"]

        logger.debug(
            "Request authenticated",
            extra={
                "correlation_id": correlation_id,
                "user_id": auth_result["user_id"],
                "user_role": auth_result["user_role"],
                "token_source": auth_result["token_source"],
                "path": request.url.path,
                "event_type": "auth_success",
            },
        )
        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        if path in self.exclude_paths:
            return True
        return any(path.startswith(excluded) for excluded in self.exclude_paths)

    @staticmethod
    def _extract_token(request: Request) -> tuple[Optional[str], str]:
        for cookie in TOKEN_COOKIES:
            token = request.cookies.get(cookie)
            if token:
                return token, "cookie"

        authorization = request.headers.get("Authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return credentials.strip(), "header"
        return None, "none"

    def _authenticate_request(self, request: Request) -> Dict[str, Any]:
        token, source = self._extract_token(request)
        if not token or token in ("null", "undefined") or not token.strip():
            return {"authenticated": False, "reason": "missing_token"}

        try:
            token_data = self.jwt_handler.decode_token(token)
        except ValueError as e:
            logger.warning(f"JWT validation failed: {e}")
            return {"authenticated": False, "reason": "invalid_token"}

        return {
            "authenticated": True,
            "user_id": token_data.user_id,
            "user_role": token_data.role,
            "user_email": token_data.email or None,
            "token_data": token_data,
            "token_source": source,
        }


class AuthenticatedUser:
    """
    Dependency class for FastAPI route authentication.
    Use this in your route handlers to ensure authentication.
    """

    def __init__(self, required_role: Optional[str] = None):
        self.required_role = required_role

    async def __call__(self, request: Request) -> Dict[str, Any]:
        user_id = getattr(request.state, "user_id", None)
        user_role = getattr(request.state, "user_role", None)

        if not user_id:
            raise HTTPException(status_code=401, detail="Authentication required")

        if self.required_role and user_role != self.required_role:
            raise HTTPException(
                status_code=403, detail=f"Required role: {self.required_role}"
            )

        return {
            "user_id": user_id,
            "role": user_role,
            "email": getattr(request.state, "user_email", None),
        }


def setup_kitchen_auth_middleware(
    app: FastAPI,
    exclude_paths: Optional[List[str]] = None,
    jwt_handler: Optional[JWTHandler] = None,
) -> None:
    """
    Setup authentication middleware for Kitchen Service.

    Args:
        app: FastAPI application instance
        exclude_paths: List of paths to exclude from authentication
        jwt_handler: Optional JWT handler instance to use for token validation
    """
    exclude_paths = exclude_paths or DEFAULT_EXCLUDE_PATHS
    app.add_middleware(
        KitchenServiceAuthMiddleware,
        exclude_paths=exclude_paths,
        jwt_handler=jwt_handler,
    )
    logger.info(
        "Kitchen Service authentication middleware configured",
        extra={"excluded_paths": exclude_paths, "event_type": "auth_middleware_setup"},
    )


authenticated_user = AuthenticatedUser()
admin_user = AuthenticatedUser(required_role="admin")
