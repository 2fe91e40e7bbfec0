"""
Role-based authorization middleware for Kitchen Service.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kitchen_service.app.utils.logging import setup_kitchen_logging

from .auth_middleware import DEFAULT_EXCLUDE_PATHS

logger = setup_kitchen_logging("kitchen_service_roles")

DEFAULT_ROLE_REQUIREMENTS: Dict[str, Union[str, List[str]]] = {
    "/api/v1/admin": "admin",
    "/api/v1/notifications/stats": "admin",
    "/api/v1/payments/refund": "admin",
}


class KitchenServiceRoleAuthorizationMiddleware(BaseHTTPMiddleware):
    """Path-prefix role requirements, checked after authentication"""

    def __init__(
        self,
        app: Any,
        role_requirements: Optional[Dict[str, Union[str, List[str]]]] = None,
        exclude_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.role_requirements = role_requirements or {}
        self.exclude_paths = exclude_paths or DEFAULT_EXCLUDE_PATHS

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        if any(path.startswith(excluded) for excluded in self.exclude_paths):
            return await call_next(request)

        user_id = getattr(request.state, "user_id", None)
        if not user_id:
            # Let the auth middleware answer unauthenticated requests
            return await call_next(request)

        user_role = getattr(request.state, "user_role", None) or "user"
        auth_result = self._check_role_authorization(path, user_role)
        if auth_result["authorized"]:
            return await call_next(request)

        correlation_id = request.headers.get("X-Correlation-ID", "unknown")
        logger.warning(
            f"Role authorization failed: {auth_result['reason']}",
            extra={
                "correlation_id": correlation_id,
                "user_id": user_id,
                "user_role": user_role,
                "required_roles": auth_result["required_roles"],
                "path": path,
                "method": request.method,
                "event_type": "role_auth_failed",
            },
        )
        return JSONResponse(
            status_code=403,
            content={
                "error": {
                    "type": "authorization_error",
                    "message": "Insufficient permissions",
                    "correlation_id": correlation_id,
                    "details": {
                        "reason": auth_result["reason"],
                        "required_roles": auth_result["required_roles"],
                        "user_role": user_role,
                    },
                }
            },
        )

    def _check_role_authorization(self, path: str, user_role: str) -> Dict[str, Any]:
        for required_path, roles in self.role_requirements.items():
            if path == required_path or path.startswith(required_path + "/"):
                required_roles = [roles] if isinstance(roles, str) else list(roles)
                if user_role in required_roles:
                    return {"authorized": True, "required_roles": required_roles}
                return {
                    "authorized": False,
                    "reason": "insufficient_role",
                    "required_roles": required_roles,
                }
        return {"authorized": True, "reason": "no_role_requirements", "required_roles": []}


def setup_kitchen_role_authorization_middleware(
    app: FastAPI,
    role_requirements: Optional[Dict[str, Union[str, List[str]]]] = None,
    exclude_paths: Optional[List[str]] = None,
) -> None:
    role_requirements = role_requirements or DEFAULT_ROLE_REQUIREMENTS
    app.add_middleware(
        KitchenServiceRoleAuthorizationMiddleware,
        role_requirements=role_requirements,
        exclude_paths=exclude_paths,
    )
    logger.info(
        "Role authorization middleware configured",
        extra={
            "role_requirements_count": len(role_requirements),
            "event_type": "role_middleware_setup",
        },
    )
