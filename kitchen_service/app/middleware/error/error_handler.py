"""
Error handling for Kitchen Service.
Maps domain exceptions and framework errors onto one error envelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kitchen_service.app.core.exceptions import KitchenServiceError
from kitchen_service.app.utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service_error_handler")


class KitchenServiceErrorHandler:
    """
    Centralized error handling for Kitchen Service.

    Domain errors carry their own status code, error type and context (order
    id, current status), which is returned as ``details`` so the client can
    tell why a transition was refused.
    """

    @staticmethod
    def setup_error_handlers(app: FastAPI) -> None:
        @app.exception_handler(KitchenServiceError)
        async def kitchen_service_error_handler(
            request: Request, exc: KitchenServiceError
        ) -> JSONResponse:
            if exc.status_code >= 500:
                logger.error(
                    f"Kitchen Service error: {exc.message}",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "error_type": exc.error_type,
                        "context": exc.context,
                        "event_type": "service_error",
                    },
                )
            return KitchenServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                error_type=exc.error_type,
                message=exc.message,
                details=exc.context,
            )

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            return KitchenServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                error_type="http_error",
                message=str(exc.detail),
            )

        @app.exception_handler(RequestValidationError)
        async def validation_exception_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            error_details = [
                {
                    "field": ".".join(str(loc) for loc in error["loc"]),
                    "message": error["msg"],
                    "type": error["type"],
                }
                for error in exc.errors()
            ]
            return KitchenServiceErrorHandler._create_error_response(
                request=request,
                status_code=422,
                error_type="validation_error",
                message="Request validation failed",
                details={"validation_errors": error_details},
            )

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(
            request: Request, exc: Exception
        ) -> JSONResponse:
            logger.error(
                "Unhandled exception occurred",
                extra={
                    "correlation_id": request.headers.get("X-Correlation-ID", "unknown"),
                    "user_id": getattr(request.state, "user_id", "anonymous"),
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "event_type": "unhandled_exception",
                },
                exc_info=True,
            )
            return KitchenServiceErrorHandler._create_error_response(
                request=request,
                status_code=500,
                error_type="internal_server_error",
                message="An internal server error occurred",
                details={"exception_type": type(exc).__name__},
            )

    @staticmethod
    def _create_error_response(
        request: Request,
        status_code: int,
        error_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            request: The FastAPI request object
            status_code: HTTP status code
            error_type: Type of error for categorization
            message: Human-readable error message
            details: Additional error details

        Returns:
            JSONResponse with standardized error format
        """
        correlation_id = request.headers.get("X-Correlation-ID", "unknown")
        user_id = getattr(request.state, "user_id", "anonymous")

        error_response: Dict[str, Any] = {
            "error": {
                "type": error_type,
                "message": message,
                "correlation_id": correlation_id,
                "user_id": user_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "path": request.url.path,
                "method": request.method,
            }
        }
        if details:
            error_response["error"]["details"] = details

        if status_code < 500:
            logger.warning(
                f"Client error: {error_type}",
                extra={
                    "correlation_id": correlation_id,
                    "user_id": user_id,
                    "status_code": status_code,
                    "error_type": error_type,
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "client_error",
                },
            )

        return JSONResponse(status_code=status_code, content=error_response)


def setup_kitchen_error_handling(app: FastAPI) -> None:
    """
    Convenience function to setup error handling for Kitchen Service.

    Args:
        app: FastAPI application instance
    """
    KitchenServiceErrorHandler.setup_error_handlers(app)
    logger.info(
        "Kitchen Service error handling configured",
        extra={"event_type": "error_handler_setup"},
    )
