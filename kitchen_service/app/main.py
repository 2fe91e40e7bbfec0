import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kitchen_service.app.api.v1.admin import router as admin_router
from kitchen_service.app.api.v1.health import router as health_router
from kitchen_service.app.api.v1.notifications import router as notifications_router
from kitchen_service.app.api.v1.orders import router as orders_router
from kitchen_service.app.api.v1.payments import router as payments_router
from kitchen_service.app.api.v1.realtime import router as realtime_router
from kitchen_service.app.core.database import database_manager
from kitchen_service.app.core.settings import get_settings
from kitchen_service.app.middleware.auth import (
    setup_kitchen_auth_middleware,
    setup_kitchen_role_authorization_middleware,
)
from kitchen_service.app.middleware.error import setup_kitchen_error_handling
from kitchen_service.app.realtime import RealtimeEventPublisher, RealtimeGateway
from kitchen_service.app.services.email_service import EmailService
from kitchen_service.app.services.fanout import OrderFanout
from kitchen_service.app.services.notification_service import NotificationService
from kitchen_service.app.services.payment_gateway import StripePaymentGateway
from kitchen_service.app.services.side_effects import SideEffectDispatcher
from kitchen_service.app.utils.jwt_handler import JWTHandler
from kitchen_service.app.utils.logging import setup_kitchen_logging

settings = get_settings()

environment = settings.ENVIRONMENT.lower()
enable_file_logging = environment in ["production", "staging"]

logger = setup_kitchen_logging(
    "kitchen_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=enable_file_logging,
)


async def purge_expired_notifications(
    notification_service: NotificationService, interval_seconds: int
) -> None:
    """Periodically delete notifications past their expiry"""
    while True:
        try:
            await notification_service.purge_expired()
        except Exception as e:
            logger.warning(
                "Notification purge failed",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
            )
        await asyncio.sleep(interval_seconds)


def init_services(app: FastAPI) -> None:
    """Build the long-lived collaborators and keep them on app.state"""
    jwt_handler = JWTHandler(secret_key=settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    gateway = RealtimeGateway(jwt_handler)
    publisher = RealtimeEventPublisher(gateway)
    notification_service = NotificationService(
        database_manager.async_session_maker,
        publisher,
        ttl_days=settings.NOTIFICATION_TTL_DAYS,
    )

    app.state.jwt_handler = jwt_handler
    app.state.realtime_gateway = gateway
    app.state.publisher = publisher
    app.state.notification_service = notification_service
    app.state.payment_gateway = StripePaymentGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )
    app.state.fanout = OrderFanout(
        notification_service,
        publisher,
        EmailService(settings),
        ready_eta_minutes=settings.READY_ETA_MINUTES,
    )
    app.state.dispatcher = SideEffectDispatcher(
        timeout_seconds=settings.SIDE_EFFECT_TIMEOUT_SECONDS
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    startup_start = time.time()

    try:
        logger.info(
            "Starting kitchen service initialization",
            extra={
                "environment": environment,
                "debug_mode": settings.DEBUG,
                "file_logging_enabled": enable_file_logging,
                "service_version": settings.APP_VERSION,
            },
        )

        db_start = time.time()
        await database_manager.create_tables()
        logger.info(
            "Database initialization completed",
            extra={"duration_ms": int((time.time() - db_start) * 1000)},
        )

        app.state.purge_task = asyncio.create_task(
            purge_expired_notifications(
                app.state.notification_service,
                settings.NOTIFICATION_PURGE_INTERVAL_SECONDS,
            )
        )

        logger.info(
            "Kitchen service started successfully",
            extra={"total_startup_duration_ms": int((time.time() - startup_start) * 1000)},
        )

    except Exception as e:
        logger.error(
            "Failed to start kitchen service",
            exc_info=True,
            extra={"error_type": type(e).__name__},
        )
        raise

    yield

    shutdown_start = time.time()
    logger.info("Starting kitchen service shutdown")

    app.state.purge_task.cancel()
    try:
        await app.state.purge_task
    except asyncio.CancelledError:
        pass

    await app.state.realtime_gateway.close_all()
    await database_manager.close()

    logger.info(
        "Kitchen service shutdown completed",
        extra={"shutdown_duration_ms": int((time.time() - shutdown_start) * 1000)},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    init_services(app)

    # The last middleware added runs first: CORS, then auth, then roles
    setup_kitchen_role_authorization_middleware(app)
    setup_kitchen_auth_middleware(app, jwt_handler=app.state.jwt_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_CREDENTIALS,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )
    setup_kitchen_error_handling(app)

    routers_info: list[dict[str, Any]] = []

    app.include_router(health_router, tags=["Health"])
    app.include_router(realtime_router, tags=["Realtime"])
    for router, tag in (
        (orders_router, "Orders"),
        (payments_router, "Payments"),
        (notifications_router, "Notifications"),
        (admin_router, "Admin"),
    ):
        app.include_router(router, prefix="/api/v1", tags=[tag])
        routers_info.append({"router": router.prefix, "prefix": "/api/v1"})

    logger.info(
        "API routes configured",
        extra={"total_routers": len(routers_info) + 2, "routers": routers_info},
    )

    return app


app = create_app()
