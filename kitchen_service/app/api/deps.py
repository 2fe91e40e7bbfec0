"""
FastAPI dependency injection for Kitchen Service

Long-lived collaborators (realtime gateway, payment gateway, fan-out plans,
side effect dispatcher) are built once in the application lifespan and kept
on ``app.state``; request-scoped services are assembled here around a fresh
database session.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db_session
from ..core.settings import KitchenServiceSettings, get_settings
from ..middleware.auth import admin_user, authenticated_user
from ..services.fanout import OrderFanout
from ..services.notification_service import NotificationService
from ..services.order_service import OrderService
from ..services.payment_gateway import PaymentGateway
from ..services.payment_service import PaymentService
from ..services.side_effects import SideEffectDispatcher

# =====================================================
# DATABASE DEPENDENCIES
# =====================================================


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide async database session"""
    async for session in get_db_session():
        yield session


# =====================================================
# APPLICATION STATE DEPENDENCIES
# =====================================================


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_fanout(request: Request) -> OrderFanout:
    return request.app.state.fanout


def get_dispatcher(request: Request) -> SideEffectDispatcher:
    return request.app.state.dispatcher


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


# =====================================================
# SERVICE DEPENDENCIES
# =====================================================


def get_order_service(
    session: AsyncSession = Depends(get_async_session),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    fanout: OrderFanout = Depends(get_fanout),
    settings: KitchenServiceSettings = Depends(get_settings),
) -> OrderService:
    """Provide OrderService bound to the request session"""
    return OrderService(session, payment_gateway, fanout, settings)


def get_payment_service(
    session: AsyncSession = Depends(get_async_session),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    fanout: OrderFanout = Depends(get_fanout),
    settings: KitchenServiceSettings = Depends(get_settings),
    order_service: OrderService = Depends(get_order_service),
) -> PaymentService:
    """Provide PaymentService sharing the request session with OrderService"""
    return PaymentService(session, payment_gateway, fanout, settings, order_service)


# =====================================================
# AUTHENTICATION & REQUEST CONTEXT DEPENDENCIES
# =====================================================


def get_current_user_id(request: Request) -> int:
    """Get current authenticated user ID from middleware state"""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user identity")


def get_current_user_role(request: Request) -> Optional[str]:
    """Get current authenticated user role from middleware state"""
    return getattr(request.state, "user_role", None)


def get_current_user_email(request: Request) -> Optional[str]:
    return getattr(request.state, "user_email", None)


# =====================================================
# COMMON DEPENDENCY ALIASES
# =====================================================

# Core dependencies
DatabaseDep = Depends(get_async_session)
SettingsDep = Depends(get_settings)

# Authentication dependencies (handled by auth middleware)
CurrentUserDep = Depends(authenticated_user)
AdminUserDep = Depends(admin_user)
CurrentUserIdDep = Depends(get_current_user_id)
CurrentUserRoleDep = Depends(get_current_user_role)
CurrentUserEmailDep = Depends(get_current_user_email)

# Service dependencies aliases
OrderServiceDep = Depends(get_order_service)
PaymentServiceDep = Depends(get_payment_service)
NotificationServiceDep = Depends(get_notification_service)
DispatcherDep = Depends(get_dispatcher)
