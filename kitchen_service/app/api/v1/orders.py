from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query, status

from ...models.order import ViewerRole
from ...schemas.order import (
    CancelOrderRequest,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    OrderActionResponse,
    OrderListResponse,
    OrderResponse,
    UpdateOrderStatusRequest,
)
from ...services.order_service import OrderService
from ...services.side_effects import SideEffectDispatcher, TransitionResult
from ..deps import (
    AdminUserDep,
    CurrentUserEmailDep,
    CurrentUserIdDep,
    CurrentUserRoleDep,
    DispatcherDep,
    OrderServiceDep,
)

router = APIRouter(prefix="/orders")


def respond(
    result: TransitionResult,
    message: str,
    background_tasks: BackgroundTasks,
    dispatcher: SideEffectDispatcher,
) -> OrderActionResponse:
    """Schedule the fan-out after the response and serialize the order"""
    if result.side_effects:
        background_tasks.add_task(dispatcher.run, result.side_effects)
    return OrderActionResponse(
        order=OrderResponse.model_validate(result.order), message=message
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: CreateOrderRequest,
    background_tasks: BackgroundTasks,
    user_id: int = CurrentUserIdDep,
    user_email: Optional[str] = CurrentUserEmailDep,
    order_service: OrderService = OrderServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    """Create a pending order priced from the live catalog"""
    result = await order_service.create_order(user_id, order_data, user_email)
    return respond(result, "Order created successfully", background_tasks, dispatcher)


@router.get("", status_code=status.HTTP_200_OK)
async def list_my_orders(
    skip: int = Query(0, ge=0, description="Number of orders to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of orders to return"),
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: int = CurrentUserIdDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderListResponse:
    orders, total = await order_service.list_my_orders(
        user_id, skip=skip, limit=limit, status_filter=status_filter
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
        message=f"Retrieved {len(orders)} orders",
    )


@router.get("/{order_id}", status_code=status.HTTP_200_OK)
async def get_order(
    order_id: int,
    user_id: int = CurrentUserIdDep,
    user_role: Optional[str] = CurrentUserRoleDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    order = await order_service.get_order(order_id, user_id, user_role)
    return OrderResponse.model_validate(order)


@router.put("/{order_id}/confirm-payment", status_code=status.HTTP_200_OK)
async def confirm_payment(
    order_id: int,
    payload: ConfirmPaymentRequest,
    background_tasks: BackgroundTasks,
    user_id: int = CurrentUserIdDep,
    order_service: OrderService = OrderServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    result = await order_service.confirm_payment(
        order_id, user_id, payload.payment_intent_id
    )
    message = (
        "Payment already confirmed"
        if result.details.get("already_confirmed")
        else "Payment confirmed"
    )
    return respond(result, message, background_tasks, dispatcher)


@router.post("/{order_id}/simulate-payment", status_code=status.HTTP_200_OK)
async def simulate_payment(
    order_id: int,
    background_tasks: BackgroundTasks,
    user_id: int = CurrentUserIdDep,
    order_service: OrderService = OrderServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    """Development only: confirm payment without the payment processor"""
    result = await order_service.simulate_payment(order_id, user_id)
    return respond(result, "Payment simulated", background_tasks, dispatcher)


@router.put("/{order_id}/status", status_code=status.HTTP_200_OK)
async def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    background_tasks: BackgroundTasks,
    admin: dict = AdminUserDep,
    order_service: OrderService = OrderServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    result = await order_service.update_order_status(
        order_id, payload.status, payload.notes
    )
    return respond(
        result, f"Order status updated to {payload.status}", background_tasks, dispatcher
    )


@router.put("/{order_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[CancelOrderRequest] = None,
    user_id: int = CurrentUserIdDep,
    order_service: OrderService = OrderServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    result = await order_service.cancel_order(
        order_id, user_id, payload.reason if payload else None
    )
    if result.details.get("refunded"):
        message = "Order cancelled and refunded"
    elif result.details.get("refund_error"):
        message = "Order cancelled; refund will be processed manually"
    else:
        message = "Order cancelled"
    return respond(result, message, background_tasks, dispatcher)


@router.delete("/{order_id}", status_code=status.HTTP_200_OK)
async def delete_order(
    order_id: int,
    user_id: int = CurrentUserIdDep,
    order_service: OrderService = OrderServiceDep,
) -> dict:
    """Hide a completed or cancelled order from the customer's history"""
    await order_service.delete_order(order_id, ViewerRole.CUSTOMER, user_id)
    return {"order_id": order_id, "message": "Order deleted"}
