from typing import Optional

from fastapi import APIRouter, Query, status

from ...models.order import ViewerRole
from ...schemas.order import OrderListResponse, OrderResponse, OrderStatisticsResponse
from ...services.order_service import OrderService
from ..deps import AdminUserDep, OrderServiceDep

router = APIRouter(prefix="/admin")


@router.get("/orders", status_code=status.HTTP_200_OK)
async def list_admin_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: dict = AdminUserDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderListResponse:
    """Kitchen board; without a status filter only active orders are listed"""
    orders, total = await order_service.list_admin_orders(
        skip=skip, limit=limit, status_filter=status_filter
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
        message=f"Retrieved {len(orders)} orders",
    )


@router.delete("/orders/{order_id}", status_code=status.HTTP_200_OK)
async def delete_order_for_admin(
    order_id: int,
    admin: dict = AdminUserDep,
    order_service: OrderService = OrderServiceDep,
) -> dict:
    await order_service.delete_order(order_id, ViewerRole.ADMIN)
    return {"order_id": order_id, "message": "Order deleted"}


@router.get("/stats", status_code=status.HTTP_200_OK)
async def order_statistics(
    admin: dict = AdminUserDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderStatisticsResponse:
    stats = await order_service.get_statistics()
    return OrderStatisticsResponse(**stats, message="Order statistics retrieved")
