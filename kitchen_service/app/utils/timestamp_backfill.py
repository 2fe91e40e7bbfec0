"""
Status timestamp backfill for orders created before ``status_timestamps``
was recorded.

``placed`` is taken from the creation time; later statuses are estimated at
fixed offsets from it, for as far as the order's status has progressed.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError
from ..models.order import OrderStatus
from ..repository.order_repository import OrderRepository
from .logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.backfill")

STATUS_OFFSETS_MINUTES: Dict[str, int] = {
    OrderStatus.PLACED.value: 0,
    OrderStatus.PREPARING.value: 5,
    OrderStatus.READY.value: 25,
    OrderStatus.COMPLETED.value: 30,
    OrderStatus.CANCELLED.value: 10,
}

# Statuses implied by having reached a given status
REACHED_STATUSES: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [],
    OrderStatus.PLACED.value: [OrderStatus.PLACED.value],
    OrderStatus.PREPARING.value: [OrderStatus.PLACED.value, OrderStatus.PREPARING.value],
    OrderStatus.READY.value: [
        OrderStatus.PLACED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY.value,
    ],
    OrderStatus.OUT_FOR_DELIVERY.value: [
        OrderStatus.PLACED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY.value,
    ],
    OrderStatus.COMPLETED.value: [
        OrderStatus.PLACED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY.value,
        OrderStatus.COMPLETED.value,
    ],
    OrderStatus.CANCELLED.value: [OrderStatus.PLACED.value, OrderStatus.CANCELLED.value],
}


def derive_status_timestamps(status: str, created_at: datetime) -> Dict[str, str]:
    """Estimated ISO timestamps for every status the order has reached"""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return {
        reached: (
            created_at + timedelta(minutes=STATUS_OFFSETS_MINUTES[reached])
        ).isoformat()
        for reached in REACHED_STATUSES.get(status, [])
    }


async def backfill_status_timestamps(session: AsyncSession) -> int:
    """Fill empty ``status_timestamps``; returns the number of orders updated"""
    repository = OrderRepository(session)
    updated = 0
    for order in await repository.get_orders_missing_timestamps():
        timestamps = derive_status_timestamps(order.status, order.created_at)
        if not timestamps:
            continue
        try:
            await repository.apply_transition(
                order.id, order.status, {"status_timestamps": timestamps}
            )
        except ConflictError:
            # The order moved on while we were reading; its own stamps win
            logger.info(
                "Skipped order modified during backfill",
                extra={"order_id": str(order.id)},
            )
            continue
        updated += 1
        logger.info(
            "Backfilled status timestamps",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "statuses": list(timestamps),
            },
        )
    return updated
