from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.exceptions import ConflictError
from ..models.order import (
    TERMINAL_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    ViewerRole,
)


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        order_number: str,
        user_id: int,
        items: List[Dict[str, Any]],
        total_amount: Decimal,
        **fields: Any,
    ) -> Order:
        """Insert an order and its line items in one commit.

        IntegrityError (order number or payment intent collision) propagates to
        the caller, which owns the retry policy.
        """
        order = Order(
            order_number=order_number,
            user_id=user_id,
            total_amount=total_amount,
            **fields,
        )
        self.session.add(order)
        await self.session.flush()  # Get the order ID

        for item in items:
            self.session.add(
                OrderItem(
                    order_id=order.id,
                    dish_id=item["dish_id"],
                    dish_name=item["dish_name"],
                    quantity=item["quantity"],
                    unit_price=item["unit_price"],
                    subtotal=item["subtotal"],
                )
            )

        await self.session.commit()
        return await self.get_order_by_id(order.id)  # type: ignore[return-value]

    async def get_order_by_id(self, order_id: int) -> Optional[Order]:
        """Get order by ID with items, refreshed from the database"""
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_order_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.payment_intent_id == payment_intent_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def count_orders(self) -> int:
        result = await self.session.execute(select(func.count(Order.id)))
        return result.scalar() or 0

    async def apply_transition(
        self,
        order_id: int,
        expected_status: str,
        values: Dict[str, Any],
        expected_payment_status: Optional[str] = None,
    ) -> Order:
        """Compare-and-swap update guarded by the order's current status.

        The update only lands if the order is still in ``expected_status`` (and
        ``expected_payment_status`` when given); otherwise a concurrent writer
        got there first and ConflictError is raised without touching the row.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if expected_payment_status is not None:
            stmt = stmt.where(Order.payment_status == expected_payment_status)

        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            current = await self.get_order_by_id(order_id)
            raise ConflictError(
                "Order was modified concurrently",
                order_id=order_id,
                expected_status=expected_status,
                current_status=current.status if current else None,
                current_payment_status=current.payment_status if current else None,
            )

        await self.session.commit()
        return await self.get_order_by_id(order_id)  # type: ignore[return-value]

    async def get_orders_for_user(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 50,
        status_filter: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        """Orders the customer has not hidden, newest first, with total count"""
        conditions = [Order.user_id == user_id, Order.visible_to(ViewerRole.CUSTOMER)]
        if status_filter:
            conditions.append(Order.status == status_filter)
        return await self._paginate(conditions, skip, limit)

    async def get_orders_for_admin(
        self,
        skip: int = 0,
        limit: int = 50,
        status_filter: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        """Orders the admin has not hidden; without a filter, only active orders"""
        conditions = [Order.visible_to(ViewerRole.ADMIN)]
        if status_filter:
            conditions.append(Order.status == status_filter)
        else:
            conditions.append(Order.status.not_in(TERMINAL_STATUSES))
        return await self._paginate(conditions, skip, limit)

    async def _paginate(
        self, conditions: Iterable[Any], skip: int, limit: int
    ) -> Tuple[List[Order], int]:
        conditions = list(conditions)
        count_result = await self.session.execute(
            select(func.count(Order.id)).where(*conditions)
        )
        total_count = count_result.scalar() or 0

        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total_count

    async def get_orders_missing_timestamps(self) -> List[Order]:
        result = await self.session.execute(select(Order).order_by(Order.id))
        return [order for order in result.scalars().all() if not order.status_timestamps]

    async def get_status_counts(self) -> Dict[str, int]:
        """Order count per status over the full history, deleted or not"""
        query = select(Order.status, func.count(Order.id)).group_by(Order.status)
        result = await self.session.execute(query)
        return {row[0]: row[1] for row in result.all()}

    async def get_completed_revenue(self) -> Decimal:
        query = select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.status == OrderStatus.COMPLETED.value
        )
        result = await self.session.execute(query)
        return Decimal(str(result.scalar() or 0))
