from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utc_now
from ..models.payment_event import PaymentEvent, PaymentEventOutcome


class PaymentEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_event_id(self, event_id: str) -> Optional[PaymentEvent]:
        query = (
            select(PaymentEvent)
            .where(PaymentEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def record_processing(
        self,
        event_id: str,
        event_type: str,
        order_id: Optional[int] = None,
        user_id: Optional[int] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentEvent:
        """Optimistically insert the dedup record.

        A concurrent delivery of the same event id surfaces as IntegrityError
        from the unique constraint.
        """
        event = PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            outcome=PaymentEventOutcome.PROCESSING.value,
            order_id=order_id,
            user_id=user_id,
            amount=amount,
        )
        self.session.add(event)
        await self.session.commit()
        return event

    async def reclaim_for_retry(self, event: PaymentEvent) -> bool:
        """Move a failed or stale record back to processing; False if another
        delivery reclaimed it first."""
        stmt = (
            update(PaymentEvent)
            .where(
                PaymentEvent.id == event.id,
                PaymentEvent.outcome == event.outcome,
                PaymentEvent.retry_count == event.retry_count,
            )
            .values(
                outcome=PaymentEventOutcome.PROCESSING.value,
                retry_count=event.retry_count + 1,
                error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def finalize(
        self,
        event_id: str,
        outcome: str,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        values: Dict[str, Any] = {
            "outcome": outcome,
            "error": error[:2000] if error else None,
            "processed_at": utc_now(),
        }
        for key in ("order_id", "user_id", "amount"):
            if metadata and metadata.get(key) is not None:
                values[key] = metadata[key]

        stmt = (
            update(PaymentEvent)
            .where(PaymentEvent.event_id == event_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()
