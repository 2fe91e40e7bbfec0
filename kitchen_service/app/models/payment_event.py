from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import TEXT, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import KitchenServiceBaseModel


class PaymentEventOutcome(Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentEvent(KitchenServiceBaseModel):
    """One row per payment processor event id; the webhook idempotency gate."""

    __tablename__ = "payment_events"

    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[str] = mapped_column(
        String(20), default=PaymentEventOutcome.PROCESSING.value, nullable=False
    )
    order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    error: Mapped[str | None] = mapped_column(TEXT, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
