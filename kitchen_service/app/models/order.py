from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    ColumnElement,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import KitchenServiceBaseModel


class OrderStatus(Enum):
    PENDING = "pending"
    PLACED = "placed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out-for-delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DeliveryType(Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentMethod(Enum):
    STRIPE = "stripe"
    SIMULATED = "simulated"


class ViewerRole(Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


# Forward-only fulfillment order; cancelled sits outside the sequence.
FULFILLMENT_SEQUENCE: Tuple[str, ...] = (
    OrderStatus.PENDING.value,
    OrderStatus.PLACED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.COMPLETED.value,
)

TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}
)

# viewer -> (flag column, deleted-at column)
VISIBILITY_COLUMNS: Dict[ViewerRole, Tuple[str, str]] = {
    ViewerRole.CUSTOMER: ("is_deleted_by_customer", "deleted_by_customer_at"),
    ViewerRole.ADMIN: ("is_deleted_by_admin", "deleted_by_admin_at"),
}


@dataclass(frozen=True)
class OrderVisibility:
    """Which viewer classes have hidden an order from their own listings."""

    deleted_for: FrozenSet[ViewerRole] = frozenset()

    def is_visible_to(self, viewer: ViewerRole) -> bool:
        return viewer not in self.deleted_for

    def column_values(self, viewer: ViewerRole, when: datetime) -> Dict[str, Any]:
        """Column updates that persist hiding the order from ``viewer``."""
        flag_column, at_column = VISIBILITY_COLUMNS[viewer]
        return {flag_column: True, at_column: when}


class Order(KitchenServiceBaseModel):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_type: Mapped[str] = mapped_column(
        String(20), default=DeliveryType.PICKUP.value, nullable=False
    )
    delivery_address: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    contact_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    special_instructions: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), default=OrderStatus.PENDING.value, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    status_timestamps: Mapped[dict[str, str]] = mapped_column(
        JSON, default=dict, nullable=False
    )

    payment_method: Mapped[str] = mapped_column(
        String(20), default=PaymentMethod.STRIPE.value, nullable=False
    )
    payment_method_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(30), nullable=True)
    wallet_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )

    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    refund_requested: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    refund_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    refund_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    estimated_delivery_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    actual_delivery_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_deleted_by_customer: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    deleted_by_customer_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    is_deleted_by_admin: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    deleted_by_admin_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def visibility(self) -> OrderVisibility:
        return OrderVisibility(
            frozenset(
                viewer
                for viewer, (flag_column, _) in VISIBILITY_COLUMNS.items()
                if getattr(self, flag_column)
            )
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def visible_to(cls, viewer: ViewerRole) -> ColumnElement[bool]:
        """SQL predicate for orders the viewer has not hidden."""
        flag_column, _ = VISIBILITY_COLUMNS[viewer]
        return getattr(cls, flag_column).is_(False)


class OrderItem(KitchenServiceBaseModel):
    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    dish_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Snapshot of the catalog at order time
    dish_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
