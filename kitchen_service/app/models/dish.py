from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import KitchenServiceBaseModel


class Dish(KitchenServiceBaseModel):
    """Catalog entry; managed by the menu service, read here for pricing."""

    __tablename__ = "dishes"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    availability: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
