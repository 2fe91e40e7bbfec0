from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.dish import Dish


class DishRepository:
    """Read-only access to the menu catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_dish(self, dish_id: int) -> Optional[Dish]:
        result = await self.session.execute(select(Dish).where(Dish.id == dish_id))
        return result.scalars().first()
