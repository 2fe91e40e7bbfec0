"""
Order number generation.

Two strategies share one interface and produce disjoint formats by
construction:

- ``SequentialOrderNumberGenerator``: ``VK`` followed by digits only,
  derived from the order count (order-first path).
- ``TimestampOrderNumberGenerator``: ``VKP`` followed by 12 digits, derived
  from the clock (payment-first path), so it never races the counter.

Callers retry on a unique-constraint collision, passing the attempt number.
"""

import secrets
import time
from abc import ABC, abstractmethod

from ..repository.order_repository import OrderRepository


class OrderNumberGenerator(ABC):
    prefix: str = ""

    @abstractmethod
    async def candidate(self, attempt: int) -> str:
        """Return a candidate order number for the given retry attempt."""


class SequentialOrderNumberGenerator(OrderNumberGenerator):
    prefix = "VK"

    def __init__(self, order_repository: OrderRepository):
        self.order_repository = order_repository

    async def candidate(self, attempt: int) -> str:
        count = await self.order_repository.count_orders()
        return f"{self.prefix}{count + 1 + attempt:06d}"


class TimestampOrderNumberGenerator(OrderNumberGenerator):
    prefix = "VKP"

    async def candidate(self, attempt: int) -> str:
        millis = str(int(time.time() * 1000))[-9:]
        suffix = f"{secrets.randbelow(1000):03d}"
        return f"{self.prefix}{millis}{suffix}"
