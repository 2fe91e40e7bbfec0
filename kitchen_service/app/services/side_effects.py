"""
Best-effort side effect dispatch.

Coordinator operations commit the order first and hand back the downstream
work (notifications, realtime pushes, emails) as a list of ``SideEffect``
objects. ``SideEffectDispatcher`` runs each one independently under a timeout;
a failure is logged and dropped and never reaches the caller or the other
effects.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..models.order import Order
from ..utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.side_effects")


@dataclass
class SideEffect:
    name: str
    action: Callable[[], Awaitable[Any]]
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionResult:
    """A committed order state plus the fan-out it triggers."""

    order: Order
    side_effects: List[SideEffect] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class SideEffectDispatcher:
    def __init__(self, timeout_seconds: Optional[float] = 45.0):
        self.timeout_seconds = timeout_seconds

    async def run(self, side_effects: Sequence[SideEffect]) -> DispatchReport:
        """Execute side effects in order; never raises."""
        report = DispatchReport()
        for effect in side_effects:
            started = time.time()
            try:
                await asyncio.wait_for(effect.action(), timeout=self.timeout_seconds)
            except Exception as e:
                report.failed.append(effect.name)
                logger.warning(
                    f"Side effect {effect.name} failed",
                    exc_info=True,
                    extra={
                        "side_effect": effect.name,
                        "error_type": type(e).__name__,
                        "duration_ms": int((time.time() - started) * 1000),
                        **{k: str(v) for k, v in effect.context.items()},
                    },
                )
            else:
                report.succeeded.append(effect.name)

        if side_effects:
            logger.info(
                "Side effects dispatched",
                extra={
                    "succeeded": len(report.succeeded),
                    "failed": len(report.failed),
                },
            )
        return report
