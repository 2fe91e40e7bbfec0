"""
Unit tests for best-effort side effect dispatch.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from kitchen_service.app.services.side_effects import SideEffect, SideEffectDispatcher


class TestSideEffectDispatcher:
    @pytest.fixture
    def dispatcher(self):
        return SideEffectDispatcher(timeout_seconds=0.2)

    @pytest.mark.asyncio
    async def test_runs_effects_in_order(self, dispatcher):
        # Arrange
        calls = []

        async def record(name):
            calls.append(name)

        effects = [
            SideEffect(name=name, action=lambda name=name: record(name))
            for name in ("realtime", "notification", "email")
        ]

        # Act
        report = await dispatcher.run(effects)

        # Assert
        assert calls == ["realtime", "notification", "email"]
        assert report.succeeded == ["realtime", "notification", "email"]
        assert report.failed == []

    @pytest.mark.asyncio
    async def test_failure_is_swallowed_and_later_effects_still_run(self, dispatcher):
        # Arrange
        failing = AsyncMock(side_effect=RuntimeError("smtp down"))
        following = AsyncMock()
        effects = [
            SideEffect(name="email", action=failing, context={"order_id": 1}),
            SideEffect(name="notification", action=following),
        ]

        # Act
        report = await dispatcher.run(effects)

        # Assert
        following.assert_awaited_once()
        assert report.failed == ["email"]
        assert report.succeeded == ["notification"]

    @pytest.mark.asyncio
    async def test_slow_effect_times_out(self, dispatcher):
        async def hang():
            await asyncio.sleep(5)

        report = await dispatcher.run([SideEffect(name="slow", action=hang)])

        assert report.failed == ["slow"]

    @pytest.mark.asyncio
    async def test_empty_plan(self, dispatcher):
        report = await dispatcher.run([])

        assert report.succeeded == []
        assert report.failed == []
