"""
Unit tests for NotificationBus: non-blocking publish, drop on full, isolation.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from position_recon.monitoring.notifier import NotificationBus


class TestNotificationBus:

    def test_publish_without_running_loop_does_not_block(self):
        bus = NotificationBus(max_queue_size=2)
        bus.publish("ghosts-cleaned", {"n": 1})
        bus.publish("ghosts-cleaned", {"n": 2})
        bus.publish("ghosts-cleaned", {"n": 3})

        assert bus.pending == 2
        assert bus.stats.published == 2
        assert bus.stats.dropped == 1

    @pytest.mark.asyncio
    async def test_drain_delivers_to_subscribers(self):
        bus = NotificationBus()
        handler = MagicMock()
        async_handler = AsyncMock()
        bus.subscribe("ghosts-cleaned", handler)
        bus.subscribe("ghosts-cleaned", async_handler)

        bus.publish("ghosts-cleaned", {"ghosts_cleaned": 2})
        await bus.drain()

        event = handler.call_args[0][0]
        assert event.name == "ghosts-cleaned"
        assert event.payload == {"ghosts_cleaned": 2}
        async_handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_events_not_delivered(self):
        bus = NotificationBus()
        handler = MagicMock()
        bus.subscribe("ghosts-cleaned", handler)
        bus.publish("something-else", {})
        await bus.drain()
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self):
        bus = NotificationBus()
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        bus.subscribe("ghosts-cleaned", broken)
        bus.subscribe("ghosts-cleaned", healthy)

        bus.publish("ghosts-cleaned", {})
        await bus.drain()

        healthy.assert_called_once()
        assert bus.stats.handler_errors == 1
        assert bus.stats.delivered == 1

    @pytest.mark.asyncio
    async def test_start_stop_drains(self):
        bus = NotificationBus()
        received = []

        async def handler(event):
            received.append(event.payload["n"])

        bus.subscribe("ghosts-cleaned", handler)
        await bus.start()
        for n in range(5):
            bus.publish("ghosts-cleaned", {"n": n})
        await bus.stop()

        assert received == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_running_dispatcher_delivers(self):
        bus = NotificationBus()
        delivered = asyncio.Event()
        bus.subscribe("ghosts-cleaned", lambda event: delivered.set())
        await bus.start()
        bus.publish("ghosts-cleaned", {})
        await asyncio.wait_for(delivered.wait(), timeout=1.0)
        await bus.stop()

    def test_unsubscribe(self):
        bus = NotificationBus()
        handler = MagicMock()
        bus.subscribe("ghosts-cleaned", handler)
        bus.subscribe("ghosts-cleaned", handler)
        bus.unsubscribe("ghosts-cleaned", handler)
        assert bus._subscribers["ghosts-cleaned"] == []

    def test_publish_copies_payload(self):
        bus = NotificationBus()
        payload = {"n": 1}
        bus.publish("ghosts-cleaned", payload)
        payload["n"] = 2
        assert bus._queue.get_nowait().payload == {"n": 1}
