"""
Notification bus for engine events (e.g. "ghosts-cleaned").

publish() is synchronous and never blocks: events go onto a bounded
asyncio.Queue and are dropped with a warning when it is full. A background
dispatcher delivers them to subscribers; a failing subscriber is logged and
never affects the publisher or other subscribers.

Usage:
    bus = NotificationBus()
    bus.subscribe("ghosts-cleaned", alert_on_ghosts_cleaned)
    await bus.start()
    ...
    await bus.stop()   # drains queued events
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from position_recon.monitoring.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    name: str
    payload: Dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Handler = Callable[[NotificationEvent], Union[None, Awaitable[None]]]


@dataclass
class NotificationStats:
    published: int = 0
    dropped: int = 0
    delivered: int = 0
    handler_errors: int = 0


class NotificationBus:
    """Observer list behind a bounded queue."""

    def __init__(self, max_queue_size: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.stats = NotificationStats()

    def subscribe(self, event: str, handler: Handler) -> None:
        if handler not in self._subscribers[event]:
            self._subscribers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        if handler in self._subscribers[event]:
            self._subscribers[event].remove(handler)

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """Enqueue an event. Never blocks, never raises."""
        try:
            self._queue.put_nowait(NotificationEvent(name=event, payload=dict(payload)))
            self.stats.published += 1
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("Notification queue full, dropping event", notification=event, queue_size=self._queue.maxsize)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="notification_bus")
        logger.debug("Notification bus started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the dispatcher after delivering what is already queued."""
        if not self._running:
            await self.drain()
            return
        self._running = False
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Notification bus stop timed out, cancelling", pending=self.pending)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

    async def drain(self) -> None:
        """Deliver every queued event in the current task."""
        while not self._queue.empty():
            await self._dispatch(self._queue.get_nowait())

    async def _run(self) -> None:
        while self._running or not self._queue.empty():
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            await self._dispatch(event)

    async def _dispatch(self, event: NotificationEvent) -> None:
        for handler in list(self._subscribers.get(event.name, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
                self.stats.delivered += 1
            except Exception as e:
                self.stats.handler_errors += 1
                logger.error(
                    "Notification handler failed",
                    notification=event.name,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
