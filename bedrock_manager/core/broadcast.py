"""Fan-out of state-change events to connected observers."""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastEvent:
    """A topic-tagged notification. Never persisted."""
    topic: str
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"topic": self.topic, "payload": dict(self.payload), "timestamp": self.timestamp}


class Observer:
    """
    Subscription handle with a bounded event queue.

    When the queue is full the oldest event is dropped, so the newest state
    always reaches the observer.
    """

    def __init__(self, max_queue: int = 100):
        self._queue: Deque[BroadcastEvent] = deque(maxlen=max_queue)
        self._ready = asyncio.Event()
        self.closed = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    def _deliver(self, event: BroadcastEvent):
        if self.closed:
            return
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
        self._queue.append(event)
        self._ready.set()

    def get_nowait(self) -> Optional[BroadcastEvent]:
        """Next queued event, or None if nothing is queued."""
        if not self._queue:
            return None
        return self._queue.popleft()

    async def get(self) -> Optional[BroadcastEvent]:
        """
        Wait for the next event.

        Returns:
            The event, or None once the observer is closed and drained
        """
        while not self._queue:
            if self.closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._queue.popleft()

    def close(self):
        self.closed = True
        self._ready.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> BroadcastEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class BroadcastHub:
    """
    Push-based event channel.

    Publishing is fire-and-forget. Publishes on the same topic within
    coalesce_window seconds collapse into the last one; a window of 0
    delivers immediately. Must be driven from one event loop; publish() from
    another thread is handed over with call_soon_threadsafe.
    """

    def __init__(self, coalesce_window: float = 0.25, max_queue: int = 100):
        """
        Initialize hub.

        Args:
            coalesce_window: Seconds to hold a topic's event before delivery
            max_queue: Per-observer queue bound
        """
        self.coalesce_window = coalesce_window
        self.max_queue = max_queue
        self._observers: Set[Observer] = set()
        self._pending: Dict[str, BroadcastEvent] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.coalesced = 0

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def subscribe(self) -> Observer:
        """Attach a new observer; it receives events published from now on."""
        self._bind_loop()
        observer = Observer(self.max_queue)
        self._observers.add(observer)
        logger.debug("Observer subscribed (%d attached)", len(self._observers))
        return observer

    def unsubscribe(self, observer: Observer):
        self._observers.discard(observer)
        observer.close()
        logger.debug("Observer unsubscribed (%d attached)", len(self._observers))

    def publish(self, topic: str, payload: Optional[Dict[str, Any]] = None):
        """
        Publish an event to every attached observer.

        Args:
            topic: Event topic (e.g. "server/bedrock-1a2b3c4d")
            payload: JSON-compatible data
        """
        event = BroadcastEvent(topic=topic, payload=dict(payload or {}))

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is not None and running is not self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._accept, event)
            return
        self._accept(event)

    def flush(self):
        """Deliver every held event now."""
        for topic in list(self._pending):
            self._flush_topic(topic)

    def close(self):
        """Flush held events and detach all observers."""
        self.flush()
        for observer in list(self._observers):
            self.unsubscribe(observer)

    def _bind_loop(self):
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass

    def _accept(self, event: BroadcastEvent):
        loop = self._running_loop()
        if self.coalesce_window <= 0 or loop is None:
            self._dispatch(event)
            return

        if event.topic in self._pending:
            self.coalesced += 1
        else:
            self._timers[event.topic] = loop.call_later(self.coalesce_window, self._flush_topic, event.topic)
        self._pending[event.topic] = event

    def _flush_topic(self, topic: str):
        timer = self._timers.pop(topic, None)
        if timer is not None:
            timer.cancel()
        event = self._pending.pop(topic, None)
        if event is not None:
            self._dispatch(event)

    def _dispatch(self, event: BroadcastEvent):
        for observer in list(self._observers):
            if observer.closed:
                self._observers.discard(observer)
                continue
            observer._deliver(event)

    @staticmethod
    def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None
