"""
EV Dealer Hub - Event Bus

Real-time subscription interface used by the dashboards (live payouts,
order board, notifications):

    async with bus.subscribe("payouts") as events:
        async for event in events:
            ...

- events for a topic are delivered in publish order, and services publish
  only after the datastore write committed
- every event carries a unique id; Subscription drops ids it already saw
- leaving the context (or close()) unsubscribes
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from config import now_iso

logger = logging.getLogger("event_bus")

TOPICS = ["payouts", "orders", "leads", "notifications", "test_rides"]

_CLOSED = object()


class Subscription:
    """One consumer's view of a topic."""

    def __init__(self, bus: "EventBus", topic: str, max_queue: int):
        self.bus = bus
        self.topic = topic
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._seen: Set[str] = set()

    def _offer(self, event: dict) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        while True:
            if self.closed and self._queue.empty():
                raise StopAsyncIteration
            event = await self._queue.get()
            if event is _CLOSED:
                raise StopAsyncIteration
            if event["id"] in self._seen:
                continue
            self._seen.add(event["id"])
            return event

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next event, or None on timeout / close."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout)
        except (asyncio.TimeoutError, StopAsyncIteration):
            return None

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.bus._remove(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class EventBus:
    """In-process fan-out of committed state changes, per topic."""

    def __init__(self, max_queue: int = 1000):
        self.max_queue = max_queue
        self._subscribers: Dict[str, Set[Subscription]] = defaultdict(set)

    def subscribe(self, topic: str) -> Subscription:
        sub = Subscription(self, topic, self.max_queue)
        self._subscribers[topic].add(sub)
        logger.debug(f"[EVENTS] subscribe topic={topic} total={len(self._subscribers[topic])}")
        return sub

    def _remove(self, sub: Subscription):
        self._subscribers[sub.topic].discard(sub)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event_type: str, entity_id: str, payload: Dict[str, Any] = None) -> dict:
        event = {
            "id": str(uuid.uuid4()),
            "topic": topic,
            "type": event_type,
            "entity_id": entity_id,
            "payload": payload or {},
            "created_at": now_iso(),
        }
        for sub in list(self._subscribers.get(topic, ())):
            if not sub._offer(event):
                logger.warning(f"[EVENTS] queue full, dropping subscriber on {topic}")
                sub.close()
        return event
