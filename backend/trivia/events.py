from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog
from pymongo import ReturnDocument

from .utils import now_ts

logger = structlog.get_logger(__name__)

Listener = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by every ``subscribe`` call; release it with ``unsubscribe``."""

    def __init__(self, release: Callable[[], None]):
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class _Delivery:
    """One subscriber's queue of pending events, drained by its own worker task.

    A slow or stuck listener only delays its own queue; ``append`` never waits on it.
    """

    def __init__(self, topic: str, listener: Listener):
        self.topic = topic
        self.listener = listener
        self.queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def push(self, event: Dict[str, Any]) -> None:
        self.queue.put_nowait(event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                outcome = self.listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Change feed subscriber failed", topic=self.topic, seq=event["seq"])
            finally:
                self.queue.task_done()

    def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            self._worker = None


class ChangeFeed:
    """Persist change events per topic and fan them out to live subscribers.

    Polling clients read the stored log with ``list``; in-process consumers
    (websocket views) register with ``subscribe``.
    """

    def __init__(self, db: Any):
        self.counters_collection = db.counters
        self.events_collection = db.change_events
        self._deliveries: Dict[str, List[_Delivery]] = {}

    async def append(self, topic: str, payload: dict[str, Any]) -> int:
        """Store a new event for a topic, notify subscribers and return its sequence number."""

        counter_id = f"events:{topic}"
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": counter_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

        if not counter_doc:
            # Some Mongo-compatible providers (for example Azure Cosmos DB)
            # complete the upsert but return ``None`` instead of the updated
            # document. Fall back to a direct lookup so we still obtain the
            # sequence number.
            counter_doc = await self.counters_collection.find_one({"_id": counter_id})

        if not counter_doc or "seq" not in counter_doc:
            counter_doc = {"seq": 1}
            await self.counters_collection.update_one(
                {"_id": counter_id},
                {"$set": counter_doc},
                upsert=True,
            )

        seq = int(counter_doc.get("seq", 1))
        event = {
            "topic": topic,
            "seq": seq,
            "timestamp": now_ts(),
            "payload": payload,
        }
        await self.events_collection.insert_one(dict(event))
        self._notify(topic, event)
        return seq

    async def list(self, topic: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        """Return events for a topic that occur after the given sequence."""

        query: dict[str, Any] = {"topic": topic}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = (
            self.events_collection.find(query)
            .sort("seq", 1)
            .limit(limit)
        )

        events: List[dict[str, Any]] = []
        async for doc in cursor:
            events.append(
                {
                    "seq": doc["seq"],
                    "timestamp": doc.get("timestamp"),
                    "payload": doc.get("payload", {}),
                }
            )
        return events

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        delivery = _Delivery(topic, listener)
        deliveries = self._deliveries.setdefault(topic, [])
        deliveries.append(delivery)

        def release() -> None:
            delivery.stop()
            if delivery in deliveries:
                deliveries.remove(delivery)
            if not deliveries:
                self._deliveries.pop(topic, None)

        return Subscription(release)

    def subscriber_count(self, topic: str) -> int:
        return len(self._deliveries.get(topic, []))

    async def join(self) -> None:
        """Wait until every subscriber has handled the events queued so far."""
        for deliveries in list(self._deliveries.values()):
            for delivery in list(deliveries):
                await delivery.queue.join()

    def close(self) -> None:
        for deliveries in self._deliveries.values():
            for delivery in deliveries:
                delivery.stop()
        self._deliveries.clear()

    def _notify(self, topic: str, event: Dict[str, Any]) -> None:
        for delivery in list(self._deliveries.get(topic, [])):
            delivery.push(event)
