from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Optional


class LiveFeed:
    """Fan-out of recording events to Server-Sent-Event subscribers.

    ``publish`` must be called on the event-loop thread. Each subscriber owns a
    bounded queue; a slow subscriber loses events instead of stalling the
    transcript pipeline.
    """

    def __init__(self, history_limit: int = 200, queue_size: int = 500) -> None:
        self._history: list[dict] = []
        self._history_limit = history_limit
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()
        self._logger = logging.getLogger("mint.feed")

    def publish(self, event_type: str, meeting_id: Optional[str], data: Optional[dict] = None) -> dict:
        payload: dict = {
            "type": event_type,
            "meeting_id": meeting_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if data:
            payload["data"] = data
        self._history.append(payload)
        if len(self._history) > self._history_limit:
            self._history = self._history[-(self._history_limit // 2):]
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                self._logger.warning("Subscriber queue full; dropping %s event", event_type)
        return payload

    def recent(self, limit: int = 50) -> list[dict]:
        return self._history[-limit:]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, heartbeat_seconds: float = 5.0) -> AsyncIterator[dict]:
        """Yield events as they arrive; a heartbeat event is yielded when idle."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        self._logger.debug("Feed subscriber added (total=%d)", len(self._subscribers))
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield {"type": "heartbeat"}
                    continue
                yield event
        finally:
            self._subscribers.discard(queue)
            self._logger.debug("Feed subscriber removed (total=%d)", len(self._subscribers))
