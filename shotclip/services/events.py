"""
Event Bus
Bounded fan-out of progress and log events to any number of subscribers.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..utils.logger import get_logger

logger = get_logger()


class EventBus:
    """Per-subscriber bounded queues; the oldest event is dropped when a queue is full."""

    def __init__(self, max_queue_size: int = 500):
        self._max_queue_size = max(1, max_queue_size)
        self._queues: List[asyncio.Queue] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """Set the loop used for thread-safe publishing."""
        self._loop = loop

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    @staticmethod
    def _enqueue(queue: asyncio.Queue, payload: Dict[str, Any]):
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        try:
            queue.put_nowait(payload)
        except asyncio.QueueFull:
            pass

    def _fanout(self, payload: Dict[str, Any]):
        for queue in list(self._queues):
            self._enqueue(queue, payload)

    def publish(self, payload: Dict[str, Any]):
        """Publish from the loop thread or, once a loop is bound, from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._fanout(payload)
            return

        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._fanout, payload)
            return

        logger.debug("Skipping event; no running event loop")

    def progress(self, fingerprint: str, state: str, progress: float, message: str):
        self.publish(
            {
                "type": "progress",
                "data": {
                    "fingerprint": fingerprint,
                    "state": state,
                    "progress": progress,
                    "message": message,
                },
            }
        )

    def log(self, message: str, level: str = "INFO"):
        self.publish(
            {
                "type": "log",
                "data": {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "level": level,
                    "message": message,
                },
            }
        )
