"""
Async action stream.
Bridges synchronous registry notifications into an asyncio.Queue so async
consumers (HTTP streaming, background executors) can await action updates,
including updates emitted from other threads.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

from llmos.actions.models import ActionRecord
from llmos.actions.registry import ActionRegistry

logger = logging.getLogger(__name__)

_CLOSED = object()


class ActionStreamError(Exception):
    """Action stream operation error."""
    pass


class ActionStream:
    """
    Per-consumer queue of action records.

    Records arrive in registry notification order. When the consumer falls
    more than ``max_queue_size`` records behind, new records are dropped and
    counted rather than blocking the producer.
    """

    def __init__(self, registry: ActionRegistry, max_queue_size: int = 1000):
        self.registry = registry
        self.max_queue_size = max_queue_size
        self.queue: Optional[asyncio.Queue] = None
        self.running = False
        self.delivered_count = 0
        self.dropped_count = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def start(self):
        """Start receiving records from the registry."""
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue()
        self._unsubscribe = self.registry.subscribe(self._on_action)
        self.running = True

        logger.info(f"ActionStream started with max_queue_size={self.max_queue_size}")

    async def stop(self):
        """Stop receiving records; pending records can still be drained."""
        if not self.running:
            return

        self.running = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self.queue.put_nowait(_CLOSED)

        logger.info("ActionStream stopped")

    async def get(self, timeout: Optional[float] = None) -> ActionRecord:
        """
        Wait for the next record.

        Raises:
            ActionStreamError: If the stream was never started or has been
                stopped and drained
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if self.queue is None:
            raise ActionStreamError("ActionStream not started")

        if timeout is None:
            item = await self.queue.get()
        else:
            item = await asyncio.wait_for(self.queue.get(), timeout=timeout)

        if item is _CLOSED:
            # Leave the marker for any other waiter
            self.queue.put_nowait(_CLOSED)
            raise ActionStreamError("ActionStream closed")
        return item

    def __aiter__(self) -> AsyncIterator[ActionRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ActionRecord]:
        while True:
            try:
                yield await self.get()
            except ActionStreamError:
                return

    def _on_action(self, record: ActionRecord):
        """Registry listener; may be called from any thread."""
        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if current_loop is self._loop:
            self._enqueue(record)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, record)

    def _enqueue(self, record: ActionRecord):
        if not self.running:
            return
        if self.queue.qsize() >= self.max_queue_size:
            self.dropped_count += 1
            logger.error(f"ActionStream queue full, dropping record: {record.id} ({record.status.value})")
            return
        self.queue.put_nowait(record)
        self.delivered_count += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get action stream statistics."""
        return {
            "running": self.running,
            "delivered_count": self.delivered_count,
            "dropped_count": self.dropped_count,
            "queue_size": self.queue.qsize() if self.queue else 0,
            "max_queue_size": self.max_queue_size,
        }
