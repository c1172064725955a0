"""
In-process intent queue with background delivery workers.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from officehours.core.logging import get_logger
from officehours.core.metrics import record_intent
from officehours.schemas.intent import IntentType, SideEffectIntent
from officehours.services.interfaces.intent_queue import IntentQueue

logger = get_logger(__name__)

IntentHandler = Callable[[SideEffectIntent], Awaitable[None]]


class InMemoryIntentQueue(IntentQueue):
    """
    asyncio.Queue drained by `worker_count` tasks.

    Each registered handler is retried with exponential backoff up to
    `max_attempts`; an intent that still fails is logged and dropped. A
    failing handler never affects the booking state that produced the intent.

    Use when:
    - Single-instance deployment
    - Tests (register handlers, then `await queue.drain()`)
    """

    def __init__(
        self,
        worker_count: int = 2,
        max_attempts: int = 5,
        base_delay: float = 0.5,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._queue: asyncio.Queue[SideEffectIntent] = asyncio.Queue()
        self._handlers: dict[IntentType, list[IntentHandler]] = {}
        self._workers: list[asyncio.Task] = []
        self.worker_count = worker_count
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    def register(self, intent_type: IntentType, handler: IntentHandler) -> None:
        self._handlers.setdefault(intent_type, []).append(handler)

    async def enqueue(self, intent: SideEffectIntent) -> None:
        self._queue.put_nowait(intent)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"intent-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info("intent_workers_started", workers=self.worker_count)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("intent_workers_stopped", pending=self._queue.qsize())

    async def drain(self) -> None:
        """Wait until every enqueued intent has been processed."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _worker(self, number: int) -> None:
        while True:
            intent = await self._queue.get()
            try:
                await self._deliver(intent)
            finally:
                self._queue.task_done()

    async def _deliver(self, intent: SideEffectIntent) -> None:
        handlers = self._handlers.get(intent.type, [])
        if not handlers:
            logger.debug("intent_unhandled", type=intent.type.value, booking_id=intent.booking_id)
            return

        for handler in handlers:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    await handler(intent)
                    record_intent(intent.type.value, "delivered")
                    break
                except Exception as e:
                    if attempt == self.max_attempts:
                        record_intent(intent.type.value, "dropped")
                        logger.error(
                            "intent_dropped",
                            type=intent.type.value,
                            booking_id=intent.booking_id,
                            attempts=attempt,
                            error=str(e),
                        )
                        break
                    record_intent(intent.type.value, "retried")
                    logger.warning(
                        "intent_retry",
                        type=intent.type.value,
                        booking_id=intent.booking_id,
                        attempt=attempt,
                        error=str(e),
                    )
                    await self._sleep(self.base_delay * (2 ** (attempt - 1)))
