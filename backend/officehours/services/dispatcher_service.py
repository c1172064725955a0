"""
SideEffectDispatcher: turns committed state transitions into intents.

Intents are emitted only after the transaction that produced them has
committed, and emitting never raises into the caller. A CRM or email outage
therefore cannot stall or roll back a booking confirmation or an attendance
mark.
"""

from typing import Any, Iterable, Optional

from officehours.core.logging import get_logger
from officehours.core.metrics import record_intent
from officehours.schemas.intent import IntentType, SideEffectIntent
from officehours.services.interfaces.intent_queue import IntentQueue

logger = get_logger(__name__)


class SideEffectDispatcher:
    def __init__(self, queue: IntentQueue):
        self.queue = queue

    async def emit(
        self,
        intent_type: IntentType,
        booking_id: int,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        return await self.emit_intent(
            SideEffectIntent(type=intent_type, booking_id=booking_id, payload=payload or {})
        )

    async def emit_intent(self, intent: SideEffectIntent) -> bool:
        try:
            await self.queue.enqueue(intent)
        except Exception as e:
            record_intent(intent.type.value, "enqueue_failed")
            logger.error(
                "intent_enqueue_failed",
                type=intent.type.value,
                booking_id=intent.booking_id,
                error=str(e),
            )
            return False
        record_intent(intent.type.value, "enqueued")
        logger.debug("intent_enqueued", type=intent.type.value, booking_id=intent.booking_id)
        return True

    async def emit_all(self, intents: Iterable[SideEffectIntent]) -> int:
        """Emit each intent independently; returns how many were enqueued."""
        enqueued = 0
        for intent in intents:
            if await self.emit_intent(intent):
                enqueued += 1
        return enqueued

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
