"""
Intent queue strategy interface.
Allows swapping the side-effect transport without touching the engine.
"""

from abc import ABC, abstractmethod

from officehours.schemas.intent import SideEffectIntent


class IntentQueue(ABC):
    """
    Interface for side-effect intent transports.

    Implementations:
    - InMemoryIntentQueue: asyncio queue drained by in-process workers
    - RedisIntentQueue: JSON pushed onto a Redis list for external workers
    """

    @abstractmethod
    async def enqueue(self, intent: SideEffectIntent) -> None:
        """
        Hand an intent to the transport. Must not wait on delivery.

        Raises on transport failure; the dispatcher logs and absorbs it.
        """
        pass

    async def start(self) -> None:
        """Start background workers, if the transport has any."""
        pass

    async def stop(self) -> None:
        """Stop background workers, if the transport has any."""
        pass
