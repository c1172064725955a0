"""
Backend strategy factory.
Configures which intent queue and which context cache storage to use.
"""

from officehours.core.config import Settings, get_settings
from officehours.services.cache_service import RedisContextBackend
from officehours.services.intent_queue_service import RedisIntentQueue
from officehours.services.interfaces.context_backend import ContextCacheBackend, InMemoryContextBackend
from officehours.services.interfaces.intent_queue import IntentQueue
from officehours.services.interfaces.memory_intent_queue import InMemoryIntentQueue


def get_intent_queue(settings: Settings = None) -> IntentQueue:
    """
    Get configured intent queue.

    Strategy selection:
    - memory: InMemoryIntentQueue (single instance, tests)
    - redis: RedisIntentQueue (external notification / CRM workers)

    Overridden via INTENT_QUEUE_BACKEND env var.
    """
    settings = settings or get_settings()

    if settings.INTENT_QUEUE_BACKEND == "redis":
        return RedisIntentQueue(key=settings.INTENT_QUEUE_KEY)
    else:
        return InMemoryIntentQueue(
            worker_count=settings.INTENT_WORKER_COUNT,
            max_attempts=settings.INTENT_MAX_ATTEMPTS,
            base_delay=settings.INTENT_RETRY_BASE_DELAY,
        )


def get_context_backend(settings: Settings = None) -> ContextCacheBackend:
    """Overridden via CONTEXT_CACHE_BACKEND env var (memory, redis)."""
    settings = settings or get_settings()

    if settings.CONTEXT_CACHE_BACKEND == "redis":
        return RedisContextBackend(prefix=settings.CONTEXT_CACHE_KEY_PREFIX)
    else:
        return InMemoryContextBackend()
