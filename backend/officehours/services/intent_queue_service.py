"""
Redis-backed intent queue.
Implements IntentQueue by pushing JSON onto a Redis list that notification
and CRM workers consume (BRPOP) outside this service.

Failure mode:
  A Redis outage surfaces as an exception from enqueue(). The dispatcher
  logs and counts it; the booking or attendance write that produced the
  intent has already committed and stays committed. The database remains
  the source of truth for anything a worker needs to reconcile later.
"""

from officehours.core.config import get_settings
from officehours.core.logging import get_logger
from officehours.core.metrics import redis_connection_errors
from officehours.infrastructure.redis_client import get_redis
from officehours.schemas.intent import SideEffectIntent
from officehours.services.interfaces.intent_queue import IntentQueue

logger = get_logger(__name__)


class IntentQueueUnavailable(Exception):
    pass


class RedisIntentQueue(IntentQueue):
    """
    Use when:
    - Several engine instances share notification / CRM workers
    - Intents must survive an engine restart
    """

    def __init__(self, key: str = None):
        self.key = key or get_settings().INTENT_QUEUE_KEY

    async def enqueue(self, intent: SideEffectIntent) -> None:
        client = await get_redis()
        if client is None:
            raise IntentQueueUnavailable("Redis is disabled or unreachable")
        try:
            await client.lpush(self.key, intent.model_dump_json())
        except Exception:
            redis_connection_errors.inc()
            raise
