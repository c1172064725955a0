"""
Attendee context cache for the batch attendee lookup.

CACHING STRATEGY
================

What we cache:
  - One immutable AttendeeContext snapshot per normalized email: CRM
    enrichment plus session-history aggregates computed from bookings.
  - Key pattern (Redis backend): "attendee:context:{email}"

Why:
  - Hosts expand attendee rows in the dashboard repeatedly; each expand would
    otherwise hit the CRM once per attendee.

Expiry:
  - TTL of 10 minutes, judged against an injectable clock so tests can move
    time instead of sleeping. The Redis backend also sets the TTL on the key
    as a safety net.

Misses:
  - All misses of one call share a single bookings query for history.
  - CRM lookups fan out with a fixed concurrency limit (default 5).
  - Two concurrent callers that miss the same key may both fetch it. That is
    duplicate work, never an inconsistency: entries are whole snapshots.
"""

import asyncio
import json
import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Iterable, Optional

from officehours.core.logging import get_logger
from officehours.core.metrics import record_cache_lookup
from officehours.db.base import utcnow
from officehours.infrastructure.redis_client import get_redis
from officehours.schemas.attendee import AttendeeContext, SessionHistory
from officehours.services.interfaces.context_backend import CacheEntry, ContextCacheBackend
from officehours.services.interfaces.enrichment import ContactEnricher
from officehours.services.slot_store import SlotStore, normalize_email

logger = get_logger(__name__)

MAX_TOPICS = 5
MAX_TOPIC_LENGTH = 100


class RedisContextBackend(ContextCacheBackend):
    """Shared cache for multi-instance deployments. Cache errors degrade to misses."""

    def __init__(self, prefix: str = "attendee:context:"):
        self.prefix = prefix

    async def get(self, key: str) -> Optional[CacheEntry]:
        client = await get_redis()
        if not client:
            return None
        try:
            data = await client.get(self.prefix + key)
            if not data:
                return None
            payload = json.loads(data)
            return CacheEntry(
                context=AttendeeContext.model_validate(payload["context"]),
                stored_at=payload["stored_at"],
            )
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        client = await get_redis()
        if not client:
            return
        payload = {"context": entry.context.model_dump(mode="json"), "stored_at": entry.stored_at}
        try:
            await client.setex(self.prefix + key, ttl_seconds, json.dumps(payload))
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def clear(self) -> None:
        client = await get_redis()
        if not client:
            return
        try:
            deleted = 0
            async for key in client.scan_iter(match=f"{self.prefix}*", count=100):
                await client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", keys_deleted=deleted)
        except Exception as e:
            logger.error("cache_invalidation_error", error=str(e))


def build_session_history(rows: list, now: datetime) -> SessionHistory:
    """
    Aggregate one attendee's seat-holding bookings, latest session first.
    Only sessions that have started count as past sessions.
    """
    past = [(booking, start_time) for booking, start_time in rows if start_time < now]
    if not past:
        return SessionHistory()

    topics: list[str] = []
    for booking, _ in past:
        for response in (booking.question_responses or {}).values():
            if isinstance(response, str) and response.strip():
                topics.append(response.strip()[:MAX_TOPIC_LENGTH])

    return SessionHistory(
        total_sessions=len(past),
        attended_count=sum(1 for booking, _ in past if booking.attended_at is not None),
        previous_topics=topics[:MAX_TOPICS],
        first_session=past[-1][1],
        last_session=past[0][1],
    )


class AttendeeContextCache:
    def __init__(
        self,
        store: SlotStore,
        enricher: ContactEnricher,
        backend: ContextCacheBackend,
        ttl_seconds: int = 600,
        concurrency: int = 5,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.enricher = enricher
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.concurrency = concurrency
        self._clock = clock
        self._now = now

    async def get_many(self, emails: Iterable[str]) -> dict[str, AttendeeContext]:
        normalized = list(dict.fromkeys(normalize_email(e) for e in emails if e and e.strip()))
        contexts: dict[str, AttendeeContext] = {}
        missing: list[str] = []

        for email in normalized:
            entry = await self.backend.get(email)
            if entry is not None and self._clock() - entry.stored_at < self.ttl_seconds:
                record_cache_lookup(hit=True)
                contexts[email] = entry.context
            else:
                record_cache_lookup(hit=False)
                missing.append(email)

        if not missing:
            return contexts

        histories = await self._session_histories(missing)
        enrichments = await self._fetch_enrichments(missing)

        for email in missing:
            context = AttendeeContext(
                email=email,
                enrichment=enrichments.get(email),
                session_history=histories.get(email, SessionHistory()),
            )
            await self.backend.set(email, CacheEntry(context=context, stored_at=self._clock()), self.ttl_seconds)
            contexts[email] = context

        logger.info("attendee_context_loaded", requested=len(normalized), fetched=len(missing))
        return contexts

    async def invalidate(self) -> None:
        await self.backend.clear()

    async def _session_histories(self, emails: list[str]) -> dict[str, SessionHistory]:
        grouped = defaultdict(list)
        for booking, start_time in await self.store.bookings_for_emails(emails):
            grouped[booking.email].append((booking, start_time))
        now = self._now()
        return {email: build_session_history(rows, now) for email, rows in grouped.items()}

    async def _fetch_enrichments(self, emails: list[str]) -> dict[str, Optional[dict]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch_with_semaphore(email: str):
            async with semaphore:
                try:
                    return email, await self.enricher.fetch(email)
                except Exception as e:
                    logger.warning("enrichment_failed", email=email, error=str(e))
                    return email, None

        results = await asyncio.gather(*[fetch_with_semaphore(email) for email in emails])
        return dict(results)
