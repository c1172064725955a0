"""
Storage backend interface for the attendee context cache.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from officehours.schemas.attendee import AttendeeContext


@dataclass(frozen=True)
class CacheEntry:
    context: AttendeeContext
    stored_at: float  # cache clock reading at write time


class ContextCacheBackend(ABC):
    """
    Where cached attendee snapshots live.

    Freshness is decided by the cache against its own injectable clock, so a
    backend only stores and returns entries. `ttl_seconds` is passed through
    for backends that can expire keys themselves.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemoryContextBackend(ContextCacheBackend):
    """Process-local map. Use for single-instance deployments and tests."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        self._entries[key] = entry

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
