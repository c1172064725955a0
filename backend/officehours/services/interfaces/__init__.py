"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .intent_queue import IntentQueue
from .memory_intent_queue import InMemoryIntentQueue
from .context_backend import ContextCacheBackend, CacheEntry, InMemoryContextBackend
from .enrichment import ContactEnricher, NullEnricher
from .meet_participants import MeetParticipant, MeetParticipantSource, NullParticipantSource, ParticipantsUnavailable

__all__ = [
    'IntentQueue', 'InMemoryIntentQueue',
    'ContextCacheBackend', 'CacheEntry', 'InMemoryContextBackend',
    'ContactEnricher', 'NullEnricher',
    'MeetParticipant', 'MeetParticipantSource', 'NullParticipantSource', 'ParticipantsUnavailable',
]
