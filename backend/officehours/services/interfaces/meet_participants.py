"""
Conference attendance source interface used by the automated attendance sync.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from officehours.models import Slot


@dataclass(frozen=True)
class MeetParticipant:
    email: Optional[str]
    display_name: Optional[str]
    minutes_present: float


class ParticipantsUnavailable(Exception):
    """The provider could not report participants for a slot."""


class MeetParticipantSource(ABC):
    """Reports who joined a slot's conference and for how long."""

    @abstractmethod
    async def participants(self, slot: Slot) -> list[MeetParticipant]:
        """Raises ParticipantsUnavailable when the provider has no data."""
        pass


class NullParticipantSource(MeetParticipantSource):
    """No conferencing provider connected."""

    async def participants(self, slot: Slot) -> list[MeetParticipant]:
        raise ParticipantsUnavailable("No conferencing provider configured")
