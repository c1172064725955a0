"""
External contact enrichment source (CRM lookup) interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class ContactEnricher(ABC):
    """
    Fetches CRM context for one attendee email.

    Implementations talk to the CRM; the engine only needs this call.
    """

    @abstractmethod
    async def fetch(self, email: str) -> Optional[dict[str, Any]]:
        """
        Args:
            email: Normalized attendee email

        Returns:
            Enrichment payload, or None when the contact is unknown
        """
        pass


class NullEnricher(ContactEnricher):
    """No CRM connected - every contact is unknown."""

    async def fetch(self, email: str) -> Optional[dict[str, Any]]:
        return None
