"""
Side-effect intents handed to notification / CRM workers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class IntentType(str, Enum):
    NO_SHOW_EMAIL = "no_show_email"
    CRM_SYNC = "crm_sync"
    WAITLIST_PROMOTED = "waitlist_promoted"


class SideEffectIntent(BaseModel):
    type: IntentType
    booking_id: int
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
