"""
Pydantic schemas for the batch attendee context lookup.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class SessionHistory(BaseModel):
    total_sessions: int = 0
    attended_count: int = 0
    previous_topics: list[str] = Field(default_factory=list)
    first_session: Optional[datetime] = None
    last_session: Optional[datetime] = None

    model_config = {"frozen": True}


class AttendeeContext(BaseModel):
    """Immutable snapshot cached per normalized email."""

    email: str
    enrichment: Optional[dict[str, Any]] = None
    session_history: SessionHistory = Field(default_factory=SessionHistory)

    model_config = {"frozen": True}


class BatchContextRequest(BaseModel):
    emails: list[str] = Field(..., min_length=1, max_length=200)


class BatchContextResponse(BaseModel):
    contacts: dict[str, AttendeeContext]
