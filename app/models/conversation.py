"""
app/models/conversation.py

Purpose: Conversation history and sender profile models
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from utils.time_utils import utc_now


class StoredMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    handle: Optional[str] = None


class UserProfile(BaseModel):
    """Durable per-sender memory. Survives conversation expiry."""
    handle: str
    name: Optional[str] = None
    facts: List[str] = Field(default_factory=list)
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
