"""
app/agent/context.py

Purpose: Per-message context handed to the agent loop
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.conversation import UserProfile
from app.models.user import ReservationCredentials
from app.schemas.webhook import MediaInput, MessageEffect, Reaction


class AgentContext(BaseModel):
    is_group_chat: bool = False
    participant_names: List[str] = Field(default_factory=list)
    chat_name: Optional[str] = None
    incoming_effect: Optional[MessageEffect] = None
    sender_handle: Optional[str] = None
    sender_profile: Optional[UserProfile] = None
    service: Optional[str] = None
    # None means the user is unauthenticated; reservation tools are withheld
    credentials: Optional[ReservationCredentials] = None
    just_onboarded: bool = False


class RememberedUser(BaseModel):
    name: Optional[str] = None
    fact: Optional[str] = None
    is_for_sender: bool = True


class AgentReply(BaseModel):
    """Everything the dispatcher needs to deliver one turn."""
    text: Optional[str] = None
    reaction: Optional[Reaction] = None
    effect: Optional[MessageEffect] = None
    rename_chat: Optional[str] = None
    remembered_user: Optional[RememberedUser] = None
    tool_rounds: int = 0


class AgentInput(BaseModel):
    chat_id: str
    text: str = ""
    images: List[MediaInput] = Field(default_factory=list)
    audio: List[MediaInput] = Field(default_factory=list)
