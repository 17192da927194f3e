"""
app/models/user.py

Purpose: User and credential models

- User record keyed by phone number (USER#{phone} / PROFILE)
- Decrypted reservation-platform credentials
"""

from datetime import datetime

from pydantic import BaseModel, Field

from utils.time_utils import utc_now


class User(BaseModel):
    """Created on first contact; lastActive bumps on every message."""
    phone_number: str = Field(..., description="Sender handle in E.164 format")
    created_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)
    onboarding_complete: bool = False


class ReservationCredentials(BaseModel):
    """
    What the vault encrypts. Never logged and never stored in plaintext
    outside the development fallback encoding.
    """
    resy_auth_token: str

    def __repr__(self) -> str:
        return "ReservationCredentials(resy_auth_token=***)"

    __str__ = __repr__


class UserContext(BaseModel):
    """Resolved identity for one inbound message."""
    user: User
    credentials: ReservationCredentials
    from_fallback: bool = False
