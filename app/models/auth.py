"""
app/models/auth.py

Purpose: Auth negotiation models

- AuthState: the single authoritative per-user auth state
- PendingOTP / PendingChallenge payloads
- AuthSession: one record (USER#{phone} / AUTH_SESSION) holding at most
  one pending payload, tagged by state
- Magic-link tokens
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from utils.time_utils import utc_now


class AuthState(str, Enum):
    """
    UNAUTHENTICATED -> OTP_SENT -> CHALLENGE_PENDING -> AUTHENTICATED,
    plus UNAUTHENTICATED -> AUTHENTICATED (inline token, magic link)
    and AUTHENTICATED -> UNAUTHENTICATED (sign out).
    """
    UNAUTHENTICATED = "unauthenticated"
    OTP_SENT = "otp_sent"
    CHALLENGE_PENDING = "challenge_pending"
    AUTHENTICATED = "authenticated"


class ChallengeField(BaseModel):
    """One extra field the platform demands after OTP (usually the account email)."""
    name: str
    type: str = "text"
    message: Optional[str] = None

    @property
    def is_email(self) -> bool:
        return self.type == "email" or self.name == "em_address"


class PendingOTP(BaseModel):
    chat_id: str
    sent_at: datetime = Field(default_factory=utc_now)


class PendingChallenge(BaseModel):
    chat_id: str
    claim_token: str
    challenge_id: str = ""
    mobile_number: str
    first_name: Optional[str] = None
    is_new_user: bool = False
    required_fields: List[ChallengeField] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=utc_now)


class AuthSession(BaseModel):
    """
    Exactly one pending payload matches the state; the validator rejects
    anything else so an OTP and a challenge can never coexist.
    """
    state: AuthState
    pending_otp: Optional[PendingOTP] = None
    pending_challenge: Optional[PendingChallenge] = None

    @model_validator(mode="after")
    def check_payload_matches_state(self):
        if self.state == AuthState.OTP_SENT:
            if self.pending_otp is None or self.pending_challenge is not None:
                raise ValueError("otp_sent session must carry only a pending OTP")
        elif self.state == AuthState.CHALLENGE_PENDING:
            if self.pending_challenge is None or self.pending_otp is not None:
                raise ValueError("challenge_pending session must carry only a pending challenge")
        elif self.pending_otp is not None or self.pending_challenge is not None:
            raise ValueError(f"{self.state.value} session cannot carry a pending payload")
        return self


class AuthToken(BaseModel):
    """Magic-link token record (AUTHTOKEN#{token} / AUTHTOKEN)."""
    token: str
    phone_number: str
    chat_id: str
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    used: bool = False


class MagicLink(BaseModel):
    url: str
    token: str
    expires_at: datetime
