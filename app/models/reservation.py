"""
app/models/reservation.py

Purpose: Reservation platform data models

- Venues, slots, bookings and cancellations returned to the agent
- OTP send / verify outcomes for the auth state machine
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.auth import ChallengeField


class VenueLocation(BaseModel):
    city: str = ""
    state: str = ""
    neighborhood: Optional[str] = None


class Venue(BaseModel):
    venue_id: int
    name: str
    location: VenueLocation = Field(default_factory=VenueLocation)
    cuisine: List[str] = Field(default_factory=list)
    price_range: int = 0
    rating: Optional[float] = None
    url_slug: str = ""
    url: str = ""


class TimeSlot(BaseModel):
    """config_token expires within minutes; never book from a stale one."""
    config_token: str
    date: str
    time: str
    party_size: int
    type: str = ""


class BookingConfirmation(BaseModel):
    resy_token: str
    reservation_id: Optional[int] = None
    venue_name: str = ""
    venue_url: str = ""
    date: str
    time: str
    party_size: int
    type: str = ""


class Reservation(BaseModel):
    resy_token: str
    reservation_id: Optional[int] = None
    venue_name: str = ""
    date: str = ""
    time: str = ""
    party_size: int = 0
    type: str = ""


class CancellationResult(BaseModel):
    success: bool
    resy_token: str
    error: Optional[str] = None


class OTPSendResult(str, Enum):
    SENT = "sms"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class Challenge(BaseModel):
    """Extra verification the platform wants after accepting an OTP."""
    claim_token: str
    challenge_id: str = ""
    mobile_number: str
    first_name: Optional[str] = None
    is_new_user: bool = False
    required_fields: List[ChallengeField] = Field(default_factory=list)


class OTPVerificationOutcome(str, Enum):
    TOKEN = "token"
    CHALLENGE = "challenge"
    SERVER_ERROR = "server_error"
    REJECTED = "rejected"


class OTPVerification(BaseModel):
    """Tagged result of verify_otp; token/challenge set only for their outcome."""
    outcome: OTPVerificationOutcome
    token: Optional[str] = None
    challenge: Optional[Challenge] = None

    @classmethod
    def with_token(cls, token: str) -> "OTPVerification":
        return cls(outcome=OTPVerificationOutcome.TOKEN, token=token)

    @classmethod
    def with_challenge(cls, challenge: Challenge) -> "OTPVerification":
        return cls(outcome=OTPVerificationOutcome.CHALLENGE, challenge=challenge)

    @classmethod
    def server_error(cls) -> "OTPVerification":
        return cls(outcome=OTPVerificationOutcome.SERVER_ERROR)

    @classmethod
    def rejected(cls) -> "OTPVerification":
        return cls(outcome=OTPVerificationOutcome.REJECTED)

    def __repr__(self) -> str:
        return f"OTPVerification(outcome={self.outcome.value})"


class ProfileSummary(BaseModel):
    """Cleaned subset of the platform profile (no payment method ids)."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    num_bookings: Optional[int] = None
    member_since: Optional[str] = None
    is_resy_select: Optional[bool] = None
    profile_image_url: Optional[str] = None
