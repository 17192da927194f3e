"""
app/flow/states.py

Purpose: Auth state metadata and transitions

- Single source of truth for auth negotiation stages
- State transition validation
- Lifetime of the pending record kept for each state
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.config import settings
from app.models.auth import AuthState


@dataclass
class StateMetadata:
    """
    Metadata associated with each auth state.
    """
    name: AuthState
    ttl_seconds: Optional[int] = None  # Lifetime of the pending record, None = no record


STATE_METADATA: Dict[AuthState, StateMetadata] = {
    # No usable credentials and nothing pending
    AuthState.UNAUTHENTICATED: StateMetadata(name=AuthState.UNAUTHENTICATED),
    # Platform texted a code; waiting for the user to relay it
    AuthState.OTP_SENT: StateMetadata(name=AuthState.OTP_SENT, ttl_seconds=settings.OTP_TTL_SECONDS),
    # Code accepted; platform wants the account email
    AuthState.CHALLENGE_PENDING: StateMetadata(
        name=AuthState.CHALLENGE_PENDING,
        ttl_seconds=settings.CHALLENGE_TTL_SECONDS,
    ),
    AuthState.AUTHENTICATED: StateMetadata(name=AuthState.AUTHENTICATED),
}


# Inline token and magic link are valid from every state
STATE_TRANSITIONS: Dict[AuthState, List[AuthState]] = {
    AuthState.UNAUTHENTICATED: [
        AuthState.OTP_SENT,
        AuthState.AUTHENTICATED,
        AuthState.UNAUTHENTICATED,  # OTP rate-limited or send failed
    ],
    AuthState.OTP_SENT: [
        AuthState.AUTHENTICATED,
        AuthState.CHALLENGE_PENDING,
        AuthState.OTP_SENT,  # Rejected code or server-error resend
        AuthState.UNAUTHENTICATED,  # Expired
    ],
    AuthState.CHALLENGE_PENDING: [
        AuthState.AUTHENTICATED,
        AuthState.CHALLENGE_PENDING,  # Email mismatch, retry
        AuthState.UNAUTHENTICATED,  # Registration gave up, or expired
    ],
    AuthState.AUTHENTICATED: [
        AuthState.UNAUTHENTICATED,  # Sign out
        AuthState.AUTHENTICATED,
    ],
}


def is_valid_transition(from_state: AuthState, to_state: AuthState) -> bool:
    """
    Checks if a state transition is valid.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_state in STATE_TRANSITIONS.get(from_state, [])


def get_state_ttl(state: AuthState) -> Optional[int]:
    """TTL in seconds for the pending record stored while in `state`."""
    return STATE_METADATA[state].ttl_seconds
