"""
app/services/resy_service.py

Purpose: Resy reservation platform integration

- Venue search, slot lookup, booking, cancellation, reservation listing
- Mobile OTP auth: send code, verify code, complete challenge, register
- Hard request timeout on every call (RESY_TIMEOUT_SECONDS)
- Expired/invalid credentials surface as ReservationAuthError
- Named, ordered fallback chains for the undocumented claim/registration endpoints
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.config import settings
from app.core.exceptions import ReservationAuthError, ReservationPlatformError
from app.core.logging import get_logger
from app.models.auth import ChallengeField
from app.models.reservation import (
    BookingConfirmation,
    CancellationResult,
    Challenge,
    OTPSendResult,
    OTPVerification,
    ProfileSummary,
    Reservation,
    TimeSlot,
    Venue,
    VenueLocation,
)
from utils.message_utils import redact_phone
from utils.time_utils import time_to_minutes

logger = get_logger(__name__)

RESY_WEB_ORIGIN = "https://resy.com"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Resy answers 419, or sometimes 500 with one of these words, for a bad token
AUTH_ERROR_STATUS = 419
AUTH_ERROR_BODY = re.compile(r"unauthorized|auth|token", re.IGNORECASE)

# Tried in order after an OTP is accepted without a challenge id
CLAIM_EXCHANGE_ENDPOINTS = ("/3/auth/mobile/claim", "/3/auth/claim")
# Tried in order once a new user has given us their email
REGISTRATION_ENDPOINTS = ("/3/auth/mobile/claim", "/3/user", "/2/user", "/3/auth/register")

TOKEN_KEYS = ("token", "auth_token", "access_token")

NO_SLOTS_MESSAGE = "No available slots for this venue/date/party size. The restaurant may be fully booked."
NO_PAYMENT_METHOD_MESSAGE = "No payment method on file. Add one at resy.com/account before booking."
SESSION_EXPIRED_MESSAGE = (
    'Your Resy session has expired. Text "sign out" then reconnect your account to refresh it.'
)


def extract_token(data: Any) -> Optional[str]:
    """Pulls an auth token from whichever key the endpoint happened to use."""
    if not isinstance(data, dict):
        return None
    for key in TOKEN_KEYS:
        value = data.get(key)
        if value:
            return str(value)
    return None


def pick_slot(slots: Sequence[TimeSlot], desired_time: Optional[str] = None) -> TimeSlot:
    """
    Chooses which freshly fetched slot to book.

    - No desired time: the first slot.
    - Exact "HH:MM" match wins.
    - Otherwise the smallest absolute minutes-of-day difference.
      Ties go to whichever slot came first in `slots`.

    Raises:
        ValueError: If slots is empty
    """
    if not slots:
        raise ValueError("no slots to choose from")

    if not desired_time:
        return slots[0]

    for slot in slots:
        if slot.time == desired_time:
            return slot

    target = time_to_minutes(desired_time)
    if target is None:
        return slots[0]

    def distance(slot: TimeSlot) -> float:
        minutes = time_to_minutes(slot.time)
        return abs(minutes - target) if minutes is not None else float("inf")

    # min() keeps the first of equal keys
    return min(slots, key=distance)


def _slot_time(start: str) -> str:
    """'2025-01-15 19:30:00' -> '19:30'."""
    time_part = (start or "").strip().split(" ")[-1].split("T")[-1]
    return time_part[:5]


def _city_slug(locality: Optional[str]) -> str:
    return re.sub(r"\s+", "-", (locality or "new-york").lower())


class ResyService:
    """
    Service class for the Resy API.

    One httpx.AsyncClient is shared per instance and closed on shutdown.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.RESY_BASE_URL.rstrip("/")
        self.api_key = settings.RESY_API_KEY
        self._timeout = settings.RESY_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    def _base_headers(self) -> Dict[str, str]:
        return {
            "authorization": f'ResyAPI api_key="{self.api_key}"',
            "origin": RESY_WEB_ORIGIN,
            "referer": f"{RESY_WEB_ORIGIN}/",
            "accept": "application/json, text/plain, */*",
            "user-agent": BROWSER_USER_AGENT,
        }

    def _auth_headers(self, auth_token: str) -> Dict[str, str]:
        headers = self._base_headers()
        headers["x-resy-auth-token"] = auth_token
        headers["x-resy-universal-auth"] = auth_token
        return headers

    def _pre_auth_headers(self) -> Dict[str, str]:
        headers = self._base_headers()
        headers["content-type"] = FORM_CONTENT_TYPE
        return headers

    async def _request(
        self,
        auth_token: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, Any]] = None,
        allow_list: bool = False,
    ) -> Any:
        """
        Authenticated request. Returns the decoded JSON body.

        Raises:
            ReservationAuthError: Credential expired or invalid
            ReservationPlatformError: Any other failure, including timeouts
                and bodies that are not a JSON object
        """
        headers = self._auth_headers(auth_token)
        try:
            if form is not None:
                headers["content-type"] = FORM_CONTENT_TYPE
                response = await self.client.request(method, path, params=params, data=form, headers=headers)
            else:
                response = await self.client.request(method, path, params=params, json=json_body, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"⏱️ Resy {method} {path} timed out after {self._timeout}s")
            raise ReservationPlatformError("Resy took too long to respond. Please try again.") from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling Resy {method} {path}: {e}")
            raise ReservationPlatformError("Unable to reach Resy right now.") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                data = response.json()
            except ValueError as e:
                raise ReservationPlatformError(
                    f"Resy returned an unreadable response for {path}",
                    upstream_status=response.status_code,
                ) from e

            if isinstance(data, dict) or (allow_list and isinstance(data, list)):
                return data
            logger.error(f"❌ Resy returned {type(data).__name__} for {method} {path}")
            raise ReservationPlatformError(
                f"Resy returned an unexpected response for {path}",
                upstream_status=response.status_code,
            )

        body = response.text
        if response.status_code == AUTH_ERROR_STATUS or (
            response.status_code == 500 and AUTH_ERROR_BODY.search(body)
        ):
            logger.warning(f"🔑 Resy rejected credential on {method} {path} ({response.status_code})")
            raise ReservationAuthError(SESSION_EXPIRED_MESSAGE, upstream_status=response.status_code)

        logger.error(f"❌ Resy API error {response.status_code} on {method} {path}")
        raise ReservationPlatformError(
            f"Resy API {response.status_code}: {body[:200]}",
            upstream_status=response.status_code,
        )

    async def _post_form(self, path: str, form: Dict[str, Any]) -> httpx.Response:
        """Unauthenticated form POST for the mobile auth endpoints."""
        return await self.client.post(path, data=form, headers=self._pre_auth_headers())

    # ==============================================
    # BOOKING OPERATIONS
    # ==============================================

    async def search_restaurants(
        self,
        auth_token: str,
        query: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> List[Venue]:
        lat = lat if lat is not None else settings.DEFAULT_LATITUDE
        lng = lng if lng is not None else settings.DEFAULT_LONGITUDE
        logger.info(f"🔎 Searching Resy for {query!r} near ({lat}, {lng})")

        data = await self._request(
            auth_token,
            "POST",
            "/3/venuesearch/search",
            json_body={"geo": {"latitude": lat, "longitude": lng}, "query": query, "types": ["venue"]},
        )

        hits = (data.get("search") or {}).get("hits") or []
        venues = []
        for hit in hits:
            location = hit.get("location") or {}
            url_slug = hit.get("url_slug") or ""
            venues.append(Venue(
                venue_id=(hit.get("id") or {}).get("resy"),
                name=hit.get("name", ""),
                location=VenueLocation(
                    city=location.get("locality") or "",
                    state=location.get("region") or "",
                    neighborhood=location.get("neighborhood"),
                ),
                cuisine=hit.get("cuisine") or [],
                price_range=hit.get("price_range") or 0,
                rating=hit.get("rating"),
                url_slug=url_slug,
                url=f"{RESY_WEB_ORIGIN}/cities/{_city_slug(location.get('locality'))}/{url_slug}",
            ))

        logger.info(f"Found {len(venues)} venues")
        return venues

    async def find_slots(
        self,
        auth_token: str,
        venue_id: int,
        day: str,
        party_size: int,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> List[TimeSlot]:
        lat = lat if lat is not None else settings.DEFAULT_LATITUDE
        lng = lng if lng is not None else settings.DEFAULT_LONGITUDE
        logger.info(f"📅 Finding slots for venue {venue_id} on {day}, party of {party_size}")

        data = await self._request(
            auth_token,
            "GET",
            "/4/find",
            params={
                "lat": lat,
                "long": lng,
                "day": day,
                "party_size": party_size,
                "venue_id": venue_id,
            },
        )

        venues = (data.get("results") or {}).get("venues") or []
        raw_slots = venues[0].get("slots", []) if venues else []

        slots = [
            TimeSlot(
                config_token=slot["config"]["token"],
                date=day,
                time=_slot_time((slot.get("date") or {}).get("start", "")),
                party_size=party_size,
                type=slot["config"].get("type") or "Dining Room",
            )
            for slot in raw_slots
        ]
        logger.info(f"Found {len(slots)} available slots")
        return slots

    async def book_reservation(
        self,
        auth_token: str,
        venue_id: int,
        day: str,
        party_size: int,
        desired_time: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> BookingConfirmation:
        """
        Books a table: fresh slots -> details (book token) -> payment method -> book.

        Slot tokens expire within minutes, so this always re-fetches slots
        instead of accepting a token from earlier in the conversation.
        """
        logger.info(
            f"🍽️ Booking venue {venue_id} on {day}, party of {party_size}, "
            f"desired time: {desired_time or 'any'}"
        )

        fresh_slots = await self.find_slots(auth_token, venue_id, day, party_size, lat, lng)
        if not fresh_slots:
            raise ReservationPlatformError(NO_SLOTS_MESSAGE)

        slot = pick_slot(fresh_slots, desired_time)
        logger.info(f"Matched slot at {slot.time} (requested {desired_time or 'any'})")

        details = await self._request(
            auth_token,
            "GET",
            "/3/details",
            params={"config_id": slot.config_token, "day": day, "party_size": party_size},
        )
        book_token = (details.get("book_token") or {}).get("value")
        if not book_token:
            raise ReservationPlatformError("Resy did not return a booking token for that slot.")

        venue = details.get("venue") or {}
        venue_name = venue.get("name") or "Restaurant"
        slot_type = (details.get("config") or {}).get("type") or slot.type or "Dining Room"
        city_slug = (venue.get("location") or {}).get("url_slug") or "new-york-ny"
        venue_slug = venue.get("venue_url_slug") or ""
        venue_url = f"{RESY_WEB_ORIGIN}/cities/{city_slug}/{venue_slug}" if venue_slug else RESY_WEB_ORIGIN

        user = await self._request(auth_token, "GET", "/2/user")
        payment_methods = user.get("payment_methods") or []
        payment_method = next((pm for pm in payment_methods if pm.get("is_default")), None)
        if payment_method is None and payment_methods:
            payment_method = payment_methods[0]
        if payment_method is None:
            raise ReservationPlatformError(NO_PAYMENT_METHOD_MESSAGE)

        booked = await self._request(
            auth_token,
            "POST",
            "/3/book",
            form={
                "book_token": book_token,
                "struct_payment_method": json.dumps({"id": payment_method["id"]}),
                "source_id": "resy.com-venue-details",
            },
        )

        logger.info(f"✅ Booked reservation {booked.get('reservation_id')} at {venue_name}")

        # The confirmed time comes from the slot we just fetched
        return BookingConfirmation(
            resy_token=booked.get("resy_token", ""),
            reservation_id=booked.get("reservation_id"),
            venue_name=venue_name,
            venue_url=venue_url,
            date=day,
            time=slot.time,
            party_size=booked.get("num_seats") or party_size,
            type=slot_type,
        )

    async def get_reservations(self, auth_token: str) -> List[Reservation]:
        logger.info("Fetching user reservations")

        data = await self._request(auth_token, "GET", "/3/user/reservations", allow_list=True)
        if isinstance(data, list):
            raw = data
        else:
            raw = data.get("reservations") or data.get("upcoming") or data.get("results") or []

        reservations = []
        for r in raw:
            venue = r.get("venue") or {}
            config = r.get("config") or {}
            reservations.append(Reservation(
                resy_token=r.get("resy_token") or r.get("token") or "",
                reservation_id=r.get("reservation_id") or r.get("id") or 0,
                venue_name=venue.get("name") or r.get("venue_name") or r.get("name") or "Unknown",
                date=r.get("date") or r.get("day") or r.get("reservation_date") or "",
                time=r.get("time_slot") or r.get("time") or r.get("start_time") or "",
                party_size=r.get("num_seats") or r.get("party_size") or r.get("seats") or 0,
                type=config.get("type") or r.get("type") or "Dining Room",
            ))

        logger.info(f"Found {len(reservations)} reservations")
        return reservations

    async def get_profile(self, auth_token: str) -> ProfileSummary:
        """Returns a clean subset of the profile; payment ids never leave this method."""
        data = await self._request(auth_token, "GET", "/2/user")
        return ProfileSummary(
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            email=data.get("em_address"),
            phone=data.get("mobile_number"),
            num_bookings=data.get("num_bookings"),
            member_since=data.get("date_created"),
            is_resy_select=data.get("resy_select"),
            profile_image_url=data.get("profile_image_url"),
        )

    async def cancel_reservation(self, auth_token: str, resy_token: str) -> CancellationResult:
        """Never raises for platform failures; the error is reported in the result."""
        logger.info("Cancelling reservation")
        try:
            await self._request(auth_token, "POST", "/3/cancel", form={"resy_token": resy_token})
        except ReservationPlatformError as e:
            logger.error(f"Cancel failed: {e.message}")
            return CancellationResult(success=False, resy_token=resy_token, error=e.message)

        logger.info("✅ Cancelled successfully")
        return CancellationResult(success=True, resy_token=resy_token)

    # ==============================================
    # MOBILE OTP AUTH
    # ==============================================

    async def send_otp(self, mobile_number: str) -> OTPSendResult:
        """
        Asks Resy to text a code to the number.

        Returns:
            SENT when Resy confirms delivery, RATE_LIMITED on 429, FAILED otherwise
        """
        logger.info(f"📲 Requesting Resy OTP for {redact_phone(mobile_number)}")
        try:
            response = await self._post_form("/3/auth/mobile", {"mobile_number": mobile_number, "method": "sms"})
        except httpx.HTTPError as e:
            logger.error(f"OTP send request failed: {e}")
            return OTPSendResult.FAILED

        if response.is_success:
            try:
                sent = bool(response.json().get("sent"))
            except ValueError:
                sent = False
            if sent:
                logger.info("✅ OTP sent via SMS")
                return OTPSendResult.SENT

        if response.status_code == 429:
            logger.warning(f"OTP rate limited for {redact_phone(mobile_number)}")
            return OTPSendResult.RATE_LIMITED

        logger.error(f"OTP send failed ({response.status_code})")
        return OTPSendResult.FAILED

    async def verify_otp(self, mobile_number: str, code: str) -> OTPVerification:
        """
        Verifies an OTP code.

        Outcomes:
            token: Resy (or the claim exchange chain) returned a credential
            challenge: Resy wants an email before issuing a credential
            server_error: Resy 5xx or timeout; the caller may resend once
            rejected: Wrong/expired code or an unusable response
        """
        logger.info(f"Verifying OTP for {redact_phone(mobile_number)}")
        try:
            response = await self._post_form("/3/auth/mobile", {"mobile_number": mobile_number, "code": code})
        except httpx.TimeoutException:
            logger.error("OTP verify timed out")
            return OTPVerification.server_error()
        except httpx.HTTPError as e:
            logger.error(f"OTP verify request failed: {e}")
            return OTPVerification.server_error()

        if not response.is_success:
            logger.error(f"OTP verify failed ({response.status_code})")
            if response.status_code >= 500:
                return OTPVerification.server_error()
            return OTPVerification.rejected()

        try:
            data = response.json()
        except ValueError:
            logger.error("OTP verify returned non-JSON body")
            return OTPVerification.rejected()

        direct_token = extract_token(data)
        if direct_token:
            logger.info("✅ OTP verified, got auth token directly")
            return OTPVerification.with_token(direct_token)

        claim_token = (data.get("mobile_claim") or {}).get("claim_token")
        challenge = data.get("challenge") or {}
        challenge_id = challenge.get("challenge_id")

        if not claim_token:
            logger.error("OTP verify returned unexpected response (no claim token)")
            return OTPVerification.rejected()

        if not challenge_id:
            logger.info("OTP accepted without a challenge, trying claim token exchange")
            token = await self.exchange_claim_token(claim_token, mobile_number)
            if token:
                return OTPVerification.with_token(token)

            logger.info("Claim exchange failed, asking for email")
            return OTPVerification.with_challenge(Challenge(
                claim_token=claim_token,
                challenge_id="",
                mobile_number=mobile_number,
                first_name=None,
                is_new_user=True,
                required_fields=[ChallengeField(name="em_address", type="email", message="Email address")],
            ))

        logger.info("OTP accepted, challenge requires additional verification")
        return OTPVerification.with_challenge(Challenge(
            claim_token=claim_token,
            challenge_id=str(challenge_id),
            mobile_number=mobile_number,
            first_name=challenge.get("first_name") or None,
            is_new_user=False,
            required_fields=[ChallengeField(**field) for field in challenge.get("properties") or [] if field.get("name")],
        ))

    async def _first_token_from(self, endpoints: Sequence[str], form: Dict[str, Any], purpose: str) -> Optional[str]:
        """Walks an ordered endpoint chain and returns the first usable token."""
        for endpoint in endpoints:
            logger.info(f"Trying {purpose} via {endpoint}")
            try:
                response = await self._post_form(endpoint, form)
            except httpx.HTTPError as e:
                logger.warning(f"{endpoint} request failed: {e}")
                continue

            if not response.is_success:
                logger.info(f"{endpoint} answered {response.status_code}")
                continue

            try:
                token = extract_token(response.json())
            except ValueError:
                logger.info(f"{endpoint} returned non-JSON body")
                continue

            if token:
                logger.info(f"✅ {purpose} succeeded via {endpoint}")
                return token

        logger.warning(f"All {purpose} endpoints failed")
        return None

    async def exchange_claim_token(self, claim_token: str, mobile_number: str) -> Optional[str]:
        """Silent claim exchange: CLAIM_EXCHANGE_ENDPOINTS in order, then give up."""
        return await self._first_token_from(
            CLAIM_EXCHANGE_ENDPOINTS,
            {"mobile_number": mobile_number, "claim_token": claim_token},
            "claim exchange",
        )

    async def register_user(
        self,
        claim_token: str,
        mobile_number: str,
        first_name: str,
        last_name: str,
        email: str,
    ) -> Optional[str]:
        """New-user registration: REGISTRATION_ENDPOINTS in order, then give up."""
        return await self._first_token_from(
            REGISTRATION_ENDPOINTS,
            {
                "mobile_number": mobile_number,
                "claim_token": claim_token,
                "first_name": first_name,
                "last_name": last_name,
                "em_address": email,
            },
            "registration",
        )

    async def complete_challenge(self, challenge: Challenge, field_values: Dict[str, str]) -> Optional[str]:
        """Existing-user challenge. Returns a token, or None when Resy refuses."""
        logger.info(f"Completing challenge for {redact_phone(challenge.mobile_number)}")
        form = {
            "mobile_number": challenge.mobile_number,
            "claim_token": challenge.claim_token,
            "challenge_id": challenge.challenge_id,
            **field_values,
        }
        try:
            response = await self._post_form("/3/auth/challenge", form)
        except httpx.HTTPError as e:
            logger.error(f"Challenge request failed: {e}")
            return None

        if not response.is_success:
            logger.error(f"Challenge failed ({response.status_code})")
            return None

        try:
            token = extract_token(response.json())
        except ValueError:
            logger.error("Failed to parse challenge response as JSON")
            return None

        if token:
            logger.info("✅ Challenge completed, got auth token")
        return token

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global Resy service instance
_resy_service: Optional[ResyService] = None


def get_resy_service() -> ResyService:
    """Get or create the global Resy service instance."""
    global _resy_service
    if _resy_service is None:
        _resy_service = ResyService()
    return _resy_service


def set_resy_service(service: Optional[ResyService]) -> None:
    """Replaces the global instance (used by tests)."""
    global _resy_service
    _resy_service = service


async def close_resy_service():
    """Close Resy service and cleanup resources."""
    global _resy_service
    if _resy_service:
        await _resy_service.close()
        _resy_service = None
