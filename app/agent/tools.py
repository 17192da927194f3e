"""
app/agent/tools.py

Purpose: Tool catalogue offered to the model

- ToolName is the closed set of tools; every member belongs to exactly
  one category (checked at import)
- Fire-and-forget tools are acknowledged with "ok" and never looped on
- Data tools hit the reservation platform and feed results back
- Server tools run at the model provider and are never dispatched here
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List


class ToolName(str, Enum):
    SEND_REACTION = "send_reaction"
    SEND_EFFECT = "send_effect"
    RENAME_GROUP_CHAT = "rename_group_chat"
    REMEMBER_USER = "remember_user"
    WEB_SEARCH = "web_search"
    RESY_SEARCH = "resy_search"
    RESY_FIND_SLOTS = "resy_find_slots"
    RESY_BOOK = "resy_book"
    RESY_CANCEL = "resy_cancel"
    RESY_RESERVATIONS = "resy_reservations"


FIRE_AND_FORGET_TOOLS: FrozenSet[ToolName] = frozenset({
    ToolName.SEND_REACTION,
    ToolName.SEND_EFFECT,
    ToolName.RENAME_GROUP_CHAT,
    ToolName.REMEMBER_USER,
})

DATA_TOOLS: FrozenSet[ToolName] = frozenset({
    ToolName.RESY_SEARCH,
    ToolName.RESY_FIND_SLOTS,
    ToolName.RESY_BOOK,
    ToolName.RESY_CANCEL,
    ToolName.RESY_RESERVATIONS,
})

SERVER_TOOLS: FrozenSet[ToolName] = frozenset({ToolName.WEB_SEARCH})


def _check_categories() -> None:
    categories = (FIRE_AND_FORGET_TOOLS, DATA_TOOLS, SERVER_TOOLS)
    assigned = [name for category in categories for name in category]
    missing = set(ToolName) - set(assigned)
    if missing or len(assigned) != len(set(assigned)):
        raise RuntimeError(f"Tool categories are inconsistent (unassigned: {sorted(m.value for m in missing)})")


_check_categories()


def parse_tool_name(name: str):
    """Returns the ToolName for a tool_use block, or None for unknown tools."""
    try:
        return ToolName(name)
    except ValueError:
        return None


STANDARD_REACTIONS = ["love", "like", "dislike", "laugh", "emphasize", "question"]

SCREEN_EFFECTS = [
    "confetti", "fireworks", "lasers", "sparkles", "celebration",
    "hearts", "love", "balloons", "happy_birthday", "echo", "spotlight",
]
BUBBLE_EFFECTS = ["slam", "loud", "gentle", "invisible_ink"]


TOOL_SCHEMAS: Dict[ToolName, Dict[str, Any]] = {
    ToolName.SEND_REACTION: {
        "name": ToolName.SEND_REACTION.value,
        "description": (
            "Send a reaction to the user's message. Use standard tapbacks "
            "(love, like, laugh, etc.) OR any custom emoji."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": STANDARD_REACTIONS + ["custom"],
                    "description": 'The reaction type. Use "custom" to send any emoji.',
                },
                "emoji": {
                    "type": "string",
                    "description": 'Required when type is "custom". The emoji to react with.',
                },
            },
            "required": ["type"],
        },
    },
    ToolName.SEND_EFFECT: {
        "name": ToolName.SEND_EFFECT.value,
        "description": (
            "Add an iMessage effect to your text response. ONLY use when the user "
            "explicitly asks for an effect. You MUST also write a text message."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "effect_type": {
                    "type": "string",
                    "enum": ["screen", "bubble"],
                    "description": "Whether this is a full-screen effect or a bubble effect",
                },
                "effect": {
                    "type": "string",
                    "enum": SCREEN_EFFECTS + BUBBLE_EFFECTS,
                    "description": "The specific effect to use",
                },
            },
            "required": ["effect_type", "effect"],
        },
    },
    ToolName.RENAME_GROUP_CHAT: {
        "name": ToolName.RENAME_GROUP_CHAT.value,
        "description": "Rename the current group chat. ONLY use when someone EXPLICITLY asks to rename/name the chat.",
        "input_schema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The new name for the group chat"},
            },
            "required": ["name"],
        },
    },
    ToolName.REMEMBER_USER: {
        "name": ToolName.REMEMBER_USER.value,
        "description": (
            "Save NEW information about someone. ONLY use when you learn genuinely NEW info. "
            "NEVER re-save info already shown in the system prompt. You MUST write a text response too."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "handle": {"type": "string", "description": "The phone number/handle of the person this info is about."},
                "name": {"type": "string", "description": "The person's name if they shared it."},
                "fact": {"type": "string", "description": "An interesting fact about them worth remembering."},
            },
        },
    },
    ToolName.WEB_SEARCH: {
        "type": "web_search_20250305",
        "name": ToolName.WEB_SEARCH.value,
    },
    ToolName.RESY_SEARCH: {
        "name": ToolName.RESY_SEARCH.value,
        "description": (
            "Search for restaurants on Resy. Use when someone asks about finding a place to eat "
            "or a restaurant. Returns venue IDs needed for checking availability."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": 'Search keyword (e.g., "italian", "sushi", "steakhouse", "Carbone").',
                },
                "lat": {"type": "number", "description": "Latitude for location-based search. Defaults to NYC."},
                "lng": {"type": "number", "description": "Longitude for location-based search. Defaults to NYC."},
            },
            "required": ["query"],
        },
    },
    ToolName.RESY_FIND_SLOTS: {
        "name": ToolName.RESY_FIND_SLOTS.value,
        "description": (
            "Find available time slots at a Resy venue for a given date and party size. "
            "Returns config tokens needed for booking."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "venue_id": {"type": "number", "description": "The Resy venue ID (from resy_search results)."},
                "date": {"type": "string", "description": "Date to check (YYYY-MM-DD format)."},
                "party_size": {"type": "number", "description": "Number of guests."},
                "lat": {"type": "number", "description": "Latitude. Defaults to NYC."},
                "lng": {"type": "number", "description": "Longitude. Defaults to NYC."},
            },
            "required": ["venue_id", "date", "party_size"],
        },
    },
    ToolName.RESY_BOOK: {
        "name": ToolName.RESY_BOOK.value,
        "description": (
            "Book a reservation on Resy. Automatically finds a fresh slot at booking time so tokens "
            "dont expire. This makes a REAL reservation, always confirm venue, date, time, and party "
            "size with the user before calling this."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "venue_id": {"type": "number", "description": "The Resy venue ID (from resy_search results)."},
                "date": {"type": "string", "description": "Reservation date (YYYY-MM-DD)."},
                "party_size": {"type": "number", "description": "Number of guests."},
                "time": {
                    "type": "string",
                    "description": 'Desired time in HH:MM 24h format (e.g., "19:00"). Picks the closest available slot.',
                },
            },
            "required": ["venue_id", "date", "party_size"],
        },
    },
    ToolName.RESY_CANCEL: {
        "name": ToolName.RESY_CANCEL.value,
        "description": (
            "Cancel a Resy reservation using the resy_token (rr://... format). "
            "Get this from resy_reservations results."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "resy_token": {
                    "type": "string",
                    "description": "The resy_token for the reservation to cancel (rr://... format).",
                },
            },
            "required": ["resy_token"],
        },
    },
    ToolName.RESY_RESERVATIONS: {
        "name": ToolName.RESY_RESERVATIONS.value,
        "description": (
            "View the user's upcoming Resy reservations. Use when someone asks about their "
            "bookings, reservations, or upcoming dinner plans."
        ),
        "input_schema": {"type": "object", "properties": {}},
    },
}

if set(TOOL_SCHEMAS) != set(ToolName):
    raise RuntimeError("Every ToolName needs a schema")


def build_tool_set(has_credentials: bool, is_group_chat: bool) -> List[Dict[str, Any]]:
    """
    Tools offered for one turn.

    Reservation tools are only offered with credentials; renaming only in groups.
    """
    names = [
        ToolName.SEND_REACTION,
        ToolName.SEND_EFFECT,
        ToolName.REMEMBER_USER,
        ToolName.WEB_SEARCH,
    ]
    if has_credentials:
        names += [
            ToolName.RESY_SEARCH,
            ToolName.RESY_FIND_SLOTS,
            ToolName.RESY_BOOK,
            ToolName.RESY_CANCEL,
            ToolName.RESY_RESERVATIONS,
        ]
    if is_group_chat:
        names.append(ToolName.RENAME_GROUP_CHAT)
    return [TOOL_SCHEMAS[name] for name in names]
