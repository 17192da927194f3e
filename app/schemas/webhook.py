"""
app/schemas/webhook.py

Purpose: Linq messaging gateway schemas and parsers

- Validates incoming webhook events (v3)
- Extracts text, image and audio parts from a message
- Outbound shapes shared with the Linq client (effects, reactions, reply-to, chat info)
"""

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class MessageEffect(BaseModel):
    type: Literal["screen", "bubble"]
    name: str


class ReplyTo(BaseModel):
    message_id: str
    part_index: Optional[int] = None


class TextPart(BaseModel):
    type: Literal["text"]
    value: str = ""


class MediaPart(BaseModel):
    type: Literal["media"]
    url: Optional[str] = None
    attachment_id: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None


MessagePart = Union[TextPart, MediaPart]


class MediaInput(BaseModel):
    url: str
    mime_type: str


class IncomingMessage(BaseModel):
    id: str
    parts: List[MessagePart] = Field(default_factory=list)
    effect: Optional[MessageEffect] = None
    reply_to: Optional[ReplyTo] = None


class MessageReceivedData(BaseModel):
    chat_id: str
    sender: str = Field(..., alias="from")
    recipient_phone: Optional[str] = None
    received_at: Optional[str] = None
    is_from_me: bool = False
    service: Optional[str] = None  # iMessage, SMS or RCS
    message: IncomingMessage

    model_config = {"populate_by_name": True}


class WebhookEvent(BaseModel):
    """
    Envelope for every gateway event. `data` stays untyped until the
    event type says what it is.
    """
    api_version: Optional[str] = None
    event_id: str = ""
    created_at: Optional[str] = None
    trace_id: Optional[str] = None
    partner_id: Optional[str] = None
    event_type: str
    data: Any = None

    class Config:
        json_schema_extra = {
            "example": {
                "api_version": "v3",
                "event_id": "evt_123",
                "event_type": "message.received",
                "data": {
                    "chat_id": "chat_abc",
                    "from": "+15551234567",
                    "recipient_phone": "+15557654321",
                    "is_from_me": False,
                    "service": "iMessage",
                    "message": {"id": "msg_1", "parts": [{"type": "text", "value": "dinner tonight?"}]},
                },
            }
        }

    @property
    def is_message_received(self) -> bool:
        return self.event_type == "message.received"

    def message_data(self) -> MessageReceivedData:
        return MessageReceivedData.model_validate(self.data)


def extract_text_content(parts: List[MessagePart]) -> str:
    return "\n".join(part.value for part in parts if isinstance(part, TextPart))


def _extract_media(parts: List[MessagePart], prefix: str) -> List[MediaInput]:
    return [
        MediaInput(url=part.url, mime_type=part.mime_type)
        for part in parts
        if isinstance(part, MediaPart) and part.url and part.mime_type and part.mime_type.startswith(prefix)
    ]


def extract_image_urls(parts: List[MessagePart]) -> List[MediaInput]:
    return _extract_media(parts, "image/")


def extract_audio_urls(parts: List[MessagePart]) -> List[MediaInput]:
    return _extract_media(parts, "audio/")


# ==============================================
# OUTBOUND
# ==============================================


class Reaction(BaseModel):
    type: Literal["love", "like", "dislike", "laugh", "emphasize", "question", "custom"]
    emoji: Optional[str] = None

    @property
    def display(self) -> str:
        return self.emoji if self.type == "custom" and self.emoji else self.type


class ChatHandle(BaseModel):
    handle: str
    service: Optional[str] = None


class ChatInfo(BaseModel):
    id: str
    display_name: Optional[str] = None
    handles: List[ChatHandle] = Field(default_factory=list)
    is_group: bool = False
    service: Optional[str] = None

    @property
    def is_group_chat(self) -> bool:
        # The bot is one of the handles
        return len(self.handles) > 2


class InboundMessage(BaseModel):
    """Normalized message handed from the webhook to the dispatcher."""
    chat_id: str
    sender: str
    message_id: str
    text: str = ""
    images: List[MediaInput] = Field(default_factory=list)
    audio: List[MediaInput] = Field(default_factory=list)
    effect: Optional[MessageEffect] = None
    reply_to: Optional[ReplyTo] = None
    service: Optional[str] = None

    @classmethod
    def from_event_data(cls, data: MessageReceivedData) -> "InboundMessage":
        parts = data.message.parts
        return cls(
            chat_id=data.chat_id,
            sender=data.sender,
            message_id=data.message.id,
            text=extract_text_content(parts),
            images=extract_image_urls(parts),
            audio=extract_audio_urls(parts),
            effect=data.message.effect,
            reply_to=data.message.reply_to,
            service=data.service,
        )

    @property
    def has_media(self) -> bool:
        return bool(self.images or self.audio)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.has_media
