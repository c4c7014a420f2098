"""Canonical message types shared by every channel adapter."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ChannelType(str, Enum):
    """Supported messaging channels."""

    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    VOICE = "voice"
    SMS = "sms"
    EMAIL = "email"


class MessageType(str, Enum):
    """Content types a canonical message can carry."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"
    STICKER = "sticker"


class MessageDirection(str, Enum):
    """Direction of a stored message."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"


def _parse_timestamp(value: Any) -> datetime:
    """Accept datetimes, ISO strings and unix seconds."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass
class MessageSender:
    """Who sent an incoming message."""

    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None
    is_verified: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "MessageSender":
        return cls(
            id=data.get("id", "") or "",
            name=data.get("name"),
            phone=data.get("phone"),
            username=data.get("username"),
            is_verified=bool(data.get("is_verified", False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "username": self.username,
            "is_verified": self.is_verified,
        }


@dataclass
class MediaDescriptor:
    """Pointer to media attached to a message."""

    url: str
    mime_type: Optional[str] = None
    caption: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MediaDescriptor":
        return cls(
            url=data.get("url", "") or "",
            mime_type=data.get("mime_type"),
            caption=data.get("caption"),
        )

    def to_dict(self) -> dict:
        return {"url": self.url, "mime_type": self.mime_type, "caption": self.caption}


@dataclass
class MessageContent:
    """Body of a message."""

    type: MessageType = MessageType.TEXT
    text: Optional[str] = None
    media: Optional[MediaDescriptor] = None

    @property
    def has_payload(self) -> bool:
        """True when there is text or a media URL to process."""
        has_text = bool(self.text and self.text.strip())
        has_media = bool(self.media and self.media.url)
        return has_text or has_media

    @classmethod
    def from_dict(cls, data: dict) -> "MessageContent":
        try:
            msg_type = MessageType(data.get("type") or "text")
        except ValueError:
            msg_type = MessageType.TEXT
        media = data.get("media")
        return cls(
            type=msg_type,
            text=data.get("text"),
            media=MediaDescriptor.from_dict(media) if media else None,
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"type": self.type.value}
        if self.text is not None:
            result["text"] = self.text
        if self.media:
            result["media"] = self.media.to_dict()
        return result


@dataclass
class IncomingMessage:
    """Canonical inbound message produced by a channel adapter."""

    id: str
    channel_type: ChannelType
    instance_id: str
    conversation_id: str
    sender: MessageSender
    content: MessageContent
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Message text, empty string when the message is media only."""
        return (self.content.text or "").strip()

    @classmethod
    def from_dict(cls, data: dict) -> "IncomingMessage":
        """Build from the canonical JSON shape."""
        return cls(
            id=data.get("id", "") or "",
            channel_type=ChannelType(data.get("channel_type", "whatsapp")),
            instance_id=data.get("instance_id", "") or "",
            conversation_id=data.get("conversation_id", "") or "",
            sender=MessageSender.from_dict(data.get("sender") or {}),
            content=MessageContent.from_dict(data.get("content") or {}),
            timestamp=_parse_timestamp(data.get("timestamp")),
            metadata=data.get("metadata") or {},
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel_type": self.channel_type.value,
            "instance_id": self.instance_id,
            "conversation_id": self.conversation_id,
            "sender": self.sender.to_dict(),
            "content": self.content.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class OutgoingMessage:
    """Canonical outbound message handed to a channel adapter."""

    conversation_id: str
    content: MessageContent
    reply_to: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {
            "conversation_id": self.conversation_id,
            "content": self.content.to_dict(),
            "metadata": self.metadata,
        }
        if self.reply_to:
            result["reply_to"] = self.reply_to
        return result


@dataclass
class ValidationResult:
    """Outcome of validating a canonical message."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Combine two results, keeping errors in order without repeats."""
        errors = list(self.errors)
        for error in other.errors:
            if error not in errors:
                errors.append(error)
        return ValidationResult(valid=self.valid and other.valid and not errors, errors=errors)
