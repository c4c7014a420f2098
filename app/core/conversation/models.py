"""
Conversation data models.

A conversation identifies one contact on one channel instance. Its AI
context is written only by the pipeline, after each processed message.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from app.channels.types import (
    ChannelType,
    MessageContent,
    MessageDirection,
    MessageSender,
)
from app.core.intelligence.entities.types import ExtractedEntities
from app.core.intelligence.intent.types import MessageIntent


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    """Lifecycle status of a conversation."""

    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ConversationStage(str, Enum):
    """Where the conversation stands after the last processed message."""

    INITIAL = "initial"
    GREETING_RESPONDED = "greeting_responded"
    BOOKING_SPECIALTY_NEEDED = "booking_specialty_needed"
    BOOKING_DATE_NEEDED = "booking_date_needed"
    BOOKING_READY = "booking_ready"
    INQUIRY_PROCESSING = "inquiry_processing"
    EMERGENCY_ESCALATED = "emergency_escalated"
    PROCESSING = "processing"


class NextAction(str, Enum):
    """Follow-up the system should take."""

    REQUEST_SPECIALTY = "request_specialty"
    REQUEST_DATE = "request_date"
    CHECK_AVAILABILITY = "check_availability"
    ESCALATE_TO_HUMAN = "escalate_to_human"
    PROVIDE_EMERGENCY_INFO = "provide_emergency_info"
    FETCH_APPOINTMENTS = "fetch_appointments"
    CONTINUE_CONVERSATION = "continue_conversation"


@dataclass
class AIContext:
    """Pipeline-owned state embedded in a conversation."""

    current_intent: MessageIntent = MessageIntent.UNKNOWN
    extracted_entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    conversation_stage: ConversationStage = ConversationStage.INITIAL
    pending_actions: list[NextAction] = field(default_factory=list)
    confidence_score: float = 0.0

    def __post_init__(self) -> None:
        self.confidence_score = max(0.0, min(float(self.confidence_score), 1.0))

    def to_dict(self) -> dict:
        return {
            "current_intent": self.current_intent.value,
            "extracted_entities": self.extracted_entities.to_dict(),
            "conversation_stage": self.conversation_stage.value,
            "pending_actions": [action.value for action in self.pending_actions],
            "confidence_score": self.confidence_score,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AIContext":
        if not data:
            return cls()
        return cls(
            current_intent=MessageIntent(data.get("current_intent", "unknown")),
            extracted_entities=ExtractedEntities.from_dict(data.get("extracted_entities")),
            conversation_stage=ConversationStage(data.get("conversation_stage", "initial")),
            pending_actions=[NextAction(a) for a in data.get("pending_actions", [])],
            confidence_score=data.get("confidence_score", 0.0),
        )


@dataclass
class ContactInfo:
    """Contact identity on a channel."""

    external_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_sender(cls, sender: MessageSender) -> "ContactInfo":
        return cls(
            external_id=sender.id,
            name=sender.name,
            phone=sender.phone,
            username=sender.username,
        )

    def to_dict(self) -> dict:
        return {
            "external_id": self.external_id,
            "name": self.name,
            "phone": self.phone,
            "username": self.username,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContactInfo":
        return cls(
            external_id=data.get("external_id", ""),
            name=data.get("name"),
            phone=data.get("phone"),
            username=data.get("username"),
        )


@dataclass
class Conversation:
    """One contact's conversation on one channel instance."""

    channel_type: ChannelType
    instance_id: str
    contact: ContactInfo
    id: str = field(default_factory=lambda: str(uuid4()))
    status: ConversationStatus = ConversationStatus.ACTIVE
    message_count: int = 0
    ai_context: AIContext = field(default_factory=AIContext)
    patient_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel_type": self.channel_type.value,
            "instance_id": self.instance_id,
            "contact": self.contact.to_dict(),
            "status": self.status.value,
            "message_count": self.message_count,
            "ai_context": self.ai_context.to_dict(),
            "patient_id": self.patient_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class StoredMessage:
    """Write-once record of a message in a conversation."""

    id: str
    conversation_id: str
    channel_type: ChannelType
    direction: MessageDirection
    content: MessageContent
    sender: Optional[MessageSender] = None
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "channel_type": self.channel_type.value,
            "direction": self.direction.value,
            "content": self.content.to_dict(),
            "sender": self.sender.to_dict() if self.sender else None,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }
