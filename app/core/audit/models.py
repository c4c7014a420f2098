"""Audit trail records."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from app.channels.types import ChannelType


class AuditAction(str, Enum):
    """What happened."""

    MESSAGE_PROCESSED = "message_processed"
    MESSAGE_VALIDATION_FAILED = "message_validation_failed"
    MESSAGE_PROCESSING_FAILED = "message_processing_failed"
    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_BOOKING_FAILED = "appointment_booking_failed"
    CONTEXT_RESET = "context_reset"


class ActorType(str, Enum):
    """Who caused it."""

    PATIENT = "patient"
    STAFF = "staff"
    SYSTEM = "system"
    AI = "ai"


@dataclass
class AuditEntry:
    """Append-only audit record."""

    organization_id: str
    channel_type: ChannelType
    instance_id: str
    action: AuditAction
    actor_type: ActorType
    conversation_id: Optional[str] = None
    actor_id: Optional[str] = None
    details: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for storage/transmission."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "channel_type": self.channel_type.value,
            "instance_id": self.instance_id,
            "conversation_id": self.conversation_id,
            "action": self.action.value,
            "actor_id": self.actor_id,
            "actor_type": self.actor_type.value,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class AuditQuery:
    """Query parameters for searching audit logs."""

    organization_id: str
    instance_id: Optional[str] = None
    conversation_id: Optional[str] = None
    actions: Optional[list[AuditAction]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = 100
    offset: int = 0

    def matches(self, entry: AuditEntry) -> bool:
        """Check whether an entry satisfies every filter."""
        if entry.organization_id != self.organization_id:
            return False
        if self.instance_id and entry.instance_id != self.instance_id:
            return False
        if self.conversation_id and entry.conversation_id != self.conversation_id:
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.start_time and entry.timestamp < self.start_time:
            return False
        if self.end_time and entry.timestamp > self.end_time:
            return False
        return True
