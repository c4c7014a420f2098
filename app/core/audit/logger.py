"""
Audit Logging Module

Append-only audit trail for every pipeline transition. Writes never raise
to the caller: a failed write is logged at error level and the entry is
returned anyway so the caller can keep going.
"""

import logging
from typing import Optional

from app.channels.config import ChannelInstance
from .models import ActorType, AuditAction, AuditEntry, AuditQuery
from .store import AuditStore

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Audit logger backed by an AuditStore.

    Every entry is also echoed to the application log as an `AUDIT:` line.

    Usage:
        audit = AuditLogger(store)

        await audit.log(
            instance=instance,
            action=AuditAction.MESSAGE_PROCESSED,
            conversation_id=conversation.id,
            actor_id=message.sender.id,
            actor_type=ActorType.PATIENT,
            details={"intent": "greeting"},
        )
    """

    def __init__(self, store: AuditStore, log_to_stdout: bool = True):
        """
        Initialize Audit Logger.

        Args:
            store: Where entries are persisted
            log_to_stdout: Also log to standard output
        """
        self.store = store
        self.log_to_stdout = log_to_stdout

    async def log(
        self,
        instance: ChannelInstance,
        action: AuditAction,
        actor_type: ActorType,
        conversation_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEntry:
        """
        Log an audit entry.

        Args:
            instance: Channel instance the event belongs to
            action: What happened
            actor_type: Who caused it
            conversation_id: Conversation affected, if any
            actor_id: Identifier of the actor, if known
            details: Additional event details

        Returns:
            Created AuditEntry
        """
        entry = AuditEntry(
            organization_id=instance.organization_id,
            channel_type=instance.channel_type,
            instance_id=instance.id,
            conversation_id=conversation_id,
            action=action,
            actor_id=actor_id,
            actor_type=actor_type,
            details=details or {},
        )

        try:
            await self.store.append(entry)
        except Exception as e:
            logger.error(
                f"Failed to persist audit entry {entry.id} "
                f"({action.value}, conversation={conversation_id}): {e}"
            )

        if self.log_to_stdout:
            logger.info(
                f"AUDIT: {action.value} | instance={instance.id} | "
                f"conversation={conversation_id} | actor={actor_type.value}:{actor_id}"
            )

        return entry

    # ==================================
    # Convenience Methods
    # ==================================

    async def log_message_processed(
        self,
        instance: ChannelInstance,
        conversation_id: str,
        sender_id: str,
        details: dict,
    ) -> AuditEntry:
        """Log a successfully processed inbound message."""
        return await self.log(
            instance=instance,
            action=AuditAction.MESSAGE_PROCESSED,
            actor_type=ActorType.PATIENT,
            conversation_id=conversation_id,
            actor_id=sender_id,
            details=details,
        )

    async def log_validation_failed(
        self,
        instance: ChannelInstance,
        message_id: str,
        sender_id: Optional[str],
        errors: list[str],
    ) -> AuditEntry:
        """Log a rejected inbound message."""
        return await self.log(
            instance=instance,
            action=AuditAction.MESSAGE_VALIDATION_FAILED,
            actor_type=ActorType.SYSTEM,
            actor_id=sender_id or None,
            details={"message_id": message_id, "errors": errors},
        )

    async def log_processing_failed(
        self,
        instance: ChannelInstance,
        message_id: str,
        sender_id: str,
        error: str,
        conversation_id: Optional[str] = None,
    ) -> AuditEntry:
        """Log a message whose processing failed after validation."""
        return await self.log(
            instance=instance,
            action=AuditAction.MESSAGE_PROCESSING_FAILED,
            actor_type=ActorType.SYSTEM,
            conversation_id=conversation_id,
            actor_id=sender_id,
            details={"message_id": message_id, "error": error},
        )

    async def log_appointment_event(
        self,
        instance: ChannelInstance,
        conversation_id: str,
        action: AuditAction,
        patient_id: Optional[str],
        details: dict,
    ) -> AuditEntry:
        """Log an appointment created or failed through a channel."""
        return await self.log(
            instance=instance,
            action=action,
            actor_type=ActorType.AI,
            conversation_id=conversation_id,
            actor_id=patient_id,
            details=details,
        )

    async def log_context_reset(
        self,
        instance: ChannelInstance,
        conversation_id: str,
        staff_id: str,
        previous_stage: str,
    ) -> AuditEntry:
        """Log a staff member clearing a conversation's AI context."""
        return await self.log(
            instance=instance,
            action=AuditAction.CONTEXT_RESET,
            actor_type=ActorType.STAFF,
            conversation_id=conversation_id,
            actor_id=staff_id,
            details={"previous_stage": previous_stage},
        )

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        """Query stored entries."""
        return await self.store.query(query)
