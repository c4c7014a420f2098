"""
SQLAlchemy-backed stores.

Each operation runs in its own session and transaction. SQLAlchemy errors
are re-raised as PersistenceError so the pipeline can handle them at one
seam.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.channels.config import ChannelInstance
from app.channels.repository import ChannelInstanceRepository
from app.channels.types import (
    ChannelType,
    MessageContent,
    MessageDirection,
    MessageSender,
)
from app.core.audit.models import ActorType, AuditAction, AuditEntry, AuditQuery
from app.core.audit.store import AuditStore
from app.core.conversation.models import (
    AIContext,
    ContactInfo,
    Conversation,
    ConversationStatus,
    StoredMessage,
)
from app.core.conversation.store import ConversationStore
from app.core.errors import PersistenceError
from app.models.database import (
    AuditLogRecord,
    ChannelInstanceRecord,
    ConversationRecord,
    MessageRecord,
)

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """Drivers without timezone support return naive UTC datetimes."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_conversation(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        channel_type=ChannelType(record.channel_type),
        instance_id=record.instance_id,
        contact=ContactInfo(
            external_id=record.contact_external_id,
            name=record.contact_name,
            phone=record.contact_phone,
            username=record.contact_username,
        ),
        status=ConversationStatus(record.status),
        message_count=record.message_count,
        ai_context=AIContext.from_dict(record.ai_context),
        patient_id=record.patient_id,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _to_stored_message(record: MessageRecord) -> StoredMessage:
    return StoredMessage(
        id=record.external_id,
        conversation_id=record.conversation_id,
        channel_type=ChannelType(record.channel_type),
        direction=MessageDirection(record.direction),
        content=MessageContent.from_dict(record.content),
        sender=MessageSender.from_dict(record.sender) if record.sender else None,
        timestamp=_aware(record.timestamp),
        metadata=record.message_metadata or {},
    )


class SqlConversationStore(ConversationStore):
    """ConversationStore on the channel_conversations / channel_messages tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        try:
            async with self._session_factory() as session:
                record = await session.get(ConversationRecord, conversation_id)
                return _to_conversation(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load conversation {conversation_id}: {e}") from e

    async def get_active(self, instance_id: str, contact_id: str) -> Optional[Conversation]:
        stmt = select(ConversationRecord).where(
            ConversationRecord.instance_id == instance_id,
            ConversationRecord.contact_external_id == contact_id,
            ConversationRecord.status == ConversationStatus.ACTIVE.value,
        )
        try:
            async with self._session_factory() as session:
                record = (await session.execute(stmt)).scalars().first()
                return _to_conversation(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load active conversation: {e}") from e

    async def create(self, conversation: Conversation) -> Conversation:
        record = ConversationRecord(
            id=conversation.id,
            channel_type=conversation.channel_type.value,
            instance_id=conversation.instance_id,
            contact_external_id=conversation.contact.external_id,
            contact_name=conversation.contact.name,
            contact_phone=conversation.contact.phone,
            contact_username=conversation.contact.username,
            status=conversation.status.value,
            message_count=conversation.message_count,
            ai_context=conversation.ai_context.to_dict(),
            patient_id=conversation.patient_id,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as e:
            raise PersistenceError(
                f"Conversation for contact {conversation.contact.external_id} "
                f"already exists on instance {conversation.instance_id}"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create conversation: {e}") from e
        return conversation

    async def save(self, conversation: Conversation) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    record = await session.get(ConversationRecord, conversation.id)
                    if record is None:
                        raise PersistenceError(f"Conversation {conversation.id} not found")
                    record.status = conversation.status.value
                    record.message_count = conversation.message_count
                    record.ai_context = conversation.ai_context.to_dict()
                    record.patient_id = conversation.patient_id
                    record.updated_at = conversation.updated_at
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save conversation {conversation.id}: {e}") from e

    async def message_exists(self, message_id: str, channel_type: ChannelType) -> bool:
        stmt = select(MessageRecord.id).where(
            MessageRecord.external_id == message_id,
            MessageRecord.channel_type == channel_type.value,
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).first() is not None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up message {message_id}: {e}") from e

    async def add_message(self, message: StoredMessage) -> None:
        record = MessageRecord(
            external_id=message.id,
            channel_type=message.channel_type.value,
            conversation_id=message.conversation_id,
            direction=message.direction.value,
            content=message.content.to_dict(),
            sender=message.sender.to_dict() if message.sender else None,
            timestamp=message.timestamp,
            message_metadata=message.metadata,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as e:
            raise PersistenceError(f"Message {message.id} already stored") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store message {message.id}: {e}") from e

    async def list_messages(self, conversation_id: str) -> list[StoredMessage]:
        stmt = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.timestamp)
        )
        try:
            async with self._session_factory() as session:
                records = (await session.execute(stmt)).scalars().all()
                return [_to_stored_message(r) for r in records]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list messages: {e}") from e


class SqlAuditStore(AuditStore):
    """AuditStore on the channel_audit_logs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, entry: AuditEntry) -> None:
        record = AuditLogRecord(
            id=entry.id,
            organization_id=entry.organization_id,
            channel_type=entry.channel_type.value,
            instance_id=entry.instance_id,
            conversation_id=entry.conversation_id,
            action=entry.action.value,
            actor_id=entry.actor_id,
            actor_type=entry.actor_type.value,
            details=entry.details,
            timestamp=entry.timestamp,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store audit entry {entry.id}: {e}") from e

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        stmt = select(AuditLogRecord).where(
            AuditLogRecord.organization_id == query.organization_id
        )
        if query.instance_id:
            stmt = stmt.where(AuditLogRecord.instance_id == query.instance_id)
        if query.conversation_id:
            stmt = stmt.where(AuditLogRecord.conversation_id == query.conversation_id)
        if query.actions:
            stmt = stmt.where(AuditLogRecord.action.in_([a.value for a in query.actions]))
        if query.start_time:
            stmt = stmt.where(AuditLogRecord.timestamp >= query.start_time)
        if query.end_time:
            stmt = stmt.where(AuditLogRecord.timestamp <= query.end_time)
        stmt = stmt.order_by(AuditLogRecord.timestamp).offset(query.offset).limit(query.limit)

        try:
            async with self._session_factory() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query audit log: {e}") from e

        return [
            AuditEntry(
                id=r.id,
                organization_id=r.organization_id,
                channel_type=ChannelType(r.channel_type),
                instance_id=r.instance_id,
                conversation_id=r.conversation_id,
                action=AuditAction(r.action),
                actor_id=r.actor_id,
                actor_type=ActorType(r.actor_type),
                details=r.details or {},
                timestamp=_aware(r.timestamp),
            )
            for r in records
        ]


class SqlChannelInstanceRepository(ChannelInstanceRepository):
    """Channel instances from the channel_instances table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, instance_id: str) -> Optional[ChannelInstance]:
        try:
            async with self._session_factory() as session:
                record = await session.get(ChannelInstanceRecord, instance_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load channel instance {instance_id}: {e}") from e

        if record is None or record.status != "active":
            return None

        try:
            return ChannelInstance.from_dict({
                "id": record.id,
                "organization_id": record.organization_id,
                "channel_type": record.channel_type,
                "instance_name": record.instance_name,
                "config": record.config or {},
            })
        except (KeyError, ValueError) as e:
            logger.error(f"Channel instance {instance_id} has invalid configuration: {e}")
            return None
