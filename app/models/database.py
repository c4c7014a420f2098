"""
Database Models

SQLAlchemy ORM models for the multi-tenant conversational channel pipeline.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class ChannelInstanceRecord(Base, TimestampMixin):
    """
    Channel instance (one configured messaging endpoint of a tenant).

    `config` holds the JSON form of ChannelInstanceConfig: auto-reply
    switch, business hours, AI settings and webhook secret.
    """

    __tablename__ = "channel_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    channel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    instance_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class ConversationRecord(Base, TimestampMixin):
    """
    Conversation of one contact on one channel instance.

    At most one `active` row per (instance, contact), enforced by a
    partial unique index.
    """

    __tablename__ = "channel_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    channel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    instance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channel_instances.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact_external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    contact_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    patient_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_channel_conversations_contact", "instance_id", "contact_external_id"),
        Index(
            "uq_channel_conversations_active_contact",
            "instance_id",
            "contact_external_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class MessageRecord(Base):
    """
    Message stored in a conversation (write-once).

    `external_id` is the provider's message id; it is unique per channel
    and is what duplicate webhook deliveries are detected by.
    """

    __tablename__ = "channel_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channel_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[dict] = mapped_column(JSON, nullable=False)
    sender: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    message_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("channel_type", "external_id", name="uq_channel_messages_external"),
    )


class AuditLogRecord(Base):
    """Append-only audit entry."""

    __tablename__ = "channel_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_channel_audit_logs_org_time", "organization_id", "timestamp"),
        Index("ix_channel_audit_logs_conversation", "conversation_id"),
    )
