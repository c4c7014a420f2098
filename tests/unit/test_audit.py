"""Tests for the audit logger."""

import logging
from unittest.mock import AsyncMock

import pytest

from app.core.audit.logger import AuditLogger
from app.core.audit.models import ActorType, AuditAction, AuditEntry, AuditQuery


class TestAuditLogger:
    """Test audit trail writes."""

    @pytest.mark.asyncio
    async def test_entry_carries_instance_identity(self, audit_logger, audit_store, instance):
        entry = await audit_logger.log_message_processed(
            instance, "conv-1", "573001112233", {"intent": "greeting"}
        )

        assert entry.organization_id == "org-1"
        assert entry.instance_id == "inst-1"
        assert entry.channel_type == instance.channel_type
        assert entry.action == AuditAction.MESSAGE_PROCESSED
        assert entry.actor_type == ActorType.PATIENT
        assert audit_store.entries == [entry]

    @pytest.mark.asyncio
    async def test_validation_failure_entry(self, audit_logger, audit_store, instance):
        await audit_logger.log_validation_failed(instance, "msg-1", "", ["Missing sender"])

        entry = audit_store.entries[0]
        assert entry.action == AuditAction.MESSAGE_VALIDATION_FAILED
        assert entry.actor_type == ActorType.SYSTEM
        assert entry.actor_id is None
        assert entry.details == {"message_id": "msg-1", "errors": ["Missing sender"]}

    @pytest.mark.asyncio
    async def test_context_reset_entry(self, audit_logger, audit_store, instance):
        await audit_logger.log_context_reset(instance, "conv-1", "staff-7", "emergency_escalated")

        entry = audit_store.entries[0]
        assert entry.actor_type == ActorType.STAFF
        assert entry.actor_id == "staff-7"
        assert entry.details["previous_stage"] == "emergency_escalated"

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, instance, caplog):
        store = AsyncMock()
        store.append.side_effect = RuntimeError("disk full")
        audit = AuditLogger(store)

        with caplog.at_level(logging.ERROR):
            entry = await audit.log_processing_failed(instance, "msg-1", "573001112233", "boom")

        assert isinstance(entry, AuditEntry)
        assert "Failed to persist audit entry" in caplog.text

    @pytest.mark.asyncio
    async def test_audit_line_is_logged(self, audit_logger, instance, caplog):
        with caplog.at_level(logging.INFO):
            await audit_logger.log_message_processed(instance, "conv-1", "573001112233", {})

        assert "AUDIT: message_processed" in caplog.text

    @pytest.mark.asyncio
    async def test_query_delegates_to_store(self, audit_logger, instance):
        await audit_logger.log_message_processed(instance, "conv-1", "a", {})
        await audit_logger.log_message_processed(instance, "conv-2", "b", {})

        results = await audit_logger.query(
            AuditQuery(organization_id="org-1", conversation_id="conv-2")
        )

        assert [e.actor_id for e in results] == ["b"]


class TestAuditEntry:
    """Test entry serialization."""

    def test_to_dict(self, instance):
        entry = AuditEntry(
            organization_id="org-1",
            channel_type=instance.channel_type,
            instance_id="inst-1",
            action=AuditAction.APPOINTMENT_CREATED,
            actor_type=ActorType.AI,
            details={"appointment_id": "apt-1"},
        )

        data = entry.to_dict()

        assert data["action"] == "appointment_created"
        assert data["actor_type"] == "ai"
        assert data["details"] == {"appointment_id": "apt-1"}
