"""Tests for channel types, instance config and the adapter registry."""

from datetime import datetime, timezone

import pytest

from app.channels.adapter import AdapterRegistry
from app.channels.config import ChannelInstance, ChannelInstanceConfig
from app.channels.types import (
    ChannelType,
    IncomingMessage,
    MessageContent,
    MessageType,
    ValidationResult,
)
from app.core.errors import AdapterNotFoundError
from tests.fakes import FakeAdapter, make_instance


class TestIncomingMessage:
    """Canonical message parsing."""

    def test_from_dict(self):
        message = IncomingMessage.from_dict({
            "id": "wamid.1",
            "channel_type": "whatsapp",
            "instance_id": "inst-1",
            "conversation_id": "573001112233@s.whatsapp.net",
            "sender": {"id": "573001112233", "name": "Ana Pérez"},
            "content": {"type": "text", "text": "  Hola  "},
            "timestamp": "2024-05-15T15:00:00Z",
        })

        assert message.sender.name == "Ana Pérez"
        assert message.text == "Hola"
        assert message.timestamp == datetime(2024, 5, 15, 15, 0, tzinfo=timezone.utc)

    def test_unix_timestamp(self):
        message = IncomingMessage.from_dict({"timestamp": 1715785200})

        assert message.timestamp == datetime(2024, 5, 15, 15, 0, tzinfo=timezone.utc)

    def test_unknown_content_type_is_text(self):
        content = MessageContent.from_dict({"type": "reaction", "text": "👍"})

        assert content.type == MessageType.TEXT

    def test_media_counts_as_payload(self):
        content = MessageContent.from_dict({"type": "image", "media": {"url": "https://x/y.jpg"}})

        assert content.has_payload
        assert not MessageContent(text="   ").has_payload


class TestValidationResult:
    """Merging validation results."""

    def test_merge_deduplicates_errors(self):
        first = ValidationResult(valid=False, errors=["Missing sender", "Empty message"])
        second = ValidationResult(valid=False, errors=["Empty message", "Too long"])

        merged = first.merge(second)

        assert not merged.valid
        assert merged.errors == ["Missing sender", "Empty message", "Too long"]

    def test_merge_of_valid_results(self):
        assert ValidationResult.ok().merge(ValidationResult.ok()).valid


class TestChannelInstanceConfig:
    """Instance configuration defaults."""

    def test_defaults(self):
        config = ChannelInstanceConfig.from_dict({})

        assert config.auto_reply
        assert config.respond_to_unknown_intent
        assert not config.business_hours.enabled
        assert config.ai_config.enabled
        assert config.webhook.secret is None

    def test_instance_from_dict(self):
        instance = ChannelInstance.from_dict({
            "id": "inst-9",
            "organization_id": "org-2",
            "channel_type": "telegram",
            "config": {"ai_config": {"max_tokens": "200"}, "webhook": {"secret": ""}},
        })

        assert instance.channel_type == ChannelType.TELEGRAM
        assert instance.config.ai_config.max_tokens == 200
        assert instance.config.webhook.secret is None


class TestAdapterRegistry:
    """Adapter lookup by channel type."""

    def test_create_builds_adapter_for_instance(self):
        registry = AdapterRegistry()
        registry.register(ChannelType.WHATSAPP, FakeAdapter)
        instance = make_instance()

        adapter = registry.create(instance)

        assert isinstance(adapter, FakeAdapter)
        assert adapter.instance is instance
        assert registry.is_registered(ChannelType.WHATSAPP)

    def test_missing_adapter(self):
        registry = AdapterRegistry()

        with pytest.raises(AdapterNotFoundError) as exc_info:
            registry.create(make_instance())

        assert "whatsapp" in str(exc_info.value)
