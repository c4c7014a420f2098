"""Shared fixtures."""

import pytest

from app.channels.config import ChannelInstance
from app.core.audit.logger import AuditLogger
from app.core.audit.store import InMemoryAuditStore
from app.core.conversation.store import InMemoryConversationStore
from tests.fakes import FakeAdapter, ScriptedClassifier, ScriptedExtractor, make_instance


@pytest.fixture
def instance() -> ChannelInstance:
    return make_instance()


@pytest.fixture
def adapter(instance) -> FakeAdapter:
    return FakeAdapter(instance)


@pytest.fixture
def conversation_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def audit_logger(audit_store) -> AuditLogger:
    return AuditLogger(audit_store)


@pytest.fixture
def classifier() -> ScriptedClassifier:
    return ScriptedClassifier()


@pytest.fixture
def extractor() -> ScriptedExtractor:
    return ScriptedExtractor()
