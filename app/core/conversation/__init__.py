"""Conversation models and persistence contract."""

from .models import (
    AIContext,
    ContactInfo,
    Conversation,
    ConversationStage,
    ConversationStatus,
    NextAction,
    StoredMessage,
)
from .store import ConversationStore, InMemoryConversationStore

__all__ = [
    # Models
    "AIContext",
    "ContactInfo",
    "Conversation",
    "ConversationStage",
    "ConversationStatus",
    "NextAction",
    "StoredMessage",
    # Store
    "ConversationStore",
    "InMemoryConversationStore",
]
