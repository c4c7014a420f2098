"""Conversation persistence contract and in-memory implementation."""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from app.channels.types import ChannelType, MessageSender
from app.core.errors import PersistenceError
from .models import (
    AIContext,
    ContactInfo,
    Conversation,
    ConversationStatus,
    StoredMessage,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ConversationStore(ABC):
    """
    Persists conversations and their messages.

    Implementations raise PersistenceError on write failures.
    """

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """Get a conversation by id."""

    @abstractmethod
    async def get_active(self, instance_id: str, contact_id: str) -> Optional[Conversation]:
        """Get the active conversation of a contact on a channel instance."""

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        """Insert a new conversation."""

    @abstractmethod
    async def save(self, conversation: Conversation) -> None:
        """Persist status, message count, AI context and patient id."""

    @abstractmethod
    async def message_exists(self, message_id: str, channel_type: ChannelType) -> bool:
        """Check whether an external message id was already stored."""

    @abstractmethod
    async def add_message(self, message: StoredMessage) -> None:
        """Append a message to its conversation (write-once)."""

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[StoredMessage]:
        """Messages of a conversation, oldest first."""

    async def get_or_create_active(
        self,
        instance_id: str,
        channel_type: ChannelType,
        sender: MessageSender,
    ) -> tuple[Conversation, bool]:
        """
        Resolve the active conversation for a contact, creating it if needed.

        Returns:
            (conversation, created)
        """
        conversation = await self.get_active(instance_id, sender.id)
        if conversation is not None:
            return conversation, False

        conversation = await self.create(
            Conversation(
                channel_type=channel_type,
                instance_id=instance_id,
                contact=ContactInfo.from_sender(sender),
            )
        )
        logger.info(
            f"Conversation created: {conversation.id} "
            f"(instance={instance_id}, contact={sender.id})"
        )
        return conversation, True

    async def reset_context(self, conversation_id: str) -> Optional[Conversation]:
        """Reset a conversation's AI context to the initial state."""
        conversation = await self.get(conversation_id)
        if conversation is None:
            return None
        conversation.ai_context = AIContext()
        conversation.updated_at = _utcnow()
        await self.save(conversation)
        return conversation


class InMemoryConversationStore(ConversationStore):
    """
    Process-local store.

    Used by tests and single-process development setups. Returns copies so
    callers cannot mutate stored state without calling `save`.
    """

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[StoredMessage]] = {}
        self._message_keys: set[tuple[str, str]] = set()

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        return copy.deepcopy(conversation) if conversation else None

    async def get_active(self, instance_id: str, contact_id: str) -> Optional[Conversation]:
        for conversation in self._conversations.values():
            if (
                conversation.instance_id == instance_id
                and conversation.contact.external_id == contact_id
                and conversation.status == ConversationStatus.ACTIVE
            ):
                return copy.deepcopy(conversation)
        return None

    async def create(self, conversation: Conversation) -> Conversation:
        if conversation.id in self._conversations:
            raise PersistenceError(f"Conversation {conversation.id} already exists")
        if conversation.status == ConversationStatus.ACTIVE:
            existing = await self.get_active(
                conversation.instance_id, conversation.contact.external_id
            )
            if existing is not None:
                raise PersistenceError(
                    f"Contact {conversation.contact.external_id} already has an "
                    f"active conversation on instance {conversation.instance_id}"
                )
        self._conversations[conversation.id] = copy.deepcopy(conversation)
        self._messages[conversation.id] = []
        return copy.deepcopy(conversation)

    async def save(self, conversation: Conversation) -> None:
        if conversation.id not in self._conversations:
            raise PersistenceError(f"Conversation {conversation.id} not found")
        self._conversations[conversation.id] = copy.deepcopy(conversation)

    async def message_exists(self, message_id: str, channel_type: ChannelType) -> bool:
        return (channel_type.value, message_id) in self._message_keys

    async def add_message(self, message: StoredMessage) -> None:
        if message.conversation_id not in self._conversations:
            raise PersistenceError(f"Conversation {message.conversation_id} not found")
        key = (message.channel_type.value, message.id)
        if key in self._message_keys:
            raise PersistenceError(f"Message {message.id} already stored")
        self._message_keys.add(key)
        self._messages[message.conversation_id].append(copy.deepcopy(message))

    async def list_messages(self, conversation_id: str) -> list[StoredMessage]:
        return [copy.deepcopy(m) for m in self._messages.get(conversation_id, [])]
