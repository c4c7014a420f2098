"""
Channel adapter contract.

An adapter turns one provider's payloads into canonical messages and sends
canonical replies back. The pipeline only ever talks to this interface, so a
new channel is a new adapter, never a change to the pipeline.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from app.channels.config import ChannelInstance
from app.channels.types import (
    ChannelType,
    IncomingMessage,
    OutgoingMessage,
    ValidationResult,
)
from app.core.errors import AdapterNotFoundError

logger = logging.getLogger(__name__)


class ChannelAdapter(ABC):
    """
    Interface every messaging channel implements.

    Implementations must keep `parse_incoming_message` pure: the same raw
    payload always yields the same canonical message (including its id),
    which is what makes duplicate webhook deliveries detectable.
    """

    channel_type: ChannelType

    @abstractmethod
    def parse_incoming_message(self, raw_payload: dict) -> IncomingMessage:
        """
        Convert a provider payload into a canonical message.

        Raises:
            ValidationError: If the payload is not a processable message
        """

    @abstractmethod
    def validate_message(self, message: IncomingMessage) -> ValidationResult:
        """Channel-specific validation of a canonical message."""

    @abstractmethod
    def format_response(
        self,
        text: str,
        context: Optional[dict[str, Any]] = None,
    ) -> OutgoingMessage:
        """Build the outgoing message for a reply text."""

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """
        Transmit an outgoing message.

        Raises:
            DispatchError: If the provider rejects or cannot be reached
        """


AdapterFactory = Callable[[ChannelInstance], ChannelAdapter]


class AdapterRegistry:
    """
    Maps channel types to adapter factories.

    Adapters hold per-instance credentials, so the registry stores factories
    and builds an adapter for the instance a webhook belongs to.
    """

    def __init__(self) -> None:
        self._factories: dict[ChannelType, AdapterFactory] = {}

    def register(self, channel_type: ChannelType, factory: AdapterFactory) -> None:
        """Register (or replace) the factory for a channel type."""
        self._factories[channel_type] = factory
        logger.info(f"Channel adapter registered: {channel_type.value}")

    def is_registered(self, channel_type: ChannelType) -> bool:
        return channel_type in self._factories

    def create(self, instance: ChannelInstance) -> ChannelAdapter:
        """
        Build the adapter for a channel instance.

        Raises:
            AdapterNotFoundError: If the instance's channel has no adapter
        """
        factory = self._factories.get(instance.channel_type)
        if factory is None:
            raise AdapterNotFoundError(instance.channel_type.value)
        return factory(instance)
