"""Channel adapter contract, canonical message types and instance config."""

from .types import (
    ChannelType,
    IncomingMessage,
    MediaDescriptor,
    MessageContent,
    MessageDirection,
    MessageSender,
    MessageType,
    OutgoingMessage,
    ValidationResult,
)
from .config import (
    AIConfig,
    BusinessHours,
    ChannelInstance,
    ChannelInstanceConfig,
    DaySchedule,
    WebhookConfig,
)
from .adapter import AdapterRegistry, ChannelAdapter
from .repository import ChannelInstanceRepository, InMemoryChannelInstanceRepository

__all__ = [
    # Types
    "ChannelType",
    "IncomingMessage",
    "MediaDescriptor",
    "MessageContent",
    "MessageDirection",
    "MessageSender",
    "MessageType",
    "OutgoingMessage",
    "ValidationResult",
    # Config
    "AIConfig",
    "BusinessHours",
    "ChannelInstance",
    "ChannelInstanceConfig",
    "DaySchedule",
    "WebhookConfig",
    # Adapter
    "AdapterRegistry",
    "ChannelAdapter",
    # Repository
    "ChannelInstanceRepository",
    "InMemoryChannelInstanceRepository",
]
