"""
FastAPI dependencies.

Services are created once in the application lifespan and kept on
`app.state`; routes receive them through these providers so tests can
swap them with `app.dependency_overrides`.
"""

from fastapi import Request

from app.channels.adapter import AdapterRegistry
from app.channels.repository import ChannelInstanceRepository
from app.core.booking.bridge import BookingBridge
from app.core.conversation.store import ConversationStore
from app.core.pipeline.engine import ConversationPipeline


def get_pipeline(request: Request) -> ConversationPipeline:
    return request.app.state.pipeline


def get_adapter_registry(request: Request) -> AdapterRegistry:
    return request.app.state.adapters


def get_instance_repository(request: Request) -> ChannelInstanceRepository:
    return request.app.state.instances


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversations


def get_booking_bridge(request: Request) -> BookingBridge:
    return request.app.state.booking_bridge
