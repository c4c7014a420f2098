"""Lookup of channel instance configuration."""

from abc import ABC, abstractmethod
from typing import Optional

from .config import ChannelInstance


class ChannelInstanceRepository(ABC):
    """Read access to configured channel instances."""

    @abstractmethod
    async def get(self, instance_id: str) -> Optional[ChannelInstance]:
        """Get an active channel instance by id."""


class InMemoryChannelInstanceRepository(ChannelInstanceRepository):
    """Instances held in memory (tests and development)."""

    def __init__(self, instances: Optional[list[ChannelInstance]] = None):
        self._instances = {instance.id: instance for instance in instances or []}

    def add(self, instance: ChannelInstance) -> None:
        self._instances[instance.id] = instance

    async def get(self, instance_id: str) -> Optional[ChannelInstance]:
        return self._instances.get(instance_id)
