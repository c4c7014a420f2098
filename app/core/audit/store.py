"""Audit persistence contract and in-memory implementation."""

from abc import ABC, abstractmethod

from .models import AuditEntry, AuditQuery


class AuditStore(ABC):
    """Append-only storage for audit entries."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        """
        Store one entry.

        Raises:
            PersistenceError: If the write fails
        """

    @abstractmethod
    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        """Entries matching a query, oldest first."""


class InMemoryAuditStore(AuditStore):
    """Process-local audit storage (tests and development)."""

    def __init__(self):
        self._entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        results = [entry for entry in self._entries if query.matches(entry)]
        return results[query.offset:query.offset + query.limit]

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)
