"""Audit trail of pipeline transitions."""

from .models import ActorType, AuditAction, AuditEntry, AuditQuery
from .store import AuditStore, InMemoryAuditStore
from .logger import AuditLogger

__all__ = [
    "ActorType",
    "AuditAction",
    "AuditEntry",
    "AuditQuery",
    "AuditStore",
    "InMemoryAuditStore",
    "AuditLogger",
]
