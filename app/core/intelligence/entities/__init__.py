"""Entity extraction module."""

from .types import ExtractedEntities, PatientInfo, Urgency
from .extractor import EntityExtractor, ClaudeEntityExtractor

__all__ = [
    # Types
    "ExtractedEntities",
    "PatientInfo",
    "Urgency",
    # Extractor
    "EntityExtractor",
    "ClaudeEntityExtractor",
]
