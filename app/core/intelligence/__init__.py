"""
Intelligence Layer Module

Provides intent classification and entity extraction for the
conversation pipeline.

Usage:
    from app.core.intelligence import ClaudeIntentClassifier, ClaudeEntityExtractor

    classifier = ClaudeIntentClassifier()
    result = await classifier.classify("Quiero agendar una cita")
    print(result.intent)  # MessageIntent.APPOINTMENT_BOOKING

    extractor = ClaudeEntityExtractor()
    entities = await extractor.extract("Cardiología el martes", result.intent)
    print(entities.specialty)  # "cardiología"
"""

# Intent Classification
from app.core.intelligence.intent.types import MessageIntent, IntentResult
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    ClaudeIntentClassifier,
)

# Entity Extraction
from app.core.intelligence.entities.types import ExtractedEntities, PatientInfo, Urgency
from app.core.intelligence.entities.extractor import (
    EntityExtractor,
    ClaudeEntityExtractor,
)

__all__ = [
    # Intent
    "MessageIntent",
    "IntentResult",
    "IntentClassifier",
    "ClaudeIntentClassifier",
    # Entities
    "ExtractedEntities",
    "PatientInfo",
    "Urgency",
    "EntityExtractor",
    "ClaudeEntityExtractor",
]
