"""Intent classification module."""

from .types import MessageIntent, IntentResult
from .classifier import IntentClassifier, ClaudeIntentClassifier

__all__ = [
    # Types
    "MessageIntent",
    "IntentResult",
    # Classifier
    "IntentClassifier",
    "ClaudeIntentClassifier",
]
