"""
Intent classification for inbound patient messages.

The whole closed label set is decided by the model; there is no keyword
pre-filter, since Spanish phrasing of the same request varies too much.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Optional

from app.config import settings
from app.core.errors import ClassificationError
from app.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from .types import MessageIntent, IntentResult

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```[\w-]*\n(.*?)\n?```$", re.DOTALL)


CLASSIFICATION_PROMPT = """You are an intent classifier for a medical appointment assistant.
Patients write in Spanish.

Classify the patient's message into ONE intent category.

## Intent Categories

- appointment_booking: Patient wants to BOOK a NEW appointment
- appointment_inquiry: Patient asks about their EXISTING appointments
- appointment_reschedule: Patient wants to MOVE an existing appointment
- appointment_cancel: Patient wants to CANCEL an existing appointment
- general_inquiry: General question about services, hours, location, insurance
- emergency: Medical EMERGENCY (chest pain, heavy bleeding, trouble breathing, etc.)
- greeting: Hello, good morning, start of conversation
- unknown: Cannot determine intent

## Context

{context}

## Patient Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{
    "intent": "<intent>",
    "confidence": <0.0-1.0>
}}"""


def strip_code_fence(response: str) -> str:
    """Remove a markdown code fence around an LLM JSON answer."""
    match = _FENCE.match(response.strip())
    return (match.group(1) if match else response).strip()


class IntentClassifier(ABC):
    """Classifies a message into a MessageIntent."""

    @abstractmethod
    async def classify(
        self,
        message: str,
        context: Optional[dict] = None,
    ) -> IntentResult:
        """
        Classify message intent.

        Raises:
            ClassificationError: If the classifier cannot produce an answer
        """


class ClaudeIntentClassifier(IntentClassifier):
    """
    Classifier backed by the fast Claude model.

    Answers below `claude_intent_confidence_threshold` are asked again of
    the fallback model, and the second answer wins.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        self._client = claude_client
        self._confidence_threshold = settings.claude_intent_confidence_threshold

    async def _get_client(self) -> ClaudeClient:
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def classify(
        self,
        message: str,
        context: Optional[dict] = None,
    ) -> IntentResult:
        """
        Classify patient message intent using LLM.

        Args:
            message: Patient's message
            context: Current AI context of the conversation

        Returns:
            IntentResult with intent and confidence

        Raises:
            ClassificationError: On API failure or unparseable output
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return IntentResult(intent=MessageIntent.UNKNOWN, confidence=1.0)

        context_str = self._build_context(context)
        client = await self._get_client()

        result = await self._classify_with_model(
            client=client,
            message=message,
            context=context_str,
            model=settings.claude_intent_model,
        )

        if result.confidence < self._confidence_threshold:
            logger.debug(f"Low confidence {result.confidence:.2f}, asking fallback model")
            result = await self._classify_with_model(
                client=client,
                message=message,
                context=context_str,
                model=settings.claude_fallback_model,
            )
            result.fallback_used = True

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Classified intent: {result.intent.value} (confidence: {result.confidence:.2f})"
        )

        return result

    async def _classify_with_model(
        self,
        client: ClaudeClient,
        message: str,
        context: str,
        model: str,
    ) -> IntentResult:
        prompt = CLASSIFICATION_PROMPT.format(
            context=context or "New conversation, no prior context.",
            message=message,
        )

        try:
            response = await client.generate(
                prompt=prompt,
                model=model,
                max_tokens=100,
                temperature=0,
                use_fallback_on_error=False,
            )
        except ClaudeClientError as e:
            raise ClassificationError(f"Claude API error: {e}") from e

        return self._parse_response(response.content)

    def _build_context(self, context: Optional[dict]) -> str:
        if not context:
            return ""

        parts = []

        if context.get("conversation_stage"):
            parts.append(f"Current stage: {context['conversation_stage']}")

        if context.get("current_intent") and context["current_intent"] != "unknown":
            parts.append(f"Previous intent: {context['current_intent']}")

        entities = context.get("extracted_entities") or {}
        items = [f"{key}={value}" for key, value in entities.items() if key != "patient_info"]
        if items:
            parts.append(f"Collected: {', '.join(items)}")

        return "\n".join(parts)

    def _parse_response(self, response: str) -> IntentResult:
        response = strip_code_fence(response)

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable classifier output: {response!r}")
            raise ClassificationError("Classifier returned invalid JSON") from e

        intent_str = str(data.get("intent", "unknown")).lower()
        try:
            intent = MessageIntent(intent_str)
        except ValueError:
            logger.warning(f"Classifier returned unknown intent '{intent_str}'")
            intent = MessageIntent.UNKNOWN

        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5

        return IntentResult(
            intent=intent,
            confidence=max(0.0, min(confidence, 1.0)),
            raw_response=response,
        )
