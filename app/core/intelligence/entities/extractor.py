"""
LLM-based entity extraction using Claude Haiku.

Extracts: specialty, date, time, doctor name, urgency, symptoms, patient info.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from app.config import settings
from app.core.errors import ExtractionError
from app.core.intelligence.intent.classifier import strip_code_fence
from app.core.intelligence.intent.types import MessageIntent
from app.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from .types import ExtractedEntities

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract appointment information from this patient message.
The message is in Spanish; keep extracted values in Spanish.

Detected intent: {intent}

## What to Extract

- specialty: Medical specialty mentioned (e.g., "cardiología", "dermatología", "medicina general")
- date: Date if mentioned (ISO format YYYY-MM-DD, relative to today: {today})
- time: Time if mentioned (24-hour format HH:MM, e.g., "3 de la tarde" -> "15:00")
- doctor_name: Doctor's name if mentioned
- urgency: low, medium, high or emergency
- symptoms: List of symptoms mentioned
- patient_info: Patient's name, id_number (cédula) and phone if they give them

## Message

"{message}"

## Response

Respond with ONLY valid JSON (use null for fields not mentioned):
{{
    "specialty": "<specialty or null>",
    "date": "<YYYY-MM-DD or null>",
    "time": "<HH:MM or null>",
    "doctor_name": "<name or null>",
    "urgency": "<low/medium/high/emergency or null>",
    "symptoms": ["<symptom>"],
    "patient_info": {{"name": null, "id_number": null, "phone": null}}
}}"""


class EntityExtractor(ABC):
    """Extracts structured entities from message text."""

    @abstractmethod
    async def extract(
        self,
        message: str,
        intent: MessageIntent,
        context: Optional[dict] = None,
    ) -> ExtractedEntities:
        """
        Extract entities from a message.

        Raises:
            ExtractionError: If the extractor cannot produce an answer
        """


class ClaudeEntityExtractor(EntityExtractor):
    """LLM-based entity extraction using Claude Haiku."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize extractor.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def extract(
        self,
        message: str,
        intent: MessageIntent,
        context: Optional[dict] = None,
    ) -> ExtractedEntities:
        """
        Extract entities from patient message.

        Args:
            message: Patient's message
            intent: Intent detected for the same message
            context: Current AI context of the conversation

        Returns:
            ExtractedEntities with any found fields
        """
        message = message.strip()
        if not message:
            return ExtractedEntities()

        prompt = self._build_prompt(message, intent, date.today().isoformat(), context)
        client = await self._get_client()

        try:
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=300,
                temperature=0,
                use_fallback_on_error=True,
            )
        except ClaudeClientError as e:
            raise ExtractionError(f"Claude API error: {e}") from e

        entities = self._parse_response(response.content)
        logger.debug(
            f"Extracted entities: specialty={entities.specialty}, "
            f"date={entities.date}, time={entities.time}"
        )
        return entities

    def _build_prompt(
        self,
        message: str,
        intent: MessageIntent,
        today: str,
        context: Optional[dict] = None,
    ) -> str:
        """Build extraction prompt."""
        base_prompt = EXTRACTION_PROMPT.format(
            intent=intent.value,
            today=today,
            message=message,
        )

        previous = (context or {}).get("extracted_entities")
        if previous:
            known = json.dumps(previous, ensure_ascii=False)
            return f"Previously collected: {known}\n\n{base_prompt}"

        return base_prompt

    def _parse_response(self, response: str) -> ExtractedEntities:
        """Parse LLM JSON response."""
        response = strip_code_fence(response)

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            raise ExtractionError("Extractor returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ExtractionError("Extractor returned a non-object")

        if data.get("date"):
            try:
                date.fromisoformat(data["date"])
            except (TypeError, ValueError):
                logger.warning(f"Non-ISO date kept as expression: {data['date']}")

        return ExtractedEntities.from_dict(data)
