"""
Claude API Client

Thin async wrapper over AsyncAnthropic shared by the NLU stages and the
response composer. Transient failures (rate limits, dropped connections)
are retried with exponential backoff; anything still failing can be
retried once on the fallback model.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError

from app.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError)


class ClaudeClientError(Exception):
    """Raised when no model produced a response."""


@dataclass
class ClaudeResponse:
    """Text completion plus usage figures."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str]
    latency_ms: float


class ClaudeClient:
    """
    Async Claude client.

    Usage:
        client = await get_claude_client()
        response = await client.generate(prompt, system_prompt=SYSTEM)
        print(response.content)
    """

    _shared: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None, max_retries: int = 3):
        """
        Args:
            api_key: Anthropic API key (defaults to settings)
            max_retries: Attempts per model on retryable errors
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=self.api_key)
        self._default_model = settings.claude_intent_model
        self._fallback_model = settings.claude_fallback_model
        self._max_retries = max_retries

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        if cls._shared is None:
            cls._shared = cls()
            logger.info(f"Claude client ready (default model {cls._shared._default_model})")
        return cls._shared

    @classmethod
    def reset_instance(cls) -> None:
        cls._shared = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        use_fallback_on_error: bool = True,
    ) -> ClaudeResponse:
        """
        Run one single-turn completion.

        Args:
            prompt: User turn
            system_prompt: Optional system prompt
            model: Model id (defaults to the intent model)
            max_tokens: Completion limit
            temperature: Sampling temperature
            use_fallback_on_error: Retry on the fallback model after a failure

        Raises:
            ClaudeClientError: If every attempt failed
        """
        model = model or self._default_model
        started = time.perf_counter()

        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        try:
            response = await self._call_with_retry(request)
        except Exception as e:
            if not use_fallback_on_error or model == self._fallback_model:
                raise ClaudeClientError(f"Claude API call failed: {e}") from e
            logger.warning(f"{model} failed ({e}); retrying on {self._fallback_model}")
            return await self.generate(
                prompt,
                system_prompt=system_prompt,
                model=self._fallback_model,
                max_tokens=max_tokens,
                temperature=temperature,
                use_fallback_on_error=False,
            )

        return ClaudeResponse(
            content="".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            ),
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def _call_with_retry(self, request: dict[str, Any]) -> Any:
        """messages.create with backoff of 1s, 2s, 4s... on retryable errors."""
        for attempt in range(self._max_retries):
            try:
                return await self._client.messages.create(**request)
            except RETRYABLE_ERRORS as e:
                if attempt == self._max_retries - 1:
                    raise
                delay = 2 ** attempt
                logger.warning(
                    f"Claude {e.__class__.__name__}, attempt {attempt + 1}/"
                    f"{self._max_retries}, retrying in {delay}s"
                )
                await asyncio.sleep(delay)
            except APIError as e:
                logger.error(f"Claude API error: {e}")
                raise
        raise ClaudeClientError("No attempts made")

    async def close(self) -> None:
        await self._client.close()


async def get_claude_client() -> ClaudeClient:
    """Shared client used when none is injected."""
    return ClaudeClient.get_instance()
