"""LiteLLM wrapper for chat completions.

Dataset generation and model evaluation both talk to chat models through
this client. Calls are routed through the LiteLLM proxy so that fine-tuned
model ids (``ft:gpt-4o-mini:...``) and base models share one code path.

This module:
- Wraps litellm.acompletion()
- Retries transient failures with exponential backoff via tenacity
- Normalizes errors to LLMError subclasses
- Logs token usage
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from botforge.config import Settings, get_settings

log = structlog.get_logger(__name__)


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable."""


# Transient failures worth retrying (raised by complete() after mapping)
_RETRYABLE = (LLMRateLimitError, LLMUnavailableError)


class LLMClient:
    """Thin wrapper around LiteLLM with retry logic and structured logging."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        litellm.api_base = self._settings.litellm_base_url
        litellm.api_key = self._settings.litellm_api_key.get_secret_value()

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def complete(
        self,
        *,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        **kwargs: Any,
    ) -> litellm.ModelResponse:
        """Send a chat completion request via LiteLLM.

        Args:
            messages: List of role/content dicts (OpenAI format)
            model: Model identifier. Falls back to LITELLM_DEFAULT_MODEL.
            temperature: Sampling temperature (0.0 = deterministic)
            max_tokens: Maximum output tokens
            **kwargs: Additional kwargs passed to litellm.acompletion()
                (response_format, timeout, ...)

        Returns:
            LiteLLM ModelResponse object

        Raises:
            LLMRateLimitError: Upstream rate limit after retries
            LLMUnavailableError: Service unavailable after retries
            LLMError: Any other LLM failure
        """
        effective_model = model or self._settings.litellm_default_model

        log.debug(
            "llm.completion_request",
            model=effective_model,
            message_count=len(messages),
            max_tokens=max_tokens,
        )

        try:
            response: litellm.ModelResponse = await litellm.acompletion(
                model=effective_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except litellm.exceptions.RateLimitError as exc:
            raise LLMRateLimitError(f"Rate limit from upstream LLM: {exc}") from exc
        except litellm.exceptions.ServiceUnavailableError as exc:
            raise LLMUnavailableError(f"LLM service unavailable: {exc}") from exc
        except (litellm.exceptions.Timeout, ConnectionError) as exc:
            raise LLMUnavailableError(f"LLM request timed out or dropped: {exc}") from exc
        except Exception as exc:
            raise LLMError(f"LLM completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage:
            log.info(
                "llm.completion_done",
                model=effective_model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )

        return response

    async def complete_text(self, **kwargs: Any) -> str:
        """Run complete() and return only the assistant text."""
        response = await self.complete(**kwargs)
        return self.extract_text(response)

    def extract_text(self, response: litellm.ModelResponse) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""
