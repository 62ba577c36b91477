"""OpenAI-compatible training provider.

Files and fine-tuning jobs go straight to the provider's REST API over a
pooled httpx client; chat completions (used to score fine-tuned models) go
through the LiteLLM client so they share its retry and logging behaviour.

Idempotent reads (get job/file, list events) are retried on transport
errors. Writes are sent once: a failed job submission must be reported to
the caller, not silently repeated.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from botforge.config import Settings, get_settings
from botforge.core.errors import ProviderError
from botforge.providers.base import ProviderResponse, TrainingProvider
from botforge.providers.llm import LLMClient

log = structlog.get_logger(__name__)


class OpenAITrainingProvider(TrainingProvider):
    """TrainingProvider backed by the OpenAI files and fine_tuning APIs."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        llm_client: LLMClient | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            settings: Application settings (base URL, API key, timeout).
            llm_client: Client used for chat completions.
            http_client: Pre-built client (tests pass one with a MockTransport).
        """
        self._settings = settings or get_settings()
        self._llm = llm_client or LLMClient(self._settings)
        self._http_client = http_client or httpx.AsyncClient(
            base_url=self._settings.provider_base_url,
            timeout=self._settings.provider_timeout_seconds,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
        self._http_client.headers["Authorization"] = (
            f"Bearer {self._settings.provider_api_key.get_secret_value()}"
        )

    async def __aenter__(self) -> OpenAITrainingProvider:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http_client.aclose()

    # ------------------------------------------------------------------ #
    # Files
    # ------------------------------------------------------------------ #

    async def create_file(
        self,
        content: bytes,
        *,
        filename: str,
        purpose: str = "fine-tune",
    ) -> ProviderResponse:
        return await self._request(
            "POST",
            "/files",
            files={"file": (filename, content, "application/jsonl")},
            data={"purpose": purpose},
        )

    async def get_file(self, file_id: str) -> ProviderResponse:
        return await self._request("GET", f"/files/{file_id}", idempotent=True)

    # ------------------------------------------------------------------ #
    # Fine-tuning jobs
    # ------------------------------------------------------------------ #

    async def submit_job(
        self,
        *,
        training_file_id: str,
        base_model: str,
        hyperparameters: dict[str, Any],
        validation_file_id: str | None = None,
        suffix: str | None = None,
    ) -> ProviderResponse:
        body: dict[str, Any] = {
            "training_file": training_file_id,
            "model": base_model,
            "hyperparameters": hyperparameters,
        }
        if validation_file_id:
            body["validation_file"] = validation_file_id
        if suffix:
            body["suffix"] = suffix
        return await self._request("POST", "/fine_tuning/jobs", json=body)

    async def get_job(self, provider_job_id: str) -> ProviderResponse:
        return await self._request(
            "GET", f"/fine_tuning/jobs/{provider_job_id}", idempotent=True
        )

    async def cancel_job(self, provider_job_id: str) -> ProviderResponse:
        return await self._request("POST", f"/fine_tuning/jobs/{provider_job_id}/cancel")

    async def list_job_events(
        self,
        provider_job_id: str,
        *,
        limit: int = 20,
        after: str | None = None,
    ) -> ProviderResponse:
        params: dict[str, Any] = {"limit": limit}
        if after:
            params["after"] = after
        return await self._request(
            "GET",
            f"/fine_tuning/jobs/{provider_job_id}/events",
            params=params,
            idempotent=True,
        )

    # ------------------------------------------------------------------ #
    # Models
    # ------------------------------------------------------------------ #

    async def list_models(self) -> ProviderResponse:
        return await self._request("GET", "/models", idempotent=True)

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #

    async def chat_complete(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> str:
        return await self._llm.complete_text(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    async def _request(
        self,
        method: str,
        path: str,
        *,
        idempotent: bool = False,
        **kwargs: Any,
    ) -> ProviderResponse:
        """Send a request and wrap the answer; transport failures raise ProviderError."""
        try:
            if idempotent:
                response = await self._send_with_retry(method, path, **kwargs)
            else:
                response = await self._http_client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            log.error("provider.request_failed", method=method, path=path, error=str(exc))
            raise ProviderError(
                f"Provider request failed: {exc}",
                error={
                    "message": str(exc) or type(exc).__name__,
                    "code": "API_ERROR",
                    "type": "internal_error",
                    "param": None,
                },
            ) from exc

        result = ProviderResponse(status_code=response.status_code, data=_decode(response))
        log.debug(
            "provider.response",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        return result

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._http_client.request(method, path, **kwargs)


def _decode(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        if response.is_error:
            return {"error": {"message": response.text or response.reason_phrase}}
        return {}
    if isinstance(body, dict):
        return body
    return {"data": body}
