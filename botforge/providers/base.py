"""Abstract training provider client.

The lifecycle manager, dataset upload and evaluator only depend on this
interface. Every file/job call returns a ProviderResponse so callers can
tell a non-success answer apart from a transport failure (which raises).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ProviderResponse:
    """HTTP-style result of a provider call.

    Attributes:
        status_code: Provider status code (2xx means success).
        data: Decoded JSON body (empty dict when the body was not JSON).
    """

    status_code: int
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def error_detail(self) -> dict[str, Any]:
        """Structured error (message/code/type/param) for a non-success response."""
        error = self.data.get("error")
        if isinstance(error, dict):
            return {
                "message": error.get("message") or f"HTTP {self.status_code}",
                "code": error.get("code"),
                "type": error.get("type"),
                "param": error.get("param"),
            }
        if isinstance(error, str) and error:
            return {"message": error, "code": str(self.status_code), "type": None, "param": None}
        return {
            "message": f"HTTP {self.status_code}",
            "code": str(self.status_code),
            "type": None,
            "param": None,
        }


class TrainingProvider(ABC):
    """External fine-tuning provider: files, jobs and chat completions."""

    @abstractmethod
    async def create_file(
        self,
        content: bytes,
        *,
        filename: str,
        purpose: str = "fine-tune",
    ) -> ProviderResponse:
        """Upload a JSONL training file; ``data["id"]`` holds the file id."""

    @abstractmethod
    async def get_file(self, file_id: str) -> ProviderResponse:
        """Fetch file metadata (``bytes``, ``filename``, ...)."""

    @abstractmethod
    async def submit_job(
        self,
        *,
        training_file_id: str,
        base_model: str,
        hyperparameters: dict[str, Any],
        validation_file_id: str | None = None,
        suffix: str | None = None,
    ) -> ProviderResponse:
        """Create a fine-tuning job; ``data`` holds ``id`` and ``status``."""

    @abstractmethod
    async def get_job(self, provider_job_id: str) -> ProviderResponse:
        """Fetch job state: status, fine_tuned_model, trained_tokens, finished_at, error."""

    @abstractmethod
    async def cancel_job(self, provider_job_id: str) -> ProviderResponse:
        """Ask the provider to cancel a running job."""

    @abstractmethod
    async def list_job_events(
        self,
        provider_job_id: str,
        *,
        limit: int = 20,
        after: str | None = None,
    ) -> ProviderResponse:
        """List job events; ``data`` holds ``data`` (events) and ``has_more``."""

    @abstractmethod
    async def list_models(self) -> ProviderResponse:
        """List models visible to the account; ``data["data"]`` holds {id, created, owned_by}."""

    @abstractmethod
    async def chat_complete(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> str:
        """Return the assistant text for ``messages``; raises LLMError on failure."""

    async def aclose(self) -> None:
        """Release network resources."""
