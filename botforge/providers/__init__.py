"""External provider clients: fine-tuning API and LiteLLM chat completions."""

from __future__ import annotations

from botforge.providers.base import ProviderResponse, TrainingProvider
from botforge.providers.llm import LLMClient, LLMError
from botforge.providers.openai import OpenAITrainingProvider

__all__ = [
    "LLMClient",
    "LLMError",
    "OpenAITrainingProvider",
    "ProviderResponse",
    "TrainingProvider",
]
