"""Catalog of provider chat models a bot can be trained from.

The provider's model list is filtered to GPT chat models and merged with a
small built-in catalog, so the well-known base models are always offered
even when the account listing omits them. Each entry says whether the
provider accepts it as a fine-tuning base.
"""

from __future__ import annotations

from typing import Any

import structlog

from botforge.core.errors import ProviderError
from botforge.providers.base import TrainingProvider

log = structlog.get_logger(__name__)

# Substrings of model ids the provider accepts as fine-tuning bases
FINE_TUNABLE_MARKERS = ("gpt-4o-mini", "gpt-3.5-turbo", "gpt-4-0125", "gpt-4-1106")

# Instruction-tuned and vision variants are not chat training targets
_EXCLUDED_MARKERS = ("instruct", "vision")

DEFAULT_MODELS: tuple[dict[str, Any], ...] = (
    {"id": "gpt-4o-2024-08-06", "name": "GPT-4o", "created": 1715297890, "owned_by": "openai"},
    {"id": "gpt-4o-mini-2024-07-18", "name": "GPT-4o Mini", "created": 1721250000, "owned_by": "openai"},
    {"id": "gpt-4-turbo", "name": "GPT-4 Turbo", "created": 1700000000, "owned_by": "openai"},
    {"id": "gpt-3.5-turbo", "name": "GPT-3.5 Turbo", "created": 1670000000, "owned_by": "openai"},
)


def supports_fine_tuning(model_id: str) -> bool:
    return any(marker in model_id for marker in FINE_TUNABLE_MARKERS)


def _entry(model: dict[str, Any], name: str | None = None) -> dict[str, Any]:
    model_id = str(model["id"])
    return {
        "id": model_id,
        "name": name or model.get("name") or model_id,
        "created": int(model.get("created") or 0),
        "owned_by": model.get("owned_by") or "",
        "supports_fine_tuning": supports_fine_tuning(model_id),
    }


def _defaults() -> list[dict[str, Any]]:
    return [_entry(model) for model in DEFAULT_MODELS]


async def list_base_models(provider: TrainingProvider) -> dict[str, Any]:
    """Models to offer as a bot's base model.

    Returns:
        {"models": [...], "source": "provider" | "defaults"}. The built-in
        catalog comes first, followed by the remaining provider models
        newest first.

    Raises:
        ProviderError: The provider answered with a non-success status.
            An unreachable provider is not an error: the built-in catalog
            is returned with ``source="defaults"``.
    """
    try:
        response = await provider.list_models()
    except ProviderError as exc:
        log.warning("base_models.provider_unreachable", error=str(exc))
        return {"models": _defaults(), "source": "defaults"}

    if not response.ok:
        error = response.error_detail()
        log.error("base_models.fetch_failed", status_code=response.status_code, error=error["message"])
        raise ProviderError(error["message"], status_code=response.status_code, error=error)

    listed = [
        _entry(model)
        for model in response.data.get("data") or []
        if isinstance(model, dict)
        and "gpt" in str(model.get("id", ""))
        and not any(marker in str(model["id"]) for marker in _EXCLUDED_MARKERS)
    ]
    listed.sort(key=lambda model: model["created"], reverse=True)

    # Built-in entries keep their position and display name; provider
    # metadata wins otherwise
    merged: dict[str, dict[str, Any]] = {model["id"]: model for model in _defaults()}
    for model in listed:
        if model["id"] in merged:
            model["name"] = merged[model["id"]]["name"]
        merged[model["id"]] = model

    return {"models": list(merged.values()), "source": "provider"}
