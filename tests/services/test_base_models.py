"""Tests for the base model catalog."""

from __future__ import annotations

import pytest

from botforge.core.errors import ProviderError
from botforge.providers.base import ProviderResponse
from botforge.services.base_models import DEFAULT_MODELS, list_base_models, supports_fine_tuning


class TestListBaseModels:
    @pytest.mark.asyncio()
    async def test_filters_and_merges_with_defaults(self, provider) -> None:
        provider.models_response = ProviderResponse(
            200,
            {
                "data": [
                    {"id": "gpt-3.5-turbo-instruct", "created": 1690000000, "owned_by": "system"},
                    {"id": "whisper-1", "created": 1677532384, "owned_by": "openai-internal"},
                    {"id": "gpt-4o-mini-2024-07-18", "created": 1721172717, "owned_by": "system"},
                    {"id": "gpt-4-0125-preview", "created": 1706037612, "owned_by": "system"},
                    {"id": "gpt-4.1-nano", "created": 1744321707, "owned_by": "system"},
                    {"id": "gpt-4-vision-preview", "created": 1698894917, "owned_by": "system"},
                ]
            },
        )

        result = await list_base_models(provider)

        assert result["source"] == "provider"
        ids = [m["id"] for m in result["models"]]
        assert ids == [m["id"] for m in DEFAULT_MODELS] + ["gpt-4.1-nano", "gpt-4-0125-preview"]

        mini = next(m for m in result["models"] if m["id"] == "gpt-4o-mini-2024-07-18")
        assert mini["name"] == "GPT-4o Mini"
        assert mini["owned_by"] == "system"
        assert mini["created"] == 1721172717
        assert mini["supports_fine_tuning"] is True

        preview = next(m for m in result["models"] if m["id"] == "gpt-4-0125-preview")
        assert preview["name"] == "gpt-4-0125-preview"
        assert preview["supports_fine_tuning"] is True

    @pytest.mark.asyncio()
    async def test_unreachable_provider_falls_back_to_defaults(self, provider) -> None:
        provider.models_response = ProviderError("Provider request failed: timed out")

        result = await list_base_models(provider)

        assert result["source"] == "defaults"
        assert [m["id"] for m in result["models"]] == [m["id"] for m in DEFAULT_MODELS]

    @pytest.mark.asyncio()
    async def test_rejected_listing_raises(self, provider) -> None:
        provider.models_response = ProviderResponse(
            401, {"error": {"message": "Incorrect API key provided", "code": "invalid_api_key"}}
        )

        with pytest.raises(ProviderError) as exc_info:
            await list_base_models(provider)

        assert exc_info.value.status_code == 401
        assert exc_info.value.error["code"] == "invalid_api_key"


@pytest.mark.parametrize(
    ("model_id", "expected"),
    [
        ("gpt-4o-mini-2024-07-18", True),
        ("gpt-3.5-turbo-1106", True),
        ("gpt-4-1106-preview", True),
        ("gpt-4o-2024-08-06", False),
        ("gpt-4-turbo", False),
    ],
)
def test_supports_fine_tuning(model_id: str, expected: bool) -> None:
    assert supports_fine_tuning(model_id) is expected
