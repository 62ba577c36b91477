"""Tests for the LiteLLM wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import litellm
import pytest
from tenacity import wait_none

from botforge.providers.llm import LLMClient, LLMError, LLMUnavailableError


def _response(text: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = text
    response.usage = None
    return response


@pytest.mark.asyncio()
async def test_complete_text_returns_content(fake_settings, monkeypatch) -> None:
    acompletion = AsyncMock(return_value=_response("hello"))
    monkeypatch.setattr(litellm, "acompletion", acompletion)

    text = await LLMClient(fake_settings).complete_text(
        messages=[{"role": "user", "content": "hi"}], model="gpt-4o-mini"
    )

    assert text == "hello"
    assert acompletion.await_args.kwargs["model"] == "gpt-4o-mini"


@pytest.mark.asyncio()
async def test_default_model_from_settings(fake_settings, monkeypatch) -> None:
    acompletion = AsyncMock(return_value=_response(None))
    monkeypatch.setattr(litellm, "acompletion", acompletion)

    text = await LLMClient(fake_settings).complete_text(messages=[{"role": "user", "content": "hi"}])

    assert text == ""
    assert acompletion.await_args.kwargs["model"] == fake_settings.litellm_default_model


@pytest.mark.asyncio()
async def test_unexpected_failure_is_not_retried(fake_settings, monkeypatch) -> None:
    acompletion = AsyncMock(side_effect=ValueError("bad request"))
    monkeypatch.setattr(litellm, "acompletion", acompletion)

    with pytest.raises(LLMError):
        await LLMClient(fake_settings).complete(messages=[{"role": "user", "content": "hi"}])

    assert acompletion.await_count == 1


@pytest.mark.asyncio()
async def test_dropped_connection_is_retried(fake_settings, monkeypatch) -> None:
    acompletion = AsyncMock(side_effect=ConnectionError("reset by peer"))
    monkeypatch.setattr(litellm, "acompletion", acompletion)
    client = LLMClient(fake_settings)
    complete = LLMClient.complete.retry_with(wait=wait_none())

    with pytest.raises(LLMUnavailableError):
        await complete(client, messages=[{"role": "user", "content": "hi"}])

    assert acompletion.await_count == 3


def test_extract_text_tolerates_empty_choices(fake_settings) -> None:
    response = MagicMock()
    response.choices = []
    assert LLMClient(fake_settings).extract_text(response) == ""
