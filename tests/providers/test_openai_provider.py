"""Tests for OpenAITrainingProvider over an httpx MockTransport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from botforge.core.errors import ProviderError
from botforge.providers.openai import OpenAITrainingProvider


class Recorder:
    """MockTransport handler answering from a queue of responses or exceptions."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def _provider(fake_settings, recorder: Recorder, llm=None) -> OpenAITrainingProvider:
    client = httpx.AsyncClient(
        base_url=fake_settings.provider_base_url,
        transport=httpx.MockTransport(recorder),
    )
    return OpenAITrainingProvider(fake_settings, llm_client=llm or MagicMock(), http_client=client)


class TestJobs:
    @pytest.mark.asyncio()
    async def test_submit_job_body(self, fake_settings) -> None:
        recorder = Recorder(httpx.Response(200, json={"id": "ftjob-1", "status": "validating_files"}))
        provider = _provider(fake_settings, recorder)

        response = await provider.submit_job(
            training_file_id="file-abc",
            base_model="gpt-4o-mini-2024-07-18",
            hyperparameters={"n_epochs": 3, "batch_size": "auto", "learning_rate_multiplier": "auto"},
            suffix="billing",
        )

        assert response.ok
        assert response.data["id"] == "ftjob-1"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/fine_tuning/jobs"
        assert request.headers["Authorization"] == "Bearer sk-test-key"
        assert json.loads(request.content) == {
            "training_file": "file-abc",
            "model": "gpt-4o-mini-2024-07-18",
            "hyperparameters": {"n_epochs": 3, "batch_size": "auto", "learning_rate_multiplier": "auto"},
            "suffix": "billing",
        }
        await provider.aclose()

    @pytest.mark.asyncio()
    async def test_error_response_is_returned_not_raised(self, fake_settings) -> None:
        recorder = Recorder(
            httpx.Response(
                400,
                json={"error": {"message": "Invalid file", "code": "invalid_file", "param": "training_file"}},
            )
        )
        provider = _provider(fake_settings, recorder)

        response = await provider.submit_job(
            training_file_id="file-abc", base_model="gpt-4o-mini", hyperparameters={}
        )

        assert not response.ok
        assert response.error_detail() == {
            "message": "Invalid file",
            "code": "invalid_file",
            "type": None,
            "param": "training_file",
        }

    @pytest.mark.asyncio()
    async def test_non_json_error_body(self, fake_settings) -> None:
        recorder = Recorder(httpx.Response(502, text="Bad gateway"))
        provider = _provider(fake_settings, recorder)

        response = await provider.cancel_job("ftjob-1")

        assert response.status_code == 502
        assert response.error_detail()["message"] == "Bad gateway"

    @pytest.mark.asyncio()
    async def test_transport_error_raises_provider_error(self, fake_settings) -> None:
        recorder = Recorder(httpx.ConnectError("connection refused"))
        provider = _provider(fake_settings, recorder)

        with pytest.raises(ProviderError) as exc_info:
            await provider.submit_job(training_file_id="file-abc", base_model="m", hyperparameters={})

        assert exc_info.value.error["code"] == "API_ERROR"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio()
    async def test_idempotent_read_is_retried(self, fake_settings) -> None:
        recorder = Recorder(
            httpx.ConnectError("reset"),
            httpx.Response(200, json={"id": "ftjob-1", "status": "running"}),
        )
        provider = _provider(fake_settings, recorder)

        response = await provider.get_job("ftjob-1")

        assert response.data["status"] == "running"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio()
    async def test_list_events_params(self, fake_settings) -> None:
        recorder = Recorder(httpx.Response(200, json={"data": [], "has_more": False}))
        provider = _provider(fake_settings, recorder)

        await provider.list_job_events("ftjob-1", limit=5, after="ev-9")

        request = recorder.requests[0]
        assert request.url.path == "/v1/fine_tuning/jobs/ftjob-1/events"
        assert request.url.params["limit"] == "5"
        assert request.url.params["after"] == "ev-9"


class TestFilesModelsAndChat:
    @pytest.mark.asyncio()
    async def test_create_file_is_multipart(self, fake_settings) -> None:
        recorder = Recorder(httpx.Response(200, json={"id": "file-new", "bytes": 12}))
        provider = _provider(fake_settings, recorder)

        response = await provider.create_file(b'{"messages": []}', filename="billing-training.jsonl")

        assert response.data["id"] == "file-new"
        request = recorder.requests[0]
        assert request.url.path == "/v1/files"
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b"billing-training.jsonl" in request.content
        assert b"fine-tune" in request.content

    @pytest.mark.asyncio()
    async def test_chat_complete_goes_through_llm_client(self, fake_settings) -> None:
        llm = MagicMock()
        llm.complete_text = AsyncMock(return_value="Refunds take five days.")
        provider = _provider(fake_settings, Recorder(httpx.Response(200)), llm=llm)

        reply = await provider.chat_complete(
            model="ft:M1", messages=[{"role": "user", "content": "How long do refunds take?"}], max_tokens=50
        )

        assert reply == "Refunds take five days."
        assert llm.complete_text.await_args.kwargs["model"] == "ft:M1"
        assert llm.complete_text.await_args.kwargs["max_tokens"] == 50

    @pytest.mark.asyncio()
    async def test_list_models(self, fake_settings) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"object": "list", "data": [{"id": "gpt-4o-mini", "created": 1}]})
        )
        provider = _provider(fake_settings, recorder)

        response = await provider.list_models()

        assert response.data["data"][0]["id"] == "gpt-4o-mini"
        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/v1/models"
