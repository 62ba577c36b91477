"""Tests for settings validation and logging context helpers."""

from __future__ import annotations

import httpx
import pytest
import structlog
from fastapi import FastAPI
from pydantic import SecretStr

from botforge.config import Environment, Settings
from botforge.telemetry.logging import RequestIdMiddleware, bind_job_context, clear_context


class TestSettings:
    def test_dev_enables_debug(self) -> None:
        assert Settings(environment=Environment.DEV, debug=False).debug is True

    def test_test_environment_counts_as_dev(self, fake_settings) -> None:
        assert fake_settings.is_dev
        assert not fake_settings.is_prod

    def test_production_refuses_default_keys(self) -> None:
        with pytest.raises(RuntimeError, match="PRODUCTION STARTUP BLOCKED"):
            Settings(environment=Environment.PROD)

    def test_production_accepts_real_keys(self) -> None:
        settings = Settings(
            environment=Environment.PROD,
            litellm_api_key=SecretStr("sk-live-4f1c9a"),
            provider_api_key=SecretStr("sk-live-8b2e7d"),
        )
        assert settings.is_prod

    def test_batch_size_bounds(self) -> None:
        with pytest.raises(ValueError):
            Settings(generation_batch_size=0)


class TestLoggingContext:
    def test_bind_job_context_skips_none(self) -> None:
        clear_context()
        bind_job_context(dataset_id="d1", report_id=None)

        assert structlog.contextvars.get_contextvars() == {"dataset_id": "d1"}
        clear_context()

    @pytest.mark.asyncio()
    async def test_request_id_header(self) -> None:
        app = FastAPI()

        @app.get("/ping")
        async def ping() -> dict:
            return {"ok": True}

        app.add_middleware(RequestIdMiddleware)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/ping")

        assert response.headers["x-request-id"].startswith("req_")
