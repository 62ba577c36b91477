"""
Shared test fixtures for pytest.

- fake_settings: Test environment configuration (file-backed SQLite per test)
- engine / session_factory / db_session: Real async sessions over aiosqlite
- publisher: Event publisher that records every event
- make_bot / make_dataset: Persist records with sensible defaults
- FakeProvider: Scriptable TrainingProvider double
"""

from __future__ import annotations

import os

# Use litellm's bundled model cost map instead of fetching it over the network
# at import time (the offline fetch-failure warning deadlocks under pytest's log capture).
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import botforge.models  # noqa: F401 - registers all models with Base.metadata
from botforge.config import Environment, Settings, get_settings
from botforge.database import Base
from botforge.events.publisher import RecordingEventPublisher
from botforge.models.bot import Bot
from botforge.models.dataset import Dataset
from botforge.providers.base import ProviderResponse, TrainingProvider


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Settings & Database
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings(tmp_path: Path) -> Settings:
    """Test environment settings with safe defaults and no batch delay."""
    return Settings(
        environment=Environment.TEST,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        litellm_base_url="http://localhost:4000",
        litellm_api_key="sk-test-key",
        provider_base_url="https://provider.test/v1",
        provider_api_key="sk-test-key",
        generation_batch_delay_seconds=0,
        generation_timeout_seconds=1,
        debug=True,
        db_echo_sql=False,
    )


@pytest.fixture
async def engine(fake_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(fake_settings.database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


# ------------------------------------------------------------------ #
# Record factories
# ------------------------------------------------------------------ #

@pytest.fixture
def make_bot(db_session: AsyncSession):
    async def _make(**overrides: Any) -> Bot:
        fields: dict[str, Any] = {"name": "Support bot", "model": "gpt-4o-mini-2024-07-18"}
        fields.update(overrides)
        bot = Bot(**fields)
        db_session.add(bot)
        await db_session.commit()
        return bot

    return _make


@pytest.fixture
def make_dataset(db_session: AsyncSession):
    async def _make(**overrides: Any) -> Dataset:
        fields: dict[str, Any] = {"title": "Billing FAQ", "dataset_type": "chat"}
        fields.update(overrides)
        dataset = Dataset(**fields)
        db_session.add(dataset)
        await db_session.commit()
        return dataset

    return _make


# ------------------------------------------------------------------ #
# Provider double
# ------------------------------------------------------------------ #

class FakeProvider(TrainingProvider):
    """TrainingProvider whose answers are set per test.

    Each ``*_response`` attribute is returned by the matching call; set it to
    an exception instance to make the call raise.
    """

    def __init__(self) -> None:
        self.file_response: Any = ProviderResponse(200, {"id": "file-new", "bytes": 5000})
        self.get_file_response: Any = ProviderResponse(200, {"id": "file-abc", "bytes": 5000})
        self.submit_response: Any = ProviderResponse(
            200, {"id": "ftjob-1", "status": "validating_files", "created_at": 1_700_000_000}
        )
        self.job_response: Any = ProviderResponse(200, {"id": "ftjob-1", "status": "running"})
        self.cancel_response: Any = ProviderResponse(200, {"id": "ftjob-1", "status": "cancelled"})
        self.events_response: Any = ProviderResponse(200, {"data": [], "has_more": False})
        self.models_response: Any = ProviderResponse(200, {"data": []})
        self.chat_replies: dict[str, str] = {}
        self.calls: list[tuple[str, Any]] = []

    @staticmethod
    def _answer(value: Any) -> ProviderResponse:
        if isinstance(value, Exception):
            raise value
        return value

    async def create_file(self, content: bytes, *, filename: str, purpose: str = "fine-tune") -> ProviderResponse:
        self.calls.append(("create_file", filename))
        return self._answer(self.file_response)

    async def get_file(self, file_id: str) -> ProviderResponse:
        self.calls.append(("get_file", file_id))
        return self._answer(self.get_file_response)

    async def submit_job(self, **kwargs: Any) -> ProviderResponse:
        self.calls.append(("submit_job", kwargs))
        return self._answer(self.submit_response)

    async def get_job(self, provider_job_id: str) -> ProviderResponse:
        self.calls.append(("get_job", provider_job_id))
        return self._answer(self.job_response)

    async def cancel_job(self, provider_job_id: str) -> ProviderResponse:
        self.calls.append(("cancel_job", provider_job_id))
        return self._answer(self.cancel_response)

    async def list_job_events(
        self, provider_job_id: str, *, limit: int = 20, after: str | None = None
    ) -> ProviderResponse:
        self.calls.append(("list_job_events", (provider_job_id, limit, after)))
        return self._answer(self.events_response)

    async def list_models(self) -> ProviderResponse:
        self.calls.append(("list_models", None))
        return self._answer(self.models_response)

    async def chat_complete(self, *, model: str, messages: list[dict[str, str]], **kwargs: Any) -> str:
        self.calls.append(("chat_complete", model))
        question = messages[0]["content"]
        reply = self.chat_replies.get(question, "")
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
