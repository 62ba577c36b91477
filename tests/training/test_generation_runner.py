"""Tests for generation job creation and the batch-by-batch runner."""

from __future__ import annotations

import json
import uuid
from typing import Any
from unittest.mock import AsyncMock

import pytest

from botforge.core.errors import NotFoundError, ValidationError
from botforge.events.publisher import EventType
from botforge.infra.background_worker import TaskType
from botforge.models.dataset import Dataset
from botforge.training.generation import DatasetGenerationRunner, DatasetGenerationService


def _example(question: str) -> dict:
    return {
        "messages": [
            {"role": "user", "content": question},
            {"role": "assistant", "content": f"Answer to {question}"},
        ]
    }


class ScriptedGenerator:
    """Returns one scripted batch per call; raises if a script item is an exception."""

    def __init__(self, batches: list[Any]) -> None:
        self._batches = list(batches)
        self.requests: list[int] = []

    async def generate_batch(self, title, description, count, dataset_type) -> list[dict]:
        self.requests.append(count)
        batch = self._batches.pop(0) if self._batches else []
        if isinstance(batch, Exception):
            raise batch
        return batch


async def _load(session_factory, dataset_id) -> Dataset:
    async with session_factory() as session:
        return await session.get(Dataset, dataset_id)


# ------------------------------------------------------------------ #
# DatasetGenerationService
# ------------------------------------------------------------------ #


class TestCreateGenerationJob:
    """Creating a job persists a pending row and schedules the run."""

    @pytest.mark.asyncio()
    async def test_creates_pending_job_and_submits(self, db_session, publisher, fake_settings) -> None:
        pool = AsyncMock()
        service = DatasetGenerationService(db_session, publisher, pool, fake_settings)

        dataset = await service.create_generation_job(
            title="Billing",
            description="Invoices and refunds",
            dataset_type="chat",
            target_examples=12,
            tags=["billing"],
        )

        assert dataset.status == "pending"
        assert dataset.total_batches == 3
        assert dataset.content is None
        assert dataset.dataset_metadata["target_examples"] == 12
        assert dataset.dataset_metadata["is_generation_job"] is True
        pool.submit_task.assert_awaited_once_with(
            task_type=TaskType.DATASET_GENERATION,
            payload={"dataset_id": str(dataset.id)},
        )
        assert len(publisher.of_type(EventType.DATASET_CREATED)) == 1

    @pytest.mark.asyncio()
    async def test_records_enhancement_lineage(self, db_session, publisher, fake_settings) -> None:
        job_id, bot_id = uuid.uuid4(), uuid.uuid4()
        service = DatasetGenerationService(db_session, publisher, None, fake_settings)

        dataset = await service.create_generation_job(
            title="Billing",
            description=None,
            dataset_type="voice",
            target_examples=1,
            enhancement_job_id=job_id,
            bot_id=bot_id,
        )

        assert dataset.dataset_metadata["enhancement"] == {"job_id": str(job_id), "bot_id": str(bot_id)}

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("title", "dataset_type", "target"),
        [
            ("", "chat", 10),
            ("Billing", "email", 10),
            ("Billing", "chat", 0),
            ("Billing", "chat", 100_001),
        ],
    )
    async def test_rejects_invalid_input(
        self, db_session, publisher, fake_settings, title, dataset_type, target
    ) -> None:
        pool = AsyncMock()
        service = DatasetGenerationService(db_session, publisher, pool, fake_settings)

        with pytest.raises(ValidationError):
            await service.create_generation_job(
                title=title, description="", dataset_type=dataset_type, target_examples=target
            )

        pool.submit_task.assert_not_awaited()
        jobs, total, _ = await service.list_generation_jobs()
        assert total == 0

    @pytest.mark.asyncio()
    async def test_get_rejects_hand_authored_dataset(
        self, db_session, publisher, fake_settings, make_dataset
    ) -> None:
        dataset = await make_dataset(content=json.dumps(_example("q")))
        service = DatasetGenerationService(db_session, publisher, None, fake_settings)

        with pytest.raises(NotFoundError):
            await service.get_generation_job(dataset.id)

    @pytest.mark.asyncio()
    async def test_list_reports_has_more(self, db_session, publisher, fake_settings) -> None:
        service = DatasetGenerationService(db_session, publisher, None, fake_settings)
        for i in range(3):
            await service.create_generation_job(
                title=f"Topic {i}", description="", dataset_type="chat", target_examples=5
            )

        jobs, total, has_more = await service.list_generation_jobs(limit=2)

        assert total == 3
        assert len(jobs) == 2
        assert has_more is True


# ------------------------------------------------------------------ #
# DatasetGenerationRunner
# ------------------------------------------------------------------ #


class TestGenerationRunner:
    """Runs are sequential, deduplicated and always reach a terminal state."""

    async def _pending_job(self, db_session, publisher, fake_settings, target: int) -> Dataset:
        service = DatasetGenerationService(db_session, publisher, None, fake_settings)
        return await service.create_generation_job(
            title="Billing", description="Invoices", dataset_type="chat", target_examples=target
        )

    @pytest.mark.asyncio()
    async def test_duplicates_are_retried_and_split(
        self, db_session, session_factory, publisher, fake_settings
    ) -> None:
        first = [_example(f"q{i}") for i in range(5)]
        second = [_example("q5"), _example("q6"), _example("q7"), _example("q0"), _example("q1")]
        retry = [_example("q8"), _example("q9")]
        generator = ScriptedGenerator([first, second, retry])
        job = await self._pending_job(db_session, publisher, fake_settings, target=10)

        runner = DatasetGenerationRunner(session_factory, generator, publisher, fake_settings)
        await runner.run(job.id)

        dataset = await _load(session_factory, job.id)
        assert dataset.status == "completed"
        assert dataset.progress == 100
        assert dataset.num_examples == 10
        assert dataset.training_examples_count == 8
        assert dataset.test_examples_count == 2
        assert len(dataset.training_content.splitlines()) == 8
        assert len(dataset.test_content.splitlines()) == 2
        assert dataset.completed_at is not None
        assert generator.requests == [5, 5, 2]

        dedup = dataset.dataset_metadata["deduplication"]
        assert dedup["duplicates_removed"] == 2
        assert dedup["retry_attempts"] == 1
        assert dataset.dataset_metadata["split"]["training_percentage"] == 80

        questions = [json.loads(line)["messages"][0]["content"] for line in dataset.content.splitlines()]
        assert len(set(questions)) == 10

    @pytest.mark.asyncio()
    async def test_progress_is_published_per_batch(
        self, db_session, session_factory, publisher, fake_settings
    ) -> None:
        generator = ScriptedGenerator([[_example(f"q{i}") for i in range(5)], [_example("r")]])
        job = await self._pending_job(db_session, publisher, fake_settings, target=6)

        await DatasetGenerationRunner(session_factory, generator, publisher, fake_settings).run(job.id)

        progress = [e.payload["progress"] for e in publisher.of_type(EventType.DATASET_PROGRESS)]
        assert progress == [0, 50, 100]
        assert publisher.of_type(EventType.DATASET_UPDATED)[-1].payload["status"] == "completed"

    @pytest.mark.asyncio()
    async def test_examples_already_stored_are_rejected(
        self, db_session, session_factory, publisher, fake_settings, make_dataset
    ) -> None:
        await make_dataset(content=json.dumps(_example("known")))
        generator = ScriptedGenerator([[_example("known"), _example("new")], [], [], []])
        job = await self._pending_job(db_session, publisher, fake_settings, target=2)

        await DatasetGenerationRunner(session_factory, generator, publisher, fake_settings).run(job.id)

        dataset = await _load(session_factory, job.id)
        assert dataset.status == "completed"
        assert dataset.num_examples == 1
        assert dataset.dataset_metadata["deduplication"]["existing_fingerprints"] == 1
        assert dataset.dataset_metadata["deduplication"]["retry_attempts"] == 3

    @pytest.mark.asyncio()
    async def test_failed_batch_is_skipped(
        self, db_session, session_factory, publisher, fake_settings
    ) -> None:
        generator = ScriptedGenerator(
            [RuntimeError("boom"), [_example(f"q{i}") for i in range(5)]]
        )
        job = await self._pending_job(db_session, publisher, fake_settings, target=10)

        await DatasetGenerationRunner(session_factory, generator, publisher, fake_settings).run(job.id)

        dataset = await _load(session_factory, job.id)
        assert dataset.status == "completed"
        assert dataset.num_examples == 5

    @pytest.mark.asyncio()
    async def test_no_valid_examples_fails_job(
        self, db_session, session_factory, publisher, fake_settings
    ) -> None:
        generator = ScriptedGenerator([])
        job = await self._pending_job(db_session, publisher, fake_settings, target=3)

        await DatasetGenerationRunner(session_factory, generator, publisher, fake_settings).run(job.id)

        dataset = await _load(session_factory, job.id)
        assert dataset.status == "failed"
        assert dataset.error["message"] == "No valid examples generated after validation"
        assert dataset.content is None
        assert publisher.of_type(EventType.DATASET_UPDATED)[-1].payload["status"] == "failed"

    @pytest.mark.asyncio()
    async def test_non_pending_job_is_left_alone(
        self, session_factory, publisher, fake_settings, make_dataset
    ) -> None:
        dataset = await make_dataset(status="completed", content=json.dumps(_example("q")))
        generator = ScriptedGenerator([[_example("x")]])

        await DatasetGenerationRunner(session_factory, generator, publisher, fake_settings).run(dataset.id)

        assert generator.requests == []
        assert publisher.events == []

    @pytest.mark.asyncio()
    async def test_handle_task_parses_payload(
        self, db_session, session_factory, publisher, fake_settings
    ) -> None:
        generator = ScriptedGenerator([[_example("q")]])
        job = await self._pending_job(db_session, publisher, fake_settings, target=1)

        runner = DatasetGenerationRunner(session_factory, generator, publisher, fake_settings)
        await runner.handle_task({"dataset_id": str(job.id)})

        assert (await _load(session_factory, job.id)).status == "completed"
