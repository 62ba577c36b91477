"""Dataset generation jobs.

A generation job is a Dataset row whose ``status`` is set. Creating one
persists a ``pending`` row, commits it, and hands the run to the background
worker pool; the request returns immediately and clients poll the row.

Run state machine::

    pending -> processing -> completed
                          -> failed

Batches are processed strictly one after another: the job's
UniquenessIndex must reflect every earlier batch before the next dedup
check. The runner catches everything at its top level, so a job is never
left ``processing`` once run() returns.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from botforge.config import Settings, get_settings
from botforge.core.errors import NotFoundError, ValidationError
from botforge.events.publisher import EventPublisher, EventType
from botforge.infra.background_worker import BackgroundWorkerPool, TaskType
from botforge.models.dataset import Dataset, DatasetType, GenerationStatus
from botforge.telemetry.logging import bind_job_context
from botforge.training.batch_generator import BatchGenerator
from botforge.training.jsonl import is_valid_example, split_examples, to_jsonl, verify_jsonl
from botforge.training.uniqueness import UniquenessIndex, load_existing_fingerprints

log = structlog.get_logger(__name__)

GENERATION_METHOD = "llm_batch"


class GenerationJobError(RuntimeError):
    """Run-level failure recorded on the dataset as its error message."""


def _progress_payload(dataset: Dataset) -> dict[str, Any]:
    return {
        "dataset_id": str(dataset.id),
        "status": dataset.status,
        "progress": dataset.progress,
        "current_batch": dataset.current_batch,
        "total_batches": dataset.total_batches,
        "generated_count": dataset.generated_count,
    }


class DatasetGenerationService:
    """Creates and lists generation jobs."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher,
        worker_pool: BackgroundWorkerPool | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Args:
            db: Async database session
            publisher: Domain event publisher
            worker_pool: Pool the run is submitted to (None = caller runs it)
            settings: Application settings
        """
        self.db = db
        self._publisher = publisher
        self._worker_pool = worker_pool
        self._settings = settings or get_settings()

    async def create_generation_job(
        self,
        *,
        title: str,
        description: str | None,
        dataset_type: str,
        target_examples: int,
        created_by: str | None = None,
        tags: list[str] | None = None,
        enhancement_job_id: uuid.UUID | None = None,
        bot_id: uuid.UUID | None = None,
    ) -> Dataset:
        """Persist a pending generation job and schedule its run.

        Args:
            title: Dataset title (also the topic given to the model)
            description: Topic description
            dataset_type: chat | calling | voice | all
            target_examples: Number of examples to generate (1..max)
            created_by: Optional owner reference
            tags: Optional tags
            enhancement_job_id: Fine-tune job this dataset is meant to enhance
            bot_id: Bot the enhancement targets

        Returns:
            The committed Dataset in ``pending`` state

        Raises:
            ValidationError: Invalid input; nothing is persisted
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if dataset_type not in {t.value for t in DatasetType}:
            raise ValidationError(
                f"Invalid dataset_type {dataset_type!r}; expected one of "
                f"{', '.join(t.value for t in DatasetType)}"
            )
        max_target = self._settings.generation_max_target_examples
        if not isinstance(target_examples, int) or not 1 <= target_examples <= max_target:
            raise ValidationError(f"target_examples must be between 1 and {max_target}")

        batch_size = self._settings.generation_batch_size
        metadata: dict[str, Any] = {
            "batch_size": batch_size,
            "target_examples": target_examples,
            "created_at": datetime.now(UTC).isoformat(),
            "is_generation_job": True,
        }
        if enhancement_job_id is not None:
            metadata["enhancement"] = {
                "job_id": str(enhancement_job_id),
                "bot_id": str(bot_id) if bot_id else None,
            }

        dataset = Dataset(
            title=title,
            description=description or "",
            dataset_type=dataset_type,
            content=None,
            status=GenerationStatus.PENDING.value,
            progress=0,
            current_batch=0,
            total_batches=math.ceil(target_examples / batch_size),
            generated_count=0,
            tags=tags or [],
            dataset_metadata=metadata,
            created_by=created_by,
        )
        self.db.add(dataset)
        # The background run opens its own session and must see this row
        await self.db.commit()

        log.info(
            "dataset_generation.job_created",
            dataset_id=str(dataset.id),
            target_examples=target_examples,
            total_batches=dataset.total_batches,
        )
        await self._publisher.publish(EventType.DATASET_CREATED, dataset.to_dict(include_content=False))

        if self._worker_pool is not None:
            await self._worker_pool.submit_task(
                task_type=TaskType.DATASET_GENERATION,
                payload={"dataset_id": str(dataset.id)},
            )
        return dataset

    async def get_generation_job(self, dataset_id: uuid.UUID) -> Dataset:
        dataset = await self.db.get(Dataset, dataset_id)
        if dataset is None or dataset.status is None:
            raise NotFoundError("Generation job", dataset_id)
        return dataset

    async def list_generation_jobs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Dataset], int, bool]:
        """Generation jobs newest first.

        Returns:
            (jobs, total, has_more)
        """
        condition = Dataset.status.is_not(None)
        total = await self.db.scalar(select(func.count()).select_from(Dataset).where(condition))
        result = await self.db.execute(
            select(Dataset)
            .where(condition)
            .order_by(Dataset.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        jobs = list(result.scalars().all())
        total = total or 0
        return jobs, total, offset + len(jobs) < total


class DatasetGenerationRunner:
    """Drives one generation job from ``pending`` to a terminal state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        generator: BatchGenerator,
        publisher: EventPublisher,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._generator = generator
        self._publisher = publisher
        self._settings = settings or get_settings()

    async def handle_task(self, payload: dict[str, Any]) -> None:
        """Worker pool entry point."""
        await self.run(uuid.UUID(payload["dataset_id"]))

    async def run(self, dataset_id: uuid.UUID) -> None:
        bind_job_context(dataset_id=dataset_id)
        try:
            async with self._session_factory() as db:
                dataset = await db.get(Dataset, dataset_id)
                if dataset is None:
                    log.error("dataset_generation.job_missing", dataset_id=str(dataset_id))
                    return
                if dataset.status != GenerationStatus.PENDING.value:
                    log.warning(
                        "dataset_generation.job_not_pending",
                        dataset_id=str(dataset_id),
                        status=dataset.status,
                    )
                    return
                try:
                    await self._run(db, dataset)
                except Exception:
                    await db.rollback()
                    raise
        except Exception as exc:
            log.error(
                "dataset_generation.job_failed",
                dataset_id=str(dataset_id),
                error=str(exc),
                exc_info=True,
            )
            await self._mark_failed(dataset_id, str(exc) or type(exc).__name__)

    async def _run(self, db: AsyncSession, dataset: Dataset) -> None:
        metadata = dict(dataset.dataset_metadata or {})
        batch_size = int(metadata.get("batch_size") or self._settings.generation_batch_size)
        target = int(metadata.get("target_examples") or 0)
        total_batches = dataset.total_batches or math.ceil(target / batch_size)

        dataset.status = GenerationStatus.PROCESSING.value
        dataset.total_batches = total_batches
        await db.commit()
        await self._publisher.publish(EventType.DATASET_PROGRESS, _progress_payload(dataset))

        index = UniquenessIndex(await load_existing_fingerprints(db))
        examples: list[dict[str, Any]] = []
        retry_attempts = 0

        log.info(
            "dataset_generation.started",
            target_examples=target,
            total_batches=total_batches,
            existing_fingerprints=index.existing_count,
        )

        for batch in range(total_batches):
            batch_count = min(batch_size, target - batch * batch_size)
            try:
                accepted, retries = await self._generate_unique_batch(dataset, batch_count, index)
                examples.extend(accepted)
                retry_attempts += retries
            except Exception as exc:
                log.error(
                    "dataset_generation.batch_failed",
                    batch=batch + 1,
                    error=str(exc),
                )

            dataset.current_batch = batch + 1
            dataset.progress = math.floor((batch + 1) / total_batches * 100)
            dataset.generated_count = len(examples)
            await db.commit()
            await self._publisher.publish(EventType.DATASET_PROGRESS, _progress_payload(dataset))

            log.info(
                "dataset_generation.batch_completed",
                batch=batch + 1,
                total_batches=total_batches,
                generated=len(examples),
            )

            if batch < total_batches - 1 and self._settings.generation_batch_delay_seconds > 0:
                await asyncio.sleep(self._settings.generation_batch_delay_seconds)

        valid = [example for example in examples if is_valid_example(example)]
        if not valid:
            raise GenerationJobError("No valid examples generated after validation")

        training, test = split_examples(valid)
        content = to_jsonl(valid)
        training_content = to_jsonl(training)
        test_content = to_jsonl(test)
        if not all(verify_jsonl(c) for c in (content, training_content, test_content)):
            raise GenerationJobError("Generated JSONL content is invalid")

        now = datetime.now(UTC)
        metadata.update(
            {
                "generated_at": now.isoformat(),
                "generation_method": GENERATION_METHOD,
                "deduplication": {
                    "duplicates_removed": index.duplicates_rejected,
                    "retry_attempts": retry_attempts,
                    "existing_fingerprints": index.existing_count,
                },
                "split": {
                    "training_count": len(training),
                    "test_count": len(test),
                    "training_percentage": 80,
                    "test_percentage": 20,
                },
            }
        )

        dataset.content = content
        dataset.training_content = training_content
        dataset.test_content = test_content
        dataset.num_examples = len(valid)
        dataset.training_examples_count = len(training)
        dataset.test_examples_count = len(test)
        dataset.generated_count = len(valid)
        dataset.progress = 100
        dataset.status = GenerationStatus.COMPLETED.value
        dataset.completed_at = now
        dataset.dataset_metadata = metadata
        await db.commit()

        log.info(
            "dataset_generation.completed",
            num_examples=len(valid),
            training_examples=len(training),
            test_examples=len(test),
            duplicates_removed=index.duplicates_rejected,
        )
        await self._publisher.publish(EventType.DATASET_UPDATED, dataset.to_dict(include_content=False))

    async def _generate_unique_batch(
        self,
        dataset: Dataset,
        count: int,
        index: UniquenessIndex,
    ) -> tuple[list[dict[str, Any]], int]:
        """One batch plus shortfall retries.

        Returns:
            (accepted examples, number of retries used)
        """
        accepted = self._accept(
            await self._generator.generate_batch(
                dataset.title, dataset.description or "", count, dataset.dataset_type
            ),
            index,
            count,
        )

        retries = 0
        while len(accepted) < count and retries < self._settings.generation_max_retries:
            retries += 1
            shortfall = count - len(accepted)
            log.info(
                "dataset_generation.batch_retry",
                attempt=retries,
                shortfall=shortfall,
            )
            candidates = await self._generator.generate_batch(
                dataset.title, dataset.description or "", shortfall, dataset.dataset_type
            )
            accepted.extend(self._accept(candidates, index, shortfall))

        return accepted, retries

    @staticmethod
    def _accept(
        candidates: list[dict[str, Any]],
        index: UniquenessIndex,
        limit: int,
    ) -> list[dict[str, Any]]:
        accepted: list[dict[str, Any]] = []
        for example in candidates:
            if len(accepted) >= limit:
                break
            if index.accept(example):
                accepted.append(example)
        return accepted

    async def _mark_failed(self, dataset_id: uuid.UUID, message: str) -> None:
        async with self._session_factory() as db:
            dataset = await db.get(Dataset, dataset_id)
            if dataset is None:
                return
            dataset.status = GenerationStatus.FAILED.value
            dataset.error = {"message": message, "timestamp": datetime.now(UTC).isoformat()}
            await db.commit()
            await self._publisher.publish(
                EventType.DATASET_UPDATED, dataset.to_dict(include_content=False)
            )
