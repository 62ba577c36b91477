"""Fine-tune job lifecycle.

FineTuneJobManager owns every transition of a FineTuneJob:

- submit_job(): validate, persist ``pending``, mark the bot ``training``,
  submit to the provider; a rejected submission leaves the job ``failed``
  with the provider's structured error and re-derives the bot.
- get_job(): reconcile the local record against the provider. Safe to call
  any number of times: status only moves forward, timestamps are recorded
  the first time a phase is observed, and terminal jobs are not refetched.
- cancel_job(): ask the provider to cancel, then mark ``cancelled``.

On the first transition to ``succeeded`` the bot switches to the new model,
the immediate parent in an enhancement chain receives the child's model,
and an evaluation is scheduled when a paired test split exists.

The manager commits its own state changes: a failed submission must stay
recorded even though the caller sees an exception.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.config import Settings, get_settings
from botforge.core.errors import InvalidStateError, NotFoundError, ProviderError, ValidationError
from botforge.events.publisher import EventPublisher, EventType
from botforge.infra.background_worker import BackgroundWorkerPool
from botforge.models.bot import Bot, BotStatus
from botforge.models.dataset import Dataset
from botforge.models.fine_tuning import FineTuneJob, FineTuneStatus
from botforge.models.training_report import TrainingReport
from botforge.providers.base import TrainingProvider
from botforge.training.bot_status import refresh_bot_status
from botforge.training.evaluation import schedule_evaluation
from botforge.training.jsonl import parse_jsonl

log = structlog.get_logger(__name__)

TRAINING_METHODS = ("supervised", "reinforcement")
MODEL_TYPES = ("chat", "calling", "voice")

_STATUS_RANK = {
    FineTuneStatus.PENDING.value: 0,
    FineTuneStatus.VALIDATING_FILES.value: 1,
    FineTuneStatus.RUNNING.value: 2,
    FineTuneStatus.SUCCEEDED.value: 3,
    FineTuneStatus.FAILED.value: 3,
    FineTuneStatus.CANCELLED.value: 3,
}

_REMOTE_STATUS = {
    "queued": FineTuneStatus.PENDING.value,
    "pending": FineTuneStatus.PENDING.value,
    "validating_files": FineTuneStatus.VALIDATING_FILES.value,
    "running": FineTuneStatus.RUNNING.value,
    "succeeded": FineTuneStatus.SUCCEEDED.value,
    "failed": FineTuneStatus.FAILED.value,
    "cancelled": FineTuneStatus.CANCELLED.value,
}


@dataclass
class FineTuneJobRequest:
    """Parameters of a fine-tune job submission."""

    bot_id: uuid.UUID | None
    training_file_id: str | None
    validation_file_id: str | None = None
    base_model: str | None = None
    training_method: str | None = None
    model_type: str | None = None
    model_types: list[str] | None = None
    suffix: str | None = None
    n_epochs: int | str | None = None
    batch_size: int | str | None = None
    learning_rate_multiplier: float | str | None = None
    parent_job_id: uuid.UUID | None = None
    dataset_id: uuid.UUID | None = None


def map_remote_status(remote: Any) -> str | None:
    """Local status for a provider status; None for statuses we do not track."""
    if not isinstance(remote, str):
        return None
    return _REMOTE_STATUS.get(remote)


def advance_status(job: FineTuneJob, status: str) -> bool:
    """Move ``job`` to ``status`` unless that would regress; returns True on change."""
    if job.is_terminal or status == job.status:
        return False
    if _STATUS_RANK[status] < _STATUS_RANK.get(job.status, 0):
        return False
    job.status = status
    return True


def _from_unix(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return datetime.fromtimestamp(value, UTC)


def _seconds(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    return max(int((end - start).total_seconds()), 0)


class FineTuneJobManager:
    """Submission, reconciliation and cancellation of fine-tune jobs."""

    def __init__(
        self,
        db: AsyncSession,
        provider: TrainingProvider,
        publisher: EventPublisher,
        settings: Settings | None = None,
        worker_pool: BackgroundWorkerPool | None = None,
    ) -> None:
        """
        Args:
            db: Async database session
            provider: External training provider
            publisher: Domain event publisher
            settings: Application settings
            worker_pool: Pool evaluations are scheduled on (None disables the trigger)
        """
        self.db = db
        self._provider = provider
        self._publisher = publisher
        self._settings = settings or get_settings()
        self._worker_pool = worker_pool

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    async def submit_job(self, request: FineTuneJobRequest) -> FineTuneJob:
        """Create a job locally and submit it to the provider.

        Raises:
            ValidationError: Invalid request; nothing persisted
            NotFoundError: Bot or parent job missing
            ProviderError: Provider rejected the submission (job left ``failed``)
        """
        if request.bot_id is None:
            raise ValidationError("bot_id is required")
        if not request.training_file_id:
            raise ValidationError("training_file_id is required")

        training_method = request.training_method or TRAINING_METHODS[0]
        if training_method not in TRAINING_METHODS:
            raise ValidationError(
                f"training_method must be one of {', '.join(TRAINING_METHODS)}"
            )
        model_type = request.model_type or MODEL_TYPES[0]
        if model_type not in MODEL_TYPES:
            raise ValidationError(f"model_type must be one of {', '.join(MODEL_TYPES)}")
        model_types = [t for t in request.model_types or [] if t in MODEL_TYPES] or [model_type]

        bot = await self.db.get(Bot, request.bot_id)
        if bot is None:
            raise NotFoundError("Bot", request.bot_id)

        parent: FineTuneJob | None = None
        if request.parent_job_id is not None:
            parent = await self.db.get(FineTuneJob, request.parent_job_id)
            if parent is None:
                raise NotFoundError("Parent fine-tune job", request.parent_job_id)
            if parent.bot_id != bot.id:
                raise ValidationError("Parent job belongs to a different bot")
            if parent.status != FineTuneStatus.SUCCEEDED.value or not parent.fine_tuned_model_id:
                raise ValidationError(
                    "Parent job must have succeeded with a fine-tuned model before enhancement"
                )

        base_model = (
            request.base_model
            or (parent.fine_tuned_model_id if parent else None)
            or bot.model
            or self._settings.default_base_model
        )

        file_size_bytes, total_examples = await self._lookup_training_file(request.training_file_id)

        hyperparameters = {
            "n_epochs": request.n_epochs if request.n_epochs is not None else "auto",
            "batch_size": request.batch_size if request.batch_size is not None else "auto",
            "learning_rate_multiplier": (
                request.learning_rate_multiplier
                if request.learning_rate_multiplier is not None
                else "auto"
            ),
        }
        metadata: dict[str, Any] = {
            "training_method": training_method,
            "model_type": model_type,
            "model_types": model_types,
            "base_model": base_model,
            "suffix": request.suffix,
            "validation_file_id": request.validation_file_id,
            "parent_job_id": str(parent.id) if parent else None,
            "is_enhancement": parent is not None,
        }
        if request.dataset_id is not None:
            metadata["dataset_id"] = str(request.dataset_id)

        job = FineTuneJob(
            bot_id=bot.id,
            training_file_id=request.training_file_id,
            validation_file_id=request.validation_file_id,
            hyperparameters=hyperparameters,
            job_metadata=metadata,
            file_size_bytes=file_size_bytes,
            total_examples=total_examples,
            parent_job_id=parent.id if parent else None,
        )
        self.db.add(job)
        bot.status = BotStatus.TRAINING.value
        bot.training_file_id = request.training_file_id
        await self.db.commit()

        log.info(
            "fine_tune.job_created",
            job_id=str(job.id),
            bot_id=str(bot.id),
            base_model=base_model,
            parent_job_id=metadata["parent_job_id"],
        )
        await self._publisher.publish(EventType.FINE_TUNE_JOB_CREATED, job.to_dict())
        if parent is not None:
            await self._publish_with_children(parent)

        try:
            response = await self._provider.submit_job(
                training_file_id=request.training_file_id,
                base_model=base_model,
                hyperparameters=hyperparameters,
                validation_file_id=request.validation_file_id,
                suffix=request.suffix,
            )
        except ProviderError as exc:
            await self._fail_submission(job, bot, exc.error)
            raise
        except Exception as exc:
            error = {
                "message": str(exc) or type(exc).__name__,
                "code": "API_ERROR",
                "type": "internal_error",
                "param": None,
            }
            await self._fail_submission(job, bot, error)
            raise ProviderError(error["message"], error=error) from exc

        if not response.ok:
            error = response.error_detail()
            await self._fail_submission(job, bot, error)
            raise ProviderError(error["message"], status_code=response.status_code, error=error)

        provider_job_id = response.data.get("id")
        if not provider_job_id:
            error = {
                "message": "Provider response did not include a job id",
                "code": "INVALID_RESPONSE",
                "type": "invalid_response",
                "param": None,
            }
            await self._fail_submission(job, bot, error)
            raise ProviderError(error["message"], status_code=response.status_code, error=error)

        job.provider_job_id = str(provider_job_id)
        remote_status = map_remote_status(response.data.get("status"))
        if remote_status is not None:
            advance_status(job, remote_status)
        self._apply_timestamps(job, response.data, datetime.now(UTC))
        await self.db.commit()

        log.info(
            "fine_tune.job_submitted",
            job_id=str(job.id),
            provider_job_id=job.provider_job_id,
            status=job.status,
        )
        await self._publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, job.to_dict())
        return job

    async def _lookup_training_file(self, file_id: str) -> tuple[int | None, int | None]:
        """Size and estimated example count of the training file (best effort)."""
        try:
            response = await self._provider.get_file(file_id)
        except ProviderError as exc:
            log.warning("fine_tune.file_lookup_failed", file_id=file_id, error=str(exc))
            return None, None
        if not response.ok:
            log.warning(
                "fine_tune.file_lookup_failed",
                file_id=file_id,
                status_code=response.status_code,
            )
            return None, None

        size = response.data.get("bytes")
        if isinstance(size, bool) or not isinstance(size, int):
            return None, None
        return size, size // self._settings.bytes_per_example_estimate

    async def _fail_submission(self, job: FineTuneJob, bot: Bot, error: dict[str, Any]) -> None:
        job.status = FineTuneStatus.FAILED.value
        job.error = {
            "message": error.get("message"),
            "code": error.get("code"),
            "type": error.get("type"),
            "param": error.get("param"),
        }
        job.finished_at = datetime.now(UTC)
        await refresh_bot_status(self.db, bot)
        await self.db.commit()

        log.error(
            "fine_tune.submission_failed",
            job_id=str(job.id),
            code=job.error["code"],
            error=job.error["message"],
        )
        await self._publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, job.to_dict())

    # ------------------------------------------------------------------ #
    # Reconciliation
    # ------------------------------------------------------------------ #

    async def get_job(self, job_id: uuid.UUID) -> FineTuneJob:
        """Return the job after reconciling it with the provider."""
        job = await self.db.get(FineTuneJob, job_id)
        if job is None:
            raise NotFoundError("Fine-tune job", job_id)
        if job.provider_job_id and not job.is_terminal:
            await self._reconcile(job)
        return job

    async def _reconcile(self, job: FineTuneJob) -> None:
        try:
            response = await self._provider.get_job(job.provider_job_id)
        except ProviderError as exc:
            log.warning("fine_tune.reconcile_failed", job_id=str(job.id), error=str(exc))
            return
        if not response.ok:
            log.warning(
                "fine_tune.reconcile_failed",
                job_id=str(job.id),
                status_code=response.status_code,
            )
            return

        data = response.data
        previous = job.status
        remote_status = map_remote_status(data.get("status"))
        if remote_status is None:
            log.debug("fine_tune.remote_status_ignored", remote_status=data.get("status"))
        else:
            advance_status(job, remote_status)

        model = data.get("fine_tuned_model") or data.get("fine_tuned_model_id")
        if model:
            job.fine_tuned_model_id = model
        if isinstance(data.get("trained_tokens"), int):
            job.trained_tokens = data["trained_tokens"]
        finished_at = _from_unix(data.get("finished_at"))
        if finished_at is not None and job.finished_at is None:
            job.finished_at = finished_at
        remote_error = data.get("error")
        if isinstance(remote_error, dict) and remote_error.get("message"):
            job.error = {
                "message": remote_error.get("message"),
                "code": remote_error.get("code"),
                "type": remote_error.get("type"),
                "param": remote_error.get("param"),
            }
        if isinstance(data.get("result_files"), list):
            job.result_files = data["result_files"]

        self._apply_timestamps(job, data, datetime.now(UTC))

        if job.status != previous:
            log.info(
                "fine_tune.status_changed",
                job_id=str(job.id),
                previous=previous,
                status=job.status,
            )
            bot = await self.db.get(Bot, job.bot_id)
            if job.status == FineTuneStatus.SUCCEEDED.value:
                await self._on_succeeded(job, bot)
            if bot is not None:
                await refresh_bot_status(self.db, bot)
        await self.db.commit()

        if job.is_terminal:
            await self._publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, job.to_dict())
        else:
            await self._publisher.publish(EventType.FINE_TUNE_JOB_PROGRESS, job.to_dict())

        if job.status != previous and job.status == FineTuneStatus.SUCCEEDED.value:
            await self._trigger_evaluation(job)

    def _apply_timestamps(self, job: FineTuneJob, data: dict[str, Any], now: datetime) -> None:
        """Record first-observed phase timestamps and, once finished, durations and cost."""
        remote_created = _from_unix(data.get("created_at"))

        if job.validation_started_at is None:
            if job.status == FineTuneStatus.VALIDATING_FILES.value:
                job.validation_started_at = remote_created or now
            elif job.status in (FineTuneStatus.RUNNING.value, FineTuneStatus.SUCCEEDED.value):
                job.validation_started_at = remote_created

        if job.status == FineTuneStatus.RUNNING.value and job.training_started_at is None:
            job.training_started_at = now
            if job.validation_ended_at is None:
                job.validation_ended_at = now

        if not job.is_terminal:
            return

        if job.finished_at is None:
            job.finished_at = now
        finished = job.finished_at
        if job.training_ended_at is None:
            job.training_ended_at = finished
        if job.validation_ended_at is None and job.validation_started_at is not None:
            job.validation_ended_at = job.training_started_at or finished

        job.total_duration_seconds = _seconds(job.created_at, finished)
        job.validation_duration_seconds = _seconds(job.validation_started_at, job.validation_ended_at)
        job.training_duration_seconds = _seconds(job.training_started_at, job.training_ended_at)
        if job.trained_tokens is not None:
            job.training_cost_usd = job.trained_tokens / 1000 * self._settings.training_cost_per_1k_tokens

    async def _on_succeeded(self, job: FineTuneJob, bot: Bot | None) -> None:
        model = job.fine_tuned_model_id
        if not model:
            log.warning("fine_tune.succeeded_without_model", job_id=str(job.id))
            return

        if bot is not None:
            bot.fine_tuned_model_id = model
            bot.model = model

        if job.parent_job_id is not None:
            parent = await self.db.get(FineTuneJob, job.parent_job_id)
            if parent is not None:
                parent.fine_tuned_model_id = model
                log.info(
                    "fine_tune.parent_model_updated",
                    parent_job_id=str(parent.id),
                    model=model,
                )
                await self._publish_with_children(parent)

    async def _trigger_evaluation(self, job: FineTuneJob) -> None:
        """Schedule scoring of the new model on the paired test split, if any."""
        if self._worker_pool is None or not job.fine_tuned_model_id:
            return
        try:
            existing = await self.db.scalar(
                select(TrainingReport.id).where(TrainingReport.fine_tune_job_id == job.id).limit(1)
            )
            if existing is not None:
                # Another reconcile of the same transition already scheduled it
                log.info("fine_tune.evaluation_exists", job_id=str(job.id), report_id=str(existing))
                return
            dataset = await self._find_paired_dataset(job)
            if dataset is None or not dataset.test_content:
                log.info("fine_tune.evaluation_skipped", job_id=str(job.id), reason="no_test_split")
                return
            examples = parse_jsonl(dataset.test_content)
            if not examples:
                return
            await schedule_evaluation(
                self.db,
                self._worker_pool,
                model_id=job.fine_tuned_model_id,
                test_examples=examples,
                fine_tune_job_id=job.id,
                bot_id=job.bot_id,
                dataset_id=dataset.id,
                base_model=(job.job_metadata or {}).get("base_model"),
                training_file_id=job.training_file_id,
            )
        except Exception as exc:
            log.error("fine_tune.evaluation_trigger_failed", job_id=str(job.id), error=str(exc))

    async def _find_paired_dataset(self, job: FineTuneJob) -> Dataset | None:
        dataset_id = (job.job_metadata or {}).get("dataset_id")
        if dataset_id:
            dataset = await self.db.get(Dataset, uuid.UUID(str(dataset_id)))
            if dataset is not None:
                return dataset
        result = await self.db.execute(
            select(Dataset)
            .where(Dataset.file_id == job.training_file_id)
            .order_by(Dataset.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    async def cancel_job(self, job_id: uuid.UUID) -> FineTuneJob:
        """Cancel a submitted, non-terminal job.

        Raises:
            NotFoundError: Unknown job
            InvalidStateError: Not submitted yet, or already terminal
            ProviderError: Provider refused; local state unchanged
        """
        job = await self.db.get(FineTuneJob, job_id)
        if job is None:
            raise NotFoundError("Fine-tune job", job_id)
        if not job.provider_job_id:
            raise InvalidStateError("Job has not been submitted to the provider")
        if job.is_terminal:
            raise InvalidStateError(f"Cannot cancel a job in status {job.status!r}")

        response = await self._provider.cancel_job(job.provider_job_id)
        if not response.ok:
            error = response.error_detail()
            raise ProviderError(error["message"], status_code=response.status_code, error=error)

        job.status = FineTuneStatus.CANCELLED.value
        job.finished_at = datetime.now(UTC)
        self._apply_timestamps(job, response.data, job.finished_at)
        bot = await self.db.get(Bot, job.bot_id)
        if bot is not None:
            await refresh_bot_status(self.db, bot)
        await self.db.commit()

        log.info("fine_tune.job_cancelled", job_id=str(job.id))
        await self._publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, job.to_dict())
        return job

    # ------------------------------------------------------------------ #
    # Listing
    # ------------------------------------------------------------------ #

    async def list_jobs(self, bot_id: uuid.UUID | None = None) -> list[dict[str, Any]]:
        """Top-level jobs newest first, each with ``child_jobs`` oldest first."""
        query = select(FineTuneJob).where(FineTuneJob.parent_job_id.is_(None))
        if bot_id is not None:
            query = query.where(FineTuneJob.bot_id == bot_id)
        result = await self.db.execute(query.order_by(FineTuneJob.created_at.desc()))
        return [await self.describe(job) for job in result.scalars().all()]

    async def list_child_jobs(self, job_id: uuid.UUID) -> list[FineTuneJob]:
        result = await self.db.execute(
            select(FineTuneJob)
            .where(FineTuneJob.parent_job_id == job_id)
            .order_by(FineTuneJob.created_at.asc())
        )
        return list(result.scalars().all())

    async def describe(self, job: FineTuneJob) -> dict[str, Any]:
        """Job dict including its child jobs."""
        payload = job.to_dict()
        payload["child_jobs"] = [child.to_dict() for child in await self.list_child_jobs(job.id)]
        return payload

    async def list_job_events(
        self,
        job_id: uuid.UUID,
        *,
        limit: int = 20,
        after: str | None = None,
    ) -> dict[str, Any]:
        """Provider events for a job: ``{"data": [...], "has_more": bool}``."""
        job = await self.db.get(FineTuneJob, job_id)
        if job is None:
            raise NotFoundError("Fine-tune job", job_id)
        if not job.provider_job_id:
            raise InvalidStateError("Job has not been submitted to the provider")

        response = await self._provider.list_job_events(job.provider_job_id, limit=limit, after=after)
        if not response.ok:
            error = response.error_detail()
            raise ProviderError(error["message"], status_code=response.status_code, error=error)
        events = response.data.get("data")
        return {
            "data": events if isinstance(events, list) else [],
            "has_more": bool(response.data.get("has_more", False)),
        }

    async def _publish_with_children(self, job: FineTuneJob) -> None:
        await self._publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, await self.describe(job))
