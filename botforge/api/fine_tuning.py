"""Fine-tuning endpoints.

POST   /api/v1/fine-tune/jobs               - Submit a fine-tune job
GET    /api/v1/fine-tune/jobs               - List top-level jobs with their children
GET    /api/v1/fine-tune/jobs/{id}          - Get job (reconciled with the provider)
POST   /api/v1/fine-tune/jobs/{id}/cancel   - Cancel a running job
GET    /api/v1/fine-tune/jobs/{id}/events   - Provider events for a job
POST   /api/v1/fine-tune/validate           - Validate JSONL training data
POST   /api/v1/fine-tune/preview            - First parsed entries of JSONL training data
POST   /api/v1/fine-tune/test-model         - Evaluate a model on test examples (background)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.api.deps import get_provider, get_publisher, get_worker_pool
from botforge.api.training_reports import TrainingReportResponse
from botforge.core.errors import ValidationError
from botforge.database import get_db_session
from botforge.events.publisher import EventPublisher
from botforge.infra.background_worker import BackgroundWorkerPool
from botforge.models.dataset import Dataset
from botforge.providers.base import TrainingProvider
from botforge.training.evaluation import schedule_evaluation
from botforge.training.fine_tuning import FineTuneJobManager, FineTuneJobRequest
from botforge.training.jsonl import parse_jsonl, preview_training_data, validate_training_data

router = APIRouter(prefix="/fine-tune", tags=["fine-tuning"])


# ------------------------------------------------------------------ #
# Request/Response Models
# ------------------------------------------------------------------ #


class SubmitJobRequest(BaseModel):
    bot_id: uuid.UUID | None = None
    training_file_id: str | None = None
    validation_file_id: str | None = None
    base_model: str | None = Field(None, description="Defaults to parent model, then bot model")
    training_method: str | None = Field(None, description="supervised | reinforcement")
    model_type: str | None = Field(None, description="chat | calling | voice")
    model_types: list[str] | None = None
    suffix: str | None = None
    n_epochs: int | str | None = None
    batch_size: int | str | None = None
    learning_rate_multiplier: float | str | None = None
    parent_job_id: uuid.UUID | None = Field(None, description="Succeeded job to enhance")
    dataset_id: uuid.UUID | None = Field(None, description="Dataset whose test split scores the result")


class FineTuneJobResponse(BaseModel):
    id: uuid.UUID
    bot_id: uuid.UUID
    training_file_id: str
    validation_file_id: str | None
    provider_job_id: str | None
    status: str
    fine_tuned_model_id: str | None
    error: dict[str, Any] | None
    hyperparameters: dict[str, Any]
    metadata: dict[str, Any]
    result_files: list[str]
    validation_started_at: datetime | None
    validation_ended_at: datetime | None
    training_started_at: datetime | None
    training_ended_at: datetime | None
    finished_at: datetime | None
    total_duration_seconds: int | None
    validation_duration_seconds: int | None
    training_duration_seconds: int | None
    trained_tokens: int | None
    training_cost_usd: float | None
    file_size_bytes: int | None
    total_examples: int | None
    parent_job_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
    child_jobs: list[FineTuneJobResponse] = Field(default_factory=list)


class FineTuneJobListResponse(BaseModel):
    jobs: list[FineTuneJobResponse]


class JobEventsResponse(BaseModel):
    data: list[dict[str, Any]]
    has_more: bool


class ValidateTrainingDataRequest(BaseModel):
    content: str = Field(..., description="JSONL training data")


class ValidateTrainingDataResponse(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]
    entry_count: int
    sample_entries: list[dict[str, Any]]


class PreviewTrainingDataResponse(BaseModel):
    entries: list[Any]
    total: int
    skipped: int


class TestModelRequest(BaseModel):
    model_id: str = Field(..., min_length=1)
    test_data: list[dict[str, Any]] | None = Field(
        None, description="Examples to score; defaults to the dataset's test split"
    )
    dataset_id: uuid.UUID | None = None
    bot_id: uuid.UUID | None = None
    fine_tune_job_id: uuid.UUID | None = None
    base_model: str | None = None
    created_by: str | None = None


def _manager(
    db: AsyncSession,
    provider: TrainingProvider,
    publisher: EventPublisher,
    worker_pool: BackgroundWorkerPool | None,
) -> FineTuneJobManager:
    return FineTuneJobManager(db, provider, publisher, worker_pool=worker_pool)


# ------------------------------------------------------------------ #
# Jobs
# ------------------------------------------------------------------ #


@router.post("/jobs", response_model=FineTuneJobResponse, status_code=status.HTTP_201_CREATED)
async def submit_job(
    body: SubmitJobRequest,
    db: AsyncSession = Depends(get_db_session),
    provider: TrainingProvider = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
    worker_pool: BackgroundWorkerPool = Depends(get_worker_pool),
) -> FineTuneJobResponse:
    """Submit a job. A provider rejection returns 502; the job stays recorded as failed."""
    manager = _manager(db, provider, publisher, worker_pool)
    job = await manager.submit_job(FineTuneJobRequest(**body.model_dump()))
    return FineTuneJobResponse(**job.to_dict())


@router.get("/jobs", response_model=FineTuneJobListResponse)
async def list_jobs(
    db: AsyncSession = Depends(get_db_session),
    provider: TrainingProvider = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
    bot_id: uuid.UUID | None = None,
) -> FineTuneJobListResponse:
    jobs = await _manager(db, provider, publisher, None).list_jobs(bot_id=bot_id)
    return FineTuneJobListResponse(jobs=[FineTuneJobResponse(**job) for job in jobs])


@router.get("/jobs/{job_id}", response_model=FineTuneJobResponse)
async def get_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    provider: TrainingProvider = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
    worker_pool: BackgroundWorkerPool = Depends(get_worker_pool),
) -> FineTuneJobResponse:
    """Fetch a job, reconciling it with the provider first when it is still running."""
    manager = _manager(db, provider, publisher, worker_pool)
    job = await manager.get_job(job_id)
    return FineTuneJobResponse(**await manager.describe(job))


@router.post("/jobs/{job_id}/cancel", response_model=FineTuneJobResponse)
async def cancel_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    provider: TrainingProvider = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
) -> FineTuneJobResponse:
    job = await _manager(db, provider, publisher, None).cancel_job(job_id)
    return FineTuneJobResponse(**job.to_dict())


@router.get("/jobs/{job_id}/events", response_model=JobEventsResponse)
async def list_job_events(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    provider: TrainingProvider = Depends(get_provider),
    publisher: EventPublisher = Depends(get_publisher),
    limit: int = 20,
    after: str | None = None,
) -> JobEventsResponse:
    events = await _manager(db, provider, publisher, None).list_job_events(
        job_id, limit=limit, after=after
    )
    return JobEventsResponse(**events)


# ------------------------------------------------------------------ #
# Training data and model testing
# ------------------------------------------------------------------ #


@router.post("/validate", response_model=ValidateTrainingDataResponse)
async def validate_training_file(body: ValidateTrainingDataRequest) -> ValidateTrainingDataResponse:
    """Line-by-line JSONL check; problems are reported in the body, not as an HTTP error."""
    return ValidateTrainingDataResponse(**validate_training_data(body.content).to_dict())


@router.post("/preview", response_model=PreviewTrainingDataResponse)
async def preview_training_file(body: ValidateTrainingDataRequest) -> PreviewTrainingDataResponse:
    return PreviewTrainingDataResponse(**preview_training_data(body.content))


@router.post(
    "/test-model",
    response_model=TrainingReportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def test_model(
    body: TestModelRequest,
    db: AsyncSession = Depends(get_db_session),
    worker_pool: BackgroundWorkerPool = Depends(get_worker_pool),
) -> TrainingReportResponse:
    """Create a ``testing`` report and score the model in the background."""
    examples = body.test_data
    dataset: Dataset | None = None
    if body.dataset_id is not None:
        dataset = await db.get(Dataset, body.dataset_id)
        if dataset is None:
            raise ValidationError(f"Dataset {body.dataset_id} does not exist")
        if examples is None:
            examples = parse_jsonl(dataset.test_content)
    if not examples:
        raise ValidationError("No test examples: pass test_data or a dataset with a test split")

    report = await schedule_evaluation(
        db,
        worker_pool,
        model_id=body.model_id,
        test_examples=examples,
        fine_tune_job_id=body.fine_tune_job_id,
        bot_id=body.bot_id,
        dataset_id=dataset.id if dataset else None,
        base_model=body.base_model,
        training_file_id=dataset.file_id if dataset else None,
        created_by=body.created_by,
    )
    return TrainingReportResponse(**report.to_dict())
