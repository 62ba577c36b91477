"""Dataset generation job endpoints.

POST   /api/v1/datasets/generate        - Start a generation job (202, runs in background)
GET    /api/v1/datasets/generate        - List generation jobs
GET    /api/v1/datasets/generate/{id}   - Poll a generation job
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.api.deps import get_publisher, get_worker_pool
from botforge.database import get_db_session
from botforge.events.publisher import EventPublisher
from botforge.infra.background_worker import BackgroundWorkerPool
from botforge.training.generation import DatasetGenerationService

router = APIRouter(prefix="/datasets/generate", tags=["dataset-generation"])


class GenerateDatasetRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300, description="Topic of the examples")
    description: str | None = None
    dataset_type: str = Field("chat", description="chat | calling | voice | all")
    target_examples: int = Field(..., description="Number of examples to generate")
    tags: list[str] | None = None
    created_by: str | None = None
    enhancement_job_id: uuid.UUID | None = Field(
        None, description="Fine-tune job this dataset is generated to enhance"
    )
    bot_id: uuid.UUID | None = None


class GenerationJobResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: str | None
    dataset_type: str
    status: str | None
    progress: int
    current_batch: int
    total_batches: int
    generated_count: int
    num_examples: int | None
    training_examples_count: int | None
    test_examples_count: int | None
    metadata: dict[str, Any]
    error: dict[str, Any] | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class GenerationJobListResponse(BaseModel):
    jobs: list[GenerationJobResponse]
    total: int
    has_more: bool


@router.post("", response_model=GenerationJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_generation(
    body: GenerateDatasetRequest,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    worker_pool: BackgroundWorkerPool = Depends(get_worker_pool),
) -> GenerationJobResponse:
    """Persist a pending job and return at once; poll GET /datasets/generate/{id} for progress."""
    dataset = await DatasetGenerationService(db, publisher, worker_pool).create_generation_job(
        title=body.title,
        description=body.description,
        dataset_type=body.dataset_type,
        target_examples=body.target_examples,
        created_by=body.created_by,
        tags=body.tags,
        enhancement_job_id=body.enhancement_job_id,
        bot_id=body.bot_id,
    )
    return GenerationJobResponse(**dataset.to_dict(include_content=False))


@router.get("", response_model=GenerationJobListResponse)
async def list_generation_jobs(
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    limit: int = 50,
    offset: int = 0,
) -> GenerationJobListResponse:
    jobs, total, has_more = await DatasetGenerationService(db, publisher).list_generation_jobs(
        limit=limit, offset=offset
    )
    return GenerationJobListResponse(
        jobs=[GenerationJobResponse(**job.to_dict(include_content=False)) for job in jobs],
        total=total,
        has_more=has_more,
    )


@router.get("/{dataset_id}", response_model=GenerationJobResponse)
async def get_generation_job(
    dataset_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> GenerationJobResponse:
    dataset = await DatasetGenerationService(db, publisher).get_generation_job(dataset_id)
    return GenerationJobResponse(**dataset.to_dict(include_content=False))
