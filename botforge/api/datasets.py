"""Dataset endpoints.

POST   /api/v1/datasets               - Create hand-authored dataset
GET    /api/v1/datasets               - List datasets
GET    /api/v1/datasets/{id}          - Get dataset with content
PATCH  /api/v1/datasets/{id}          - Update dataset
DELETE /api/v1/datasets/{id}          - Delete dataset
POST   /api/v1/datasets/{id}/upload   - Upload a split to the training provider
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.api.deps import get_provider, get_publisher
from botforge.database import get_db_session
from botforge.events.publisher import EventPublisher
from botforge.providers.base import TrainingProvider
from botforge.services.datasets import DatasetService

router = APIRouter(prefix="/datasets", tags=["datasets"])


# ------------------------------------------------------------------ #
# Request/Response Models
# ------------------------------------------------------------------ #


class CreateDatasetRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    dataset_type: str = Field("chat", description="chat | calling | voice | all")
    content: str | None = Field(None, description="JSONL, one training example per line")
    tags: list[str] | None = None
    is_active: bool = True
    created_by: str | None = None


class UpdateDatasetRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    dataset_type: str | None = None
    content: str | None = None
    file_id: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None


class UploadDatasetRequest(BaseModel):
    split: Literal["training", "test", "full"] = "training"


class DatasetSummary(BaseModel):
    id: uuid.UUID
    title: str
    description: str | None
    dataset_type: str
    file_id: str | None
    num_examples: int | None
    training_examples_count: int | None
    test_examples_count: int | None
    tags: list[str]
    metadata: dict[str, Any]
    is_active: bool
    status: str | None
    progress: int
    current_batch: int
    total_batches: int
    generated_count: int
    error: dict[str, Any] | None
    completed_at: datetime | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class DatasetDetail(DatasetSummary):
    content: str | None
    training_content: str | None
    test_content: str | None


class DatasetListResponse(BaseModel):
    datasets: list[DatasetSummary]
    total: int


class UploadDatasetResponse(BaseModel):
    file_id: str
    split: str
    bytes: int
    dataset_id: uuid.UUID


# ------------------------------------------------------------------ #
# Endpoints
# ------------------------------------------------------------------ #


@router.post("", response_model=DatasetDetail, status_code=status.HTTP_201_CREATED)
async def create_dataset(
    body: CreateDatasetRequest,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> DatasetDetail:
    dataset = await DatasetService(db, publisher).create_dataset(**body.model_dump())
    return DatasetDetail(**dataset.to_dict())


@router.get("", response_model=DatasetListResponse)
async def list_datasets(
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    dataset_type: str | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> DatasetListResponse:
    datasets, total = await DatasetService(db, publisher).list_datasets(
        dataset_type=dataset_type,
        search=search,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return DatasetListResponse(
        datasets=[DatasetSummary(**d.to_dict(include_content=False)) for d in datasets],
        total=total,
    )


@router.get("/{dataset_id}", response_model=DatasetDetail)
async def get_dataset(
    dataset_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> DatasetDetail:
    dataset = await DatasetService(db, publisher).get_dataset(dataset_id)
    return DatasetDetail(**dataset.to_dict())


@router.patch("/{dataset_id}", response_model=DatasetDetail)
async def update_dataset(
    dataset_id: uuid.UUID,
    body: UpdateDatasetRequest,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> DatasetDetail:
    dataset = await DatasetService(db, publisher).update_dataset(
        dataset_id, body.model_dump(exclude_unset=True)
    )
    return DatasetDetail(**dataset.to_dict())


@router.delete("/{dataset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_dataset(
    dataset_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> Response:
    await DatasetService(db, publisher).delete_dataset(dataset_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{dataset_id}/upload", response_model=UploadDatasetResponse)
async def upload_dataset(
    dataset_id: uuid.UUID,
    body: UploadDatasetRequest,
    db: AsyncSession = Depends(get_db_session),
    publisher: EventPublisher = Depends(get_publisher),
    provider: TrainingProvider = Depends(get_provider),
) -> UploadDatasetResponse:
    """Upload the training (default), test or full split; the file id is returned."""
    result = await DatasetService(db, publisher, provider).upload_dataset(dataset_id, body.split)
    return UploadDatasetResponse(**result)
