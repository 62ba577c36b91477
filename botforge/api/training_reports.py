"""Training report endpoints.

GET    /api/v1/training-reports        - List reports
GET    /api/v1/training-reports/{id}   - Get report with per-example results
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.database import get_db_session
from botforge.services.training_reports import TrainingReportService

router = APIRouter(prefix="/training-reports", tags=["training-reports"])


class TrainingReportResponse(BaseModel):
    id: uuid.UUID
    fine_tune_job_id: uuid.UUID | None
    bot_id: uuid.UUID | None
    dataset_id: uuid.UUID | None
    training_file_id: str | None
    test_file_id: str | None
    training_examples: int
    test_examples: int
    accuracy: float | None
    precision: float | None
    recall: float | None
    f1_score: float | None
    perplexity: float | None
    detailed_metrics: dict[str, Any] | None
    confusion_matrix: dict[str, Any] | None
    test_results: list[dict[str, Any]]
    model_name: str | None
    base_model: str | None
    fine_tuned_model: str | None
    status: str
    error: dict[str, Any] | None
    metadata: dict[str, Any]
    created_by: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class TrainingReportListResponse(BaseModel):
    reports: list[TrainingReportResponse]
    total: int


@router.get("", response_model=TrainingReportListResponse)
async def list_training_reports(
    db: AsyncSession = Depends(get_db_session),
    bot_id: uuid.UUID | None = None,
    fine_tune_job_id: uuid.UUID | None = None,
    dataset_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> TrainingReportListResponse:
    reports, total = await TrainingReportService(db).list_reports(
        bot_id=bot_id,
        fine_tune_job_id=fine_tune_job_id,
        dataset_id=dataset_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return TrainingReportListResponse(
        reports=[TrainingReportResponse(**r.to_dict()) for r in reports],
        total=total,
    )


@router.get("/{report_id}", response_model=TrainingReportResponse)
async def get_training_report(
    report_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
) -> TrainingReportResponse:
    report = await TrainingReportService(db).get_report(report_id)
    return TrainingReportResponse(**report.to_dict())
