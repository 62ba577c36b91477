"""Read access to training reports."""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.core.errors import NotFoundError
from botforge.models.training_report import TrainingReport


class TrainingReportService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_report(self, report_id: uuid.UUID) -> TrainingReport:
        report = await self.db.get(TrainingReport, report_id)
        if report is None:
            raise NotFoundError("Training report", report_id)
        return report

    async def list_reports(
        self,
        *,
        bot_id: uuid.UUID | None = None,
        fine_tune_job_id: uuid.UUID | None = None,
        dataset_id: uuid.UUID | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TrainingReport], int]:
        """Reports newest first, filtered by any of the given references."""
        conditions = []
        if bot_id is not None:
            conditions.append(TrainingReport.bot_id == bot_id)
        if fine_tune_job_id is not None:
            conditions.append(TrainingReport.fine_tune_job_id == fine_tune_job_id)
        if dataset_id is not None:
            conditions.append(TrainingReport.dataset_id == dataset_id)
        if status:
            conditions.append(TrainingReport.status == status)

        total = await self.db.scalar(
            select(func.count()).select_from(TrainingReport).where(*conditions)
        )
        result = await self.db.execute(
            select(TrainingReport)
            .where(*conditions)
            .order_by(TrainingReport.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0
