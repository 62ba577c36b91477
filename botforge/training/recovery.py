"""Startup recovery for pipeline runs orphaned by a process exit.

The worker queue is in memory, so a restart loses every queued or running
task while their records stay non-terminal. At startup:

- ``processing`` generation jobs are marked ``failed``: a partial run cannot
  be resumed because its uniqueness index and accumulated examples are gone
- ``pending`` generation jobs never started and are queued again
- ``testing`` training reports are marked ``failed``: their test examples
  travelled in the lost task payload
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from botforge.events.publisher import EventPublisher, EventType
from botforge.infra.background_worker import BackgroundWorkerPool, TaskType
from botforge.models.dataset import Dataset, GenerationStatus
from botforge.models.training_report import ReportStatus, TrainingReport

log = structlog.get_logger(__name__)

INTERRUPTED_GENERATION = "Generation interrupted by a service restart"
INTERRUPTED_EVALUATION = "Evaluation interrupted by a service restart"


async def recover_interrupted_runs(
    session_factory: async_sessionmaker[AsyncSession],
    publisher: EventPublisher,
    worker_pool: BackgroundWorkerPool,
) -> dict[str, int]:
    """Settle records left non-terminal by a previous process.

    Must run before the API accepts requests, otherwise a run started by
    this process could be mistaken for an orphan.

    Returns:
        Counts of {"failed_datasets", "requeued_datasets", "failed_reports"}
    """
    now = datetime.now(UTC)
    error = {"message": INTERRUPTED_GENERATION, "timestamp": now.isoformat()}

    async with session_factory() as db:
        processing = (
            await db.execute(
                select(Dataset).where(Dataset.status == GenerationStatus.PROCESSING.value)
            )
        ).scalars().all()
        for dataset in processing:
            dataset.status = GenerationStatus.FAILED.value
            dataset.error = dict(error)

        pending_ids = (
            await db.execute(
                select(Dataset.id)
                .where(Dataset.status == GenerationStatus.PENDING.value)
                .order_by(Dataset.created_at.asc())
            )
        ).scalars().all()

        testing = (
            await db.execute(
                select(TrainingReport).where(TrainingReport.status == ReportStatus.TESTING.value)
            )
        ).scalars().all()
        for report in testing:
            report.status = ReportStatus.FAILED.value
            report.error = {"message": INTERRUPTED_EVALUATION, "timestamp": now.isoformat()}
            report.completed_at = now

        await db.commit()

        for dataset in processing:
            await publisher.publish(EventType.DATASET_UPDATED, dataset.to_dict(include_content=False))

    for dataset_id in pending_ids:
        await worker_pool.submit_task(
            task_type=TaskType.DATASET_GENERATION,
            payload={"dataset_id": str(dataset_id)},
        )

    summary = {
        "failed_datasets": len(processing),
        "requeued_datasets": len(pending_ids),
        "failed_reports": len(testing),
    }
    if any(summary.values()):
        log.warning("recovery.interrupted_runs_settled", **summary)
    return summary
