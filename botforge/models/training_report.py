"""Training report model: evaluation results for a fine-tuned model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from botforge.database import Base, JSONType, UTCDateTime


class ReportStatus(StrEnum):
    """Report lifecycle: created ``testing``, ends ``completed`` or ``failed``."""
    PENDING = "pending"
    TESTING = "testing"
    COMPLETED = "completed"
    FAILED = "failed"


class TrainingReport(Base):
    """Scores of one evaluation run against held-out examples.

    References to the job, bot and dataset are plain ids (no foreign keys) so
    reports survive deletion of the records they describe.
    """

    __tablename__ = "training_reports"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    fine_tune_job_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    bot_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    dataset_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    training_file_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    test_file_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    training_examples: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    test_examples: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    precision: Mapped[float | None] = mapped_column(Float, nullable=True)
    recall: Mapped[float | None] = mapped_column(Float, nullable=True)
    f1_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    perplexity: Mapped[float | None] = mapped_column(Float, nullable=True)
    detailed_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    confusion_matrix: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    test_results: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    model_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    base_model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    fine_tuned_model: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ReportStatus.PENDING.value,
        comment="pending | testing | completed | failed",
    )
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    report_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (Index("ix_training_reports_created", "created_at"),)

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("status", ReportStatus.PENDING.value)
        kwargs.setdefault("training_examples", 0)
        kwargs.setdefault("test_examples", 0)
        kwargs.setdefault("test_results", [])
        kwargs.setdefault("report_metadata", {})
        kwargs.setdefault("created_at", datetime.now(UTC))
        kwargs.setdefault("updated_at", datetime.now(UTC))
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return (
            f"<TrainingReport id={self.id} model={self.fine_tuned_model!r} "
            f"status={self.status!r} accuracy={self.accuracy}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "fine_tune_job_id": str(self.fine_tune_job_id) if self.fine_tune_job_id else None,
            "bot_id": str(self.bot_id) if self.bot_id else None,
            "dataset_id": str(self.dataset_id) if self.dataset_id else None,
            "training_file_id": self.training_file_id,
            "test_file_id": self.test_file_id,
            "training_examples": self.training_examples,
            "test_examples": self.test_examples,
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "perplexity": self.perplexity,
            "detailed_metrics": self.detailed_metrics,
            "confusion_matrix": self.confusion_matrix,
            "test_results": self.test_results,
            "model_name": self.model_name,
            "base_model": self.base_model,
            "fine_tuned_model": self.fine_tuned_model,
            "status": self.status,
            "error": self.error,
            "metadata": self.report_metadata,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
