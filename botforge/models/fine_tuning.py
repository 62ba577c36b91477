"""Fine-tune job persistence model.

Each row mirrors one training job at the external provider, from local
creation through the provider's terminal state.  Jobs may form an
enhancement chain: a child job re-trains from its parent's resulting model
and records the parent in ``parent_job_id``.  Child ids are not stored on the
parent; they are recomputed by query (ordered by ``created_at``).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from botforge.database import Base, JSONType, UTCDateTime


class FineTuneStatus(StrEnum):
    """Provider-reported lifecycle of a fine-tune job."""
    PENDING = "pending"
    VALIDATING_FILES = "validating_files"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset(
    {
        FineTuneStatus.SUCCEEDED.value,
        FineTuneStatus.FAILED.value,
        FineTuneStatus.CANCELLED.value,
    }
)


class FineTuneJob(Base):
    """Persisted fine-tune job.

    Lifecycle::

        pending -> validating_files -> running -> succeeded
                                               -> failed
                                               -> cancelled

    Status only moves forward; terminal states are absorbing.
    """

    __tablename__ = "fine_tune_jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    bot_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    training_file_id: Mapped[str] = mapped_column(String(200), nullable=False)
    validation_file_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    provider_job_id: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        comment="Provider job handle; NULL until submission succeeds",
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=FineTuneStatus.PENDING.value,
        server_default=FineTuneStatus.PENDING.value,
        comment="pending | validating_files | running | succeeded | failed | cancelled",
    )
    fine_tuned_model_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Structured provider error: message, code, type, param",
    )

    hyperparameters: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    job_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="training_method, model_type(s), base_model, suffix, lineage",
    )
    result_files: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Phase timestamps (first-observed) and derived durations
    validation_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    validation_ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    training_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    training_ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validation_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    training_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    trained_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    training_cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_examples: Mapped[int | None] = mapped_column(Integer, nullable=True)

    parent_job_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("fine_tune_jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Enhancement chain parent",
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_fine_tune_jobs_bot_created", "bot_id", "created_at"),
        Index("ix_fine_tune_jobs_provider_job", "provider_job_id"),
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize with Python-level defaults.

        mapped_column(default=...) only fires on INSERT; setting the defaults
        here makes new objects usable before any flush.
        """
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("status", FineTuneStatus.PENDING.value)
        kwargs.setdefault("hyperparameters", {})
        kwargs.setdefault("job_metadata", {})
        kwargs.setdefault("result_files", [])
        kwargs.setdefault("created_at", datetime.now(UTC))
        kwargs.setdefault("updated_at", datetime.now(UTC))
        super().__init__(**kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def __repr__(self) -> str:
        return (
            f"<FineTuneJob id={self.id} bot={self.bot_id} "
            f"provider_job={self.provider_job_id!r} status={self.status!r}>"
        )

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": str(self.id),
            "bot_id": str(self.bot_id),
            "training_file_id": self.training_file_id,
            "validation_file_id": self.validation_file_id,
            "provider_job_id": self.provider_job_id,
            "status": self.status,
            "fine_tuned_model_id": self.fine_tuned_model_id,
            "error": self.error,
            "hyperparameters": self.hyperparameters,
            "metadata": self.job_metadata,
            "result_files": self.result_files,
            "validation_started_at": _iso(self.validation_started_at),
            "validation_ended_at": _iso(self.validation_ended_at),
            "training_started_at": _iso(self.training_started_at),
            "training_ended_at": _iso(self.training_ended_at),
            "finished_at": _iso(self.finished_at),
            "total_duration_seconds": self.total_duration_seconds,
            "validation_duration_seconds": self.validation_duration_seconds,
            "training_duration_seconds": self.training_duration_seconds,
            "trained_tokens": self.trained_tokens,
            "training_cost_usd": self.training_cost_usd,
            "file_size_bytes": self.file_size_bytes,
            "total_examples": self.total_examples,
            "parent_job_id": str(self.parent_job_id) if self.parent_job_id else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
