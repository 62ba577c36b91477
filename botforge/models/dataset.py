"""Dataset model.

A Dataset is either hand-authored (content supplied up front, ``status`` is
NULL) or produced by a generation job. While a generation job is running the
row *is* the job: ``status``, ``progress`` and the batch counters track the
run, and ``content`` stays NULL until the job completes.

Content columns hold newline-delimited JSON, one training example
(``{"messages": [...]}``) per line.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from botforge.database import Base, JSONType, UTCDateTime


class DatasetType(StrEnum):
    """Interaction style the examples are written for."""
    CHAT = "chat"
    CALLING = "calling"
    VOICE = "voice"
    ALL = "all"


class GenerationStatus(StrEnum):
    """Generation job lifecycle: pending -> processing -> completed | failed."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_GENERATION_STATUSES = frozenset(
    {GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value}
)


class Dataset(Base):
    """Training dataset and, while incomplete, its generation job state."""

    __tablename__ = "datasets"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    dataset_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="chat | calling | voice | all",
    )

    # JSONL payloads (NULL while a generation job is still running)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    training_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_id: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        comment="Provider file id once the training split was uploaded",
    )

    num_examples: Mapped[int | None] = mapped_column(Integer, nullable=True)
    training_examples_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    test_examples_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    dataset_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Target count, batch size, enhancement lineage, dedup and split stats",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Generation job fields
    status: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="pending | processing | completed | failed; NULL when hand-authored",
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_batch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

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

    __table_args__ = (
        Index("ix_datasets_type_created", "dataset_type", "created_at"),
        Index("ix_datasets_status", "status"),
        Index("ix_datasets_file_id", "file_id"),
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize with Python-level defaults usable before any flush."""
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("tags", [])
        kwargs.setdefault("dataset_metadata", {})
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("progress", 0)
        kwargs.setdefault("current_batch", 0)
        kwargs.setdefault("total_batches", 0)
        kwargs.setdefault("generated_count", 0)
        kwargs.setdefault("created_at", datetime.now(UTC))
        kwargs.setdefault("updated_at", datetime.now(UTC))
        super().__init__(**kwargs)

    @property
    def is_generation_job(self) -> bool:
        return self.status is not None

    def __repr__(self) -> str:
        return (
            f"<Dataset id={self.id} title={self.title!r} "
            f"type={self.dataset_type!r} status={self.status!r} "
            f"progress={self.progress}%>"
        )

    def to_dict(self, *, include_content: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": str(self.id),
            "title": self.title,
            "description": self.description,
            "dataset_type": self.dataset_type,
            "file_id": self.file_id,
            "num_examples": self.num_examples,
            "training_examples_count": self.training_examples_count,
            "test_examples_count": self.test_examples_count,
            "tags": self.tags,
            "metadata": self.dataset_metadata,
            "is_active": self.is_active,
            "status": self.status,
            "progress": self.progress,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "generated_count": self.generated_count,
            "error": self.error,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_content:
            data["content"] = self.content
            data["training_content"] = self.training_content
            data["test_content"] = self.test_content
        return data
