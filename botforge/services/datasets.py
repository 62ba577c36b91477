"""Dataset records: hand-authored CRUD, listing and provider upload.

Generation jobs share the datasets table but are created by
DatasetGenerationService. Once a row is a generation job its content
belongs to the run; afterwards only ``file_id``, ``is_active`` and
``tags`` may change so a finished dataset can still be reused downstream.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.core.errors import (
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from botforge.events.publisher import EventPublisher, EventType
from botforge.models.dataset import Dataset, DatasetType, GenerationStatus
from botforge.providers.base import TrainingProvider
from botforge.training.jsonl import iter_jsonl_lines

log = structlog.get_logger(__name__)

# Fields a generation job keeps editable
REUSE_FIELDS = frozenset({"file_id", "is_active", "tags"})
EDITABLE_FIELDS = REUSE_FIELDS | {"title", "description", "dataset_type", "content"}

UPLOAD_SPLITS = ("training", "test", "full")


def _check_type(dataset_type: str) -> None:
    if dataset_type not in {t.value for t in DatasetType}:
        raise ValidationError(
            f"Invalid dataset_type {dataset_type!r}; expected one of "
            f"{', '.join(t.value for t in DatasetType)}"
        )


def _slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "dataset"


class DatasetService:
    """Service for dataset records."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher,
        provider: TrainingProvider | None = None,
    ) -> None:
        self.db = db
        self._publisher = publisher
        self._provider = provider

    async def create_dataset(
        self,
        *,
        title: str,
        dataset_type: str,
        content: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        is_active: bool = True,
        created_by: str | None = None,
    ) -> Dataset:
        """Create a hand-authored dataset; ``num_examples`` counts non-blank lines."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        _check_type(dataset_type)

        dataset = Dataset(
            title=title,
            description=description,
            dataset_type=dataset_type,
            content=content,
            num_examples=len(iter_jsonl_lines(content)),
            tags=tags or [],
            is_active=is_active,
            created_by=created_by,
        )
        self.db.add(dataset)
        await self.db.flush()

        log.info("dataset.created", dataset_id=str(dataset.id), num_examples=dataset.num_examples)
        await self._publisher.publish(EventType.DATASET_CREATED, dataset.to_dict(include_content=False))
        return dataset

    async def get_dataset(self, dataset_id: uuid.UUID) -> Dataset:
        dataset = await self.db.get(Dataset, dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset", dataset_id)
        return dataset

    async def list_datasets(
        self,
        *,
        dataset_type: str | None = None,
        search: str | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Dataset], int]:
        """Datasets newest first with optional filters.

        Returns:
            (datasets, total matching)
        """
        conditions = []
        if dataset_type:
            _check_type(dataset_type)
            conditions.append(Dataset.dataset_type == dataset_type)
        if is_active is not None:
            conditions.append(Dataset.is_active.is_(is_active))
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Dataset.title).like(pattern),
                    func.lower(Dataset.description).like(pattern),
                )
            )

        total = await self.db.scalar(
            select(func.count()).select_from(Dataset).where(*conditions)
        )
        result = await self.db.execute(
            select(Dataset)
            .where(*conditions)
            .order_by(Dataset.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def update_dataset(self, dataset_id: uuid.UUID, changes: dict[str, Any]) -> Dataset:
        """Apply a partial update.

        Raises:
            ValidationError: Unknown field or invalid value
            InvalidStateError: Content change on a generation job
        """
        dataset = await self.get_dataset(dataset_id)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if dataset.is_generation_job:
            locked = set(changes) - REUSE_FIELDS
            if locked:
                raise InvalidStateError(
                    f"Generation job datasets only allow {', '.join(sorted(REUSE_FIELDS))} "
                    f"to change (status {dataset.status!r})"
                )
        if "dataset_type" in changes:
            _check_type(changes["dataset_type"])
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("title cannot be empty")

        for name, value in changes.items():
            setattr(dataset, name, value)
        if "content" in changes:
            dataset.num_examples = len(iter_jsonl_lines(dataset.content))
        await self.db.flush()

        log.info("dataset.updated", dataset_id=str(dataset.id), fields=sorted(changes))
        await self._publisher.publish(EventType.DATASET_UPDATED, dataset.to_dict(include_content=False))
        return dataset

    async def delete_dataset(self, dataset_id: uuid.UUID) -> None:
        dataset = await self.get_dataset(dataset_id)
        if dataset.status == GenerationStatus.PROCESSING.value:
            raise InvalidStateError("Cannot delete a dataset while it is being generated")

        await self.db.delete(dataset)
        await self.db.flush()

        log.info("dataset.deleted", dataset_id=str(dataset_id))
        await self._publisher.publish(EventType.DATASET_DELETED, {"id": str(dataset_id)})

    async def upload_dataset(self, dataset_id: uuid.UUID, split: str = "training") -> dict[str, Any]:
        """Upload one split of the dataset to the provider as a JSONL file.

        Uploading the training or full split records the returned file id on
        the dataset; fine-tune jobs are later paired with it by that id.

        Returns:
            {"file_id", "split", "bytes", "dataset_id"}
        """
        if self._provider is None:
            raise RuntimeError("DatasetService was created without a training provider")
        if split not in UPLOAD_SPLITS:
            raise ValidationError(f"split must be one of {', '.join(UPLOAD_SPLITS)}")

        dataset = await self.get_dataset(dataset_id)
        if dataset.is_generation_job and dataset.status != GenerationStatus.COMPLETED.value:
            raise InvalidStateError(f"Dataset generation is {dataset.status}; nothing to upload")

        content = {
            "training": dataset.training_content or (None if dataset.is_generation_job else dataset.content),
            "test": dataset.test_content,
            "full": dataset.content,
        }[split]
        if not content:
            raise InvalidStateError(f"Dataset has no {split} content")

        payload = content.encode("utf-8")
        response = await self._provider.create_file(
            payload,
            filename=f"{_slug(dataset.title)}-{split}.jsonl",
        )
        if not response.ok:
            error = response.error_detail()
            raise ProviderError(error["message"], status_code=response.status_code, error=error)
        file_id = response.data.get("id")
        if not file_id:
            raise ProviderError(
                "Provider response did not include a file id",
                status_code=response.status_code,
                error={"message": "Provider response did not include a file id", "code": "INVALID_RESPONSE"},
            )

        if split != "test":
            dataset.file_id = str(file_id)
            await self.db.flush()
            await self._publisher.publish(
                EventType.DATASET_UPDATED, dataset.to_dict(include_content=False)
            )

        log.info(
            "dataset.uploaded",
            dataset_id=str(dataset.id),
            split=split,
            file_id=file_id,
            size_bytes=len(payload),
        )
        return {
            "file_id": str(file_id),
            "split": split,
            "bytes": len(payload),
            "dataset_id": str(dataset.id),
        }
