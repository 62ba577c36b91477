"""Domain exceptions for the training pipeline.

API handlers translate these into HTTP responses (see botforge.api.errors);
background runners convert anything they catch into a terminal ``failed``
state on the owning record instead.
"""

from __future__ import annotations

from typing import Any


class TrainingPipelineError(Exception):
    """Base exception for all training pipeline failures."""


class ValidationError(TrainingPipelineError, ValueError):
    """Request rejected before any state was persisted."""


class NotFoundError(TrainingPipelineError, LookupError):
    """Referenced record does not exist."""

    def __init__(self, kind: str, record_id: Any) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidStateError(TrainingPipelineError):
    """Operation not allowed in the record's current lifecycle state."""


class ProviderError(TrainingPipelineError):
    """External training provider returned a non-success response or failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error or {"message": message}
