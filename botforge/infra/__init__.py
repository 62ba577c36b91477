"""
Infrastructure components: the background worker pool that runs dataset
generation and model evaluation outside the request cycle.
"""

from __future__ import annotations

from botforge.infra.background_worker import (
    BackgroundWorkerPool,
    Task,
    TaskType,
)

__all__ = [
    "BackgroundWorkerPool",
    "Task",
    "TaskType",
]
