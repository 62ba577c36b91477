"""
Background worker pool for long-running training pipeline tasks.

Dataset generation runs and model evaluations outlive the request that
triggers them: the request persists the initial record, submits a task
here and returns immediately.

Design:
- asyncio.Queue for work distribution, one long-running coroutine per worker
- Handlers are registered per TaskType at startup (see botforge.main)
- Only in-flight tasks are tracked; the durable state lives on the Dataset
  and TrainingReport rows the handlers update
- Each task gets a single attempt. Runners convert their own failures into
  terminal record states, and records orphaned by a restart are settled by
  botforge.training.recovery
- structlog context is cleared around every task so ids bound by one run
  never leak into the next run on the same worker
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from botforge.telemetry.logging import bind_job_context, clear_context

log = structlog.get_logger(__name__)


class TaskType(StrEnum):
    """Known background task types."""
    DATASET_GENERATION = "dataset_generation"
    MODEL_EVALUATION = "model_evaluation"


TaskHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Task:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: TaskType = TaskType.DATASET_GENERATION
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None


class BackgroundWorkerPool:
    """
    Asyncio-based background task processor with concurrency control.

    Example usage:
        pool = BackgroundWorkerPool(max_workers=4)
        pool.register_handler(TaskType.DATASET_GENERATION, runner.handle_task)
        await pool.start()

        await pool.submit_task(
            task_type=TaskType.DATASET_GENERATION,
            payload={"dataset_id": "123"},
        )

        await pool.shutdown()
    """

    def __init__(self, *, max_workers: int = 4) -> None:
        self._max_workers = max_workers
        self._queue: asyncio.Queue[Task] = asyncio.Queue()
        self._in_flight: dict[str, Task] = {}
        self._handlers: dict[TaskType, TaskHandler] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._shutdown_event = asyncio.Event()
        self._running = False
        self._completed = 0
        self._failed = 0

        log.info("worker_pool.initialized", max_workers=max_workers)

    def register_handler(self, task_type: TaskType, handler: TaskHandler) -> None:
        """Route tasks of ``task_type`` to ``handler(payload)``."""
        self._handlers[task_type] = handler

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {
            "in_flight": len(self._in_flight),
            "completed": self._completed,
            "failed": self._failed,
        }

    async def start(self) -> None:
        """Start worker coroutines."""
        if self._running:
            log.warning("worker_pool.already_running")
            return

        self._running = True
        self._shutdown_event.clear()

        for i in range(self._max_workers):
            worker = asyncio.create_task(self._worker_loop(worker_id=i))
            self._workers.append(worker)

        log.info("worker_pool.started", worker_count=self._max_workers)

    async def join(self) -> None:
        """Wait until every submitted task has been processed."""
        await self._queue.join()

    async def shutdown(self, *, drain: bool = True) -> None:
        """
        Shutdown the worker pool.

        Args:
            drain: If True, wait for queued and in-flight tasks to complete.
                   If False, cancel all workers immediately.
        """
        if not self._running:
            return

        log.info("worker_pool.shutdown_initiated", drain=drain)

        if drain:
            await self._queue.join()

        self._running = False
        self._shutdown_event.set()

        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers.clear()
        log.info("worker_pool.shutdown_complete", **self.stats)

    async def submit_task(self, *, task_type: TaskType, payload: dict[str, Any]) -> str:
        """
        Submit a task to the background queue.

        Args:
            task_type: Type of task to execute
            payload: Task-specific data

        Returns:
            Task ID, used to correlate log lines
        """
        if task_type not in self._handlers:
            raise ValueError(f"No handler registered for task type: {task_type}")

        task = Task(type=task_type, payload=payload)
        self._in_flight[task.id] = task
        await self._queue.put(task)

        log.info(
            "worker_pool.task_submitted",
            task_id=task.id,
            task_type=task_type,
            queue_size=self._queue.qsize(),
        )
        return task.id

    async def _worker_loop(self, worker_id: int) -> None:
        """Pull tasks from the queue until shutdown."""
        log.info("worker.started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                # Wake periodically to check for shutdown
                task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                await self._execute_task(task, worker_id=worker_id)
            finally:
                self._in_flight.pop(task.id, None)
                self._queue.task_done()

        log.info("worker.stopped", worker_id=worker_id)

    async def _execute_task(self, task: Task, worker_id: int) -> None:
        """Run one task; handler errors are logged, never re-raised."""
        clear_context()
        bind_job_context(task_id=task.id, task_type=task.type)
        task.started_at = datetime.now(UTC)

        log.info("worker.task_started", worker_id=worker_id)

        try:
            await self._handlers[task.type](task.payload)
        except Exception as exc:
            self._failed += 1
            log.error("worker.task_failed", worker_id=worker_id, error=str(exc), exc_info=True)
        else:
            self._completed += 1
            log.info(
                "worker.task_completed",
                worker_id=worker_id,
                duration_seconds=(datetime.now(UTC) - task.started_at).total_seconds(),
            )
        finally:
            clear_context()
