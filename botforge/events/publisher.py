"""Domain event publishing for datasets and fine-tune jobs.

Runners and the lifecycle manager announce state changes through an
EventPublisher. Delivery is fire-and-forget: publish() never raises, so a
broken subscriber can never fail a generation run or a job submission.

Event types:
    dataset.created / dataset.updated / dataset.progress / dataset.deleted
    fine_tune_job.created / fine_tune_job.updated / fine_tune_job.progress /
    fine_tune_job.deleted

Usage:
    publisher = InProcessEventPublisher()
    publisher.subscribe(forward_to_dashboard)
    await publisher.publish(EventType.DATASET_PROGRESS, {"dataset_id": ..., "progress": 40})
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class EventType(StrEnum):
    DATASET_CREATED = "dataset.created"
    DATASET_UPDATED = "dataset.updated"
    DATASET_PROGRESS = "dataset.progress"
    DATASET_DELETED = "dataset.deleted"
    FINE_TUNE_JOB_CREATED = "fine_tune_job.created"
    FINE_TUNE_JOB_UPDATED = "fine_tune_job.updated"
    FINE_TUNE_JOB_PROGRESS = "fine_tune_job.progress"
    FINE_TUNE_JOB_DELETED = "fine_tune_job.deleted"


@dataclass
class DomainEvent:
    """A published event as delivered to subscribers."""

    type: str
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventPublisher(ABC):
    """Base publisher: wraps delivery in a non-propagating error boundary."""

    async def publish(self, event_type: EventType | str, payload: dict[str, Any]) -> None:
        """Publish an event. Delivery failures are logged, never raised."""
        event = DomainEvent(type=str(event_type), payload=payload)
        try:
            await self._deliver(event)
        except Exception as exc:
            log.warning(
                "events.publish_failed",
                event_type=event.type,
                error=str(exc),
            )

    @abstractmethod
    async def _deliver(self, event: DomainEvent) -> None:
        """Deliver one event (may raise; publish() contains the failure)."""


class InProcessEventPublisher(EventPublisher):
    """Publishes to in-process async subscribers.

    Each subscriber is isolated: one failing handler does not prevent the
    others from receiving the event.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def _deliver(self, event: DomainEvent) -> None:
        log.debug("events.published", event_type=event.type, subscribers=len(self._handlers))
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as exc:
                log.warning(
                    "events.subscriber_failed",
                    event_type=event.type,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )


class RecordingEventPublisher(EventPublisher):
    """Keeps every published event in memory (tests and local debugging)."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def _deliver(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType | str) -> list[DomainEvent]:
        return [e for e in self.events if e.type == str(event_type)]
