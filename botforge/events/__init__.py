"""Domain events published by the training pipeline."""

from __future__ import annotations

from botforge.events.publisher import (
    DomainEvent,
    EventPublisher,
    EventType,
    InProcessEventPublisher,
    RecordingEventPublisher,
)

__all__ = [
    "DomainEvent",
    "EventPublisher",
    "EventType",
    "InProcessEventPublisher",
    "RecordingEventPublisher",
]
