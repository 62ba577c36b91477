"""Tests for domain event publishing."""

from __future__ import annotations

import pytest

from botforge.events.publisher import (
    DomainEvent,
    EventPublisher,
    EventType,
    InProcessEventPublisher,
    RecordingEventPublisher,
)


class TestInProcessEventPublisher:
    @pytest.mark.asyncio()
    async def test_delivers_to_subscribers(self) -> None:
        publisher = InProcessEventPublisher()
        received: list[DomainEvent] = []

        async def handler(event: DomainEvent) -> None:
            received.append(event)

        publisher.subscribe(handler)
        await publisher.publish(EventType.DATASET_PROGRESS, {"dataset_id": "d1", "progress": 40})

        assert len(received) == 1
        assert received[0].type == "dataset.progress"
        assert received[0].to_dict()["payload"] == {"dataset_id": "d1", "progress": 40}

    @pytest.mark.asyncio()
    async def test_failing_subscriber_does_not_block_others(self) -> None:
        publisher = InProcessEventPublisher()
        received: list[str] = []

        async def broken(event: DomainEvent) -> None:
            raise RuntimeError("dashboard offline")

        async def healthy(event: DomainEvent) -> None:
            received.append(event.type)

        publisher.subscribe(broken)
        publisher.subscribe(healthy)
        await publisher.publish(EventType.FINE_TUNE_JOB_UPDATED, {"id": "j1"})

        assert received == ["fine_tune_job.updated"]

    @pytest.mark.asyncio()
    async def test_unsubscribe(self) -> None:
        publisher = InProcessEventPublisher()
        received: list[str] = []

        async def handler(event: DomainEvent) -> None:
            received.append(event.type)

        publisher.subscribe(handler)
        publisher.unsubscribe(handler)
        await publisher.publish(EventType.DATASET_CREATED, {})

        assert received == []


@pytest.mark.asyncio()
async def test_publish_never_raises() -> None:
    class Exploding(EventPublisher):
        async def _deliver(self, event: DomainEvent) -> None:
            raise ConnectionError("broker down")

    await Exploding().publish(EventType.DATASET_DELETED, {"id": "d1"})


@pytest.mark.asyncio()
async def test_recording_publisher_filters_by_type() -> None:
    publisher = RecordingEventPublisher()
    await publisher.publish(EventType.DATASET_CREATED, {"id": "a"})
    await publisher.publish(EventType.DATASET_UPDATED, {"id": "a"})
    await publisher.publish("dataset.updated", {"id": "b"})

    assert [e.payload["id"] for e in publisher.of_type(EventType.DATASET_UPDATED)] == ["a", "b"]
