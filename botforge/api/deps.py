"""FastAPI dependencies for objects created in the application lifespan."""

from __future__ import annotations

from fastapi import Request

from botforge.events.publisher import EventPublisher
from botforge.infra.background_worker import BackgroundWorkerPool
from botforge.providers.base import TrainingProvider


def get_provider(request: Request) -> TrainingProvider:
    return request.app.state.provider


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


def get_worker_pool(request: Request) -> BackgroundWorkerPool:
    return request.app.state.worker_pool
