"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment) and configure logging
2. Initialize database engine and session factory
3. Create the training provider and event publisher
4. Register pipeline handlers and start the background worker pool
5. Settle generation jobs and reports orphaned by the previous process

Shutdown order:
1. Drain and stop the worker pool
2. Close the provider's HTTP client
3. Close DB connection pool
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from botforge import __version__
from botforge.api.errors import register_exception_handlers
from botforge.api.router import api_v1_router, public_router
from botforge.config import get_settings
from botforge.database import close_db, get_session_factory, init_db
from botforge.events.publisher import InProcessEventPublisher
from botforge.infra.background_worker import BackgroundWorkerPool, TaskType
from botforge.providers.llm import LLMClient
from botforge.providers.openai import OpenAITrainingProvider
from botforge.telemetry.logging import RequestIdMiddleware, configure_logging
from botforge.training.batch_generator import BatchGenerator
from botforge.training.evaluation import ModelEvaluator
from botforge.training.generation import DatasetGenerationRunner
from botforge.training.recovery import recover_interrupted_runs

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings = get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        db_url=settings.database_url.split("@")[-1],
    )

    init_db(settings)
    session_factory = get_session_factory()

    llm_client = LLMClient(settings)
    provider = OpenAITrainingProvider(settings, llm_client=llm_client)
    publisher = InProcessEventPublisher()

    generation_runner = DatasetGenerationRunner(
        session_factory,
        BatchGenerator(llm_client, settings),
        publisher,
        settings,
    )
    evaluator = ModelEvaluator(session_factory, provider, settings)

    worker_pool = BackgroundWorkerPool(max_workers=settings.background_worker_concurrency)
    worker_pool.register_handler(TaskType.DATASET_GENERATION, generation_runner.handle_task)
    worker_pool.register_handler(TaskType.MODEL_EVALUATION, evaluator.handle_task)
    await worker_pool.start()
    await recover_interrupted_runs(session_factory, publisher, worker_pool)

    app.state.provider = provider
    app.state.publisher = publisher
    app.state.worker_pool = worker_pool

    log.info("app.ready")
    yield

    await worker_pool.shutdown()
    await provider.aclose()
    await close_db()
    log.info("app.shutdown")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="botforge",
        description=(
            "Training pipeline orchestrator: dataset generation, fine-tune job "
            "lifecycle and model evaluation."
        ),
        version=__version__,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # Middleware (added in reverse order - last added = first executed)
    # ------------------------------------------------------------------ #

    # In dev mode, allow all origins; in production restrict to configured origins
    cors_origins = ["*"] if settings.is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Content-Type"],
    )

    # Unique request ID for log correlation
    app.add_middleware(RequestIdMiddleware)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(public_router)
    app.include_router(api_v1_router)

    register_exception_handlers(app)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("botforge.main:app", host="0.0.0.0", port=8000, reload=get_settings().is_dev)
