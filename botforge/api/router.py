"""Main API router - aggregates all sub-routers.

All routes are versioned under /api/v1 except the health check.
"""

from __future__ import annotations

from fastapi import APIRouter

from botforge.api import bots, datasets, fine_tuning, generation, health, training_reports

# Public router
public_router = APIRouter()
public_router.include_router(health.router)

# Versioned API router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(bots.router)
# Generation router must be included BEFORE the datasets router so that
# /datasets/generate is not captured by /datasets/{dataset_id}.
api_v1_router.include_router(generation.router)
api_v1_router.include_router(datasets.router)
api_v1_router.include_router(fine_tuning.router)
api_v1_router.include_router(training_reports.router)
