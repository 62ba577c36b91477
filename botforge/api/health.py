"""Health check endpoint.

/health - process is up and the database answers. Public, no auth.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter
from sqlalchemy import text

from botforge import __version__
from botforge.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Reports database connectivity; always 200 so the body can be inspected."""
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:
        db_status = f"error: {exc}"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }
