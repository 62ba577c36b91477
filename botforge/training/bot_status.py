"""Bot status derived from the bot's fine-tune jobs."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.models.bot import Bot, BotStatus
from botforge.models.fine_tuning import FineTuneJob, FineTuneStatus

log = structlog.get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _finish_key(job: FineTuneJob) -> datetime:
    return job.finished_at or job.updated_at or job.created_at or _EPOCH


def derive_bot_status(jobs: Iterable[FineTuneJob], current: str) -> str:
    """Status a bot should have given its jobs.

    - ``training`` while any job is non-terminal
    - otherwise the latest terminal job decides: ``active`` if it succeeded,
      ``inactive`` if it failed or was cancelled
    - with no jobs the current status is kept, except a stale ``training``
    """
    jobs = list(jobs)
    if any(not job.is_terminal for job in jobs):
        return BotStatus.TRAINING.value
    if not jobs:
        if current == BotStatus.TRAINING.value:
            return BotStatus.INACTIVE.value
        return current

    latest = max(jobs, key=_finish_key)
    if latest.status == FineTuneStatus.SUCCEEDED.value:
        return BotStatus.ACTIVE.value
    return BotStatus.INACTIVE.value


async def has_active_jobs(db: AsyncSession, bot_id: uuid.UUID) -> bool:
    result = await db.execute(select(FineTuneJob).where(FineTuneJob.bot_id == bot_id))
    return any(not job.is_terminal for job in result.scalars())


async def refresh_bot_status(db: AsyncSession, bot: Bot) -> str:
    """Re-derive and store ``bot.status`` from all of its jobs (flushes pending changes)."""
    await db.flush()
    result = await db.execute(select(FineTuneJob).where(FineTuneJob.bot_id == bot.id))
    status = derive_bot_status(result.scalars().all(), bot.status)
    if status != bot.status:
        log.info(
            "bot_status.changed",
            bot_id=str(bot.id),
            previous=bot.status,
            status=status,
        )
        bot.status = status
    return status
