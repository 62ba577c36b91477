"""Bot records.

A bot's status is owned by its fine-tune jobs while any of them is running;
direct status changes are refused until every job is terminal.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.config import Settings, get_settings
from botforge.core.errors import InvalidStateError, NotFoundError, ValidationError
from botforge.models.bot import Bot, BotStatus
from botforge.training.bot_status import has_active_jobs

log = structlog.get_logger(__name__)

EDITABLE_FIELDS = frozenset({"name", "description", "model", "status", "settings"})


class BotService:
    """Service for bot records."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self.db = db
        self._settings = settings or get_settings()

    async def create_bot(
        self,
        *,
        name: str,
        model: str | None = None,
        description: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> Bot:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")

        bot = Bot(
            name=name,
            description=description,
            model=model or self._settings.default_base_model,
            settings=settings or {},
        )
        self.db.add(bot)
        await self.db.flush()
        log.info("bot.created", bot_id=str(bot.id), model=bot.model)
        return bot

    async def get_bot(self, bot_id: uuid.UUID) -> Bot:
        bot = await self.db.get(Bot, bot_id)
        if bot is None:
            raise NotFoundError("Bot", bot_id)
        return bot

    async def list_bots(
        self,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Bot], int]:
        conditions = [Bot.status == status] if status else []
        total = await self.db.scalar(select(func.count()).select_from(Bot).where(*conditions))
        result = await self.db.execute(
            select(Bot).where(*conditions).order_by(Bot.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def update_bot(self, bot_id: uuid.UUID, changes: dict[str, Any]) -> Bot:
        """Apply a partial update.

        Raises:
            ValidationError: Unknown field or invalid status
            InvalidStateError: Status change while the bot has a running job
        """
        bot = await self.get_bot(bot_id)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        new_status = changes.get("status")
        if new_status is not None:
            if new_status not in {s.value for s in BotStatus}:
                raise ValidationError(f"Invalid bot status {new_status!r}")
            if await has_active_jobs(self.db, bot.id):
                raise InvalidStateError(
                    "Bot status is derived from its fine-tune jobs while training is in progress"
                )
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("name cannot be empty")

        for name, value in changes.items():
            if value is not None:
                setattr(bot, name, value)
        await self.db.flush()
        log.info("bot.updated", bot_id=str(bot.id), fields=sorted(changes))
        return bot
