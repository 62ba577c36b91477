"""Bot endpoints.

POST   /api/v1/bots        - Create bot
GET    /api/v1/bots        - List bots
GET    /api/v1/bots/models - Base models offered by the provider
GET    /api/v1/bots/{id}   - Get bot
PATCH  /api/v1/bots/{id}   - Update bot (status locked while training)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.api.deps import get_provider
from botforge.database import get_db_session
from botforge.providers.base import TrainingProvider
from botforge.services.base_models import list_base_models
from botforge.services.bots import BotService

router = APIRouter(prefix="/bots", tags=["bots"])


# ------------------------------------------------------------------ #
# Request/Response Models
# ------------------------------------------------------------------ #


class CreateBotRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    model: str | None = Field(None, description="Base model; defaults to the configured base model")
    settings: dict[str, Any] | None = None


class UpdateBotRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    model: str | None = None
    status: str | None = Field(None, description="active | inactive | training | error")
    settings: dict[str, Any] | None = None


class BotResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    model: str
    fine_tuned_model_id: str | None
    training_file_id: str | None
    status: str
    settings: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class BotListResponse(BaseModel):
    bots: list[BotResponse]
    total: int


class BaseModelResponse(BaseModel):
    id: str
    name: str
    created: int
    owned_by: str
    supports_fine_tuning: bool


class BaseModelListResponse(BaseModel):
    models: list[BaseModelResponse]
    source: str = Field(..., description="provider, or defaults when the provider was unreachable")


# ------------------------------------------------------------------ #
# Endpoints
# ------------------------------------------------------------------ #


@router.post("", response_model=BotResponse, status_code=status.HTTP_201_CREATED)
async def create_bot(
    body: CreateBotRequest,
    db: AsyncSession = Depends(get_db_session),
) -> BotResponse:
    bot = await BotService(db).create_bot(
        name=body.name,
        model=body.model,
        description=body.description,
        settings=body.settings,
    )
    return BotResponse(**bot.to_dict())


@router.get("", response_model=BotListResponse)
async def list_bots(
    db: AsyncSession = Depends(get_db_session),
    status_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> BotListResponse:
    bots, total = await BotService(db).list_bots(status=status_filter, limit=limit, offset=offset)
    return BotListResponse(bots=[BotResponse(**b.to_dict()) for b in bots], total=total)


@router.get("/models", response_model=BaseModelListResponse)
async def list_models(
    provider: TrainingProvider = Depends(get_provider),
) -> BaseModelListResponse:
    # Declared before /{bot_id} so "models" is not parsed as a bot id
    return BaseModelListResponse(**await list_base_models(provider))


@router.get("/{bot_id}", response_model=BotResponse)
async def get_bot(
    bot_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
) -> BotResponse:
    bot = await BotService(db).get_bot(bot_id)
    return BotResponse(**bot.to_dict())


@router.patch("/{bot_id}", response_model=BotResponse)
async def update_bot(
    bot_id: uuid.UUID,
    body: UpdateBotRequest,
    db: AsyncSession = Depends(get_db_session),
) -> BotResponse:
    """Partial update. Changing ``status`` is refused with 409 while a fine-tune job runs."""
    bot = await BotService(db).update_bot(bot_id, body.model_dump(exclude_unset=True))
    return BotResponse(**bot.to_dict())
