"""Bot model: the deployable assistant whose model is being customized."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from botforge.database import Base, JSONType, UTCDateTime


class BotStatus(StrEnum):
    """Bot availability.

    ``training`` is derived from the bot's fine-tune jobs and cannot be set
    directly while any of them is non-terminal.
    """
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRAINING = "training"
    ERROR = "error"


class Bot(Base):
    """Bot configuration with its current (possibly fine-tuned) model."""

    __tablename__ = "bots"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Model the bot serves; replaced by the fine-tuned model on success",
    )
    fine_tuned_model_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    training_file_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=BotStatus.ACTIVE.value,
        server_default=BotStatus.ACTIVE.value,
        comment="active | inactive | training | error",
    )
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("ix_bots_status", "status"),)

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        kwargs.setdefault("status", BotStatus.ACTIVE.value)
        kwargs.setdefault("settings", {})
        kwargs.setdefault("created_at", datetime.now(UTC))
        kwargs.setdefault("updated_at", datetime.now(UTC))
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Bot id={self.id} name={self.name!r} status={self.status!r}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "model": self.model,
            "fine_tuned_model_id": self.fine_tuned_model_id,
            "training_file_id": self.training_file_id,
            "status": self.status,
            "settings": self.settings,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
