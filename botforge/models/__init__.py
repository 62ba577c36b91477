"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate. Bots are imported first because fine-tune
jobs reference them by foreign key.
"""

from botforge.models.bot import Bot, BotStatus
from botforge.models.dataset import (
    TERMINAL_GENERATION_STATUSES,
    Dataset,
    DatasetType,
    GenerationStatus,
)
from botforge.models.fine_tuning import (
    TERMINAL_JOB_STATUSES,
    FineTuneJob,
    FineTuneStatus,
)
from botforge.models.training_report import ReportStatus, TrainingReport

__all__ = [
    "Bot",
    "BotStatus",
    "Dataset",
    "DatasetType",
    "GenerationStatus",
    "TERMINAL_GENERATION_STATUSES",
    "FineTuneJob",
    "FineTuneStatus",
    "TERMINAL_JOB_STATUSES",
    "TrainingReport",
    "ReportStatus",
]
