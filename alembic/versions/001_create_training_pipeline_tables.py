"""Create training pipeline tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Tables:
  bots               - deployable assistants and their current model
  datasets           - training data; doubles as the generation job row
  fine_tune_jobs     - provider fine-tune jobs, self-referencing for
                       enhancement chains (parent_job_id)
  training_reports   - evaluation results of fine-tuned models

Notes:
  - Statuses stored as VARCHAR to avoid PostgreSQL enum migration pain.
  - training_reports keeps plain UUID references (no FKs) so reports
    outlive the jobs, bots and datasets they describe.
  - Child jobs are not stored on the parent; they are queried by
    parent_job_id ordered by created_at.
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create bots, datasets, fine_tune_jobs and training_reports."""

    op.create_table(
        "bots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "model",
            sa.String(200),
            nullable=False,
            comment="Model the bot serves; replaced by the fine-tuned model on success",
        ),
        sa.Column("fine_tuned_model_id", sa.String(200), nullable=True),
        sa.Column("training_file_id", sa.String(200), nullable=True),
        sa.Column(
            "status",
            sa.String(30),
            nullable=False,
            server_default="active",
            comment="active | inactive | training | error",
        ),
        sa.Column("settings", postgresql.JSONB, nullable=False, server_default="{}"),
        *_timestamps(),
    )
    op.create_index("ix_bots_status", "bots", ["status"])

    op.create_table(
        "datasets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "dataset_type",
            sa.String(20),
            nullable=False,
            comment="chat | calling | voice | all",
        ),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("training_content", sa.Text(), nullable=True),
        sa.Column("test_content", sa.Text(), nullable=True),
        sa.Column(
            "file_id",
            sa.String(200),
            nullable=True,
            comment="Provider file id once the training split was uploaded",
        ),
        sa.Column("num_examples", sa.Integer(), nullable=True),
        sa.Column("training_examples_count", sa.Integer(), nullable=True),
        sa.Column("test_examples_count", sa.Integer(), nullable=True),
        sa.Column("tags", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="Target count, batch size, enhancement lineage, dedup and split stats",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "status",
            sa.String(30),
            nullable=True,
            comment="pending | processing | completed | failed; NULL when hand-authored",
        ),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_batch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_batches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generated_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", postgresql.JSONB, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(200), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_datasets_type_created", "datasets", ["dataset_type", "created_at"])
    op.create_index("ix_datasets_status", "datasets", ["status"])
    op.create_index("ix_datasets_file_id", "datasets", ["file_id"])

    op.create_table(
        "fine_tune_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "bot_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("training_file_id", sa.String(200), nullable=False),
        sa.Column("validation_file_id", sa.String(200), nullable=True),
        sa.Column(
            "provider_job_id",
            sa.String(200),
            nullable=True,
            comment="Provider job handle; NULL until submission succeeds",
        ),
        sa.Column(
            "status",
            sa.String(30),
            nullable=False,
            server_default="pending",
            comment="pending | validating_files | running | succeeded | failed | cancelled",
        ),
        sa.Column("fine_tuned_model_id", sa.String(200), nullable=True),
        sa.Column(
            "error",
            postgresql.JSONB,
            nullable=True,
            comment="Structured provider error: message, code, type, param",
        ),
        sa.Column("hyperparameters", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="training_method, model_type(s), base_model, suffix, lineage",
        ),
        sa.Column("result_files", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("validation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validation_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("training_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("validation_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("training_duration_seconds", sa.Integer(), nullable=True),
        sa.Column("trained_tokens", sa.Integer(), nullable=True),
        sa.Column("training_cost_usd", sa.Float(), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("total_examples", sa.Integer(), nullable=True),
        sa.Column(
            "parent_job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("fine_tune_jobs.id", ondelete="SET NULL"),
            nullable=True,
            comment="Enhancement chain parent",
        ),
        *_timestamps(),
    )
    op.create_index("ix_fine_tune_jobs_bot_id", "fine_tune_jobs", ["bot_id"])
    op.create_index("ix_fine_tune_jobs_parent_job_id", "fine_tune_jobs", ["parent_job_id"])
    op.create_index("ix_fine_tune_jobs_bot_created", "fine_tune_jobs", ["bot_id", "created_at"])
    op.create_index("ix_fine_tune_jobs_provider_job", "fine_tune_jobs", ["provider_job_id"])

    op.create_table(
        "training_reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("fine_tune_job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("bot_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("dataset_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("training_file_id", sa.String(200), nullable=True),
        sa.Column("test_file_id", sa.String(200), nullable=True),
        sa.Column("training_examples", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("test_examples", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("precision", sa.Float(), nullable=True),
        sa.Column("recall", sa.Float(), nullable=True),
        sa.Column("f1_score", sa.Float(), nullable=True),
        sa.Column("perplexity", sa.Float(), nullable=True),
        sa.Column("detailed_metrics", postgresql.JSONB, nullable=True),
        sa.Column("confusion_matrix", postgresql.JSONB, nullable=True),
        sa.Column("test_results", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("model_name", sa.String(200), nullable=True),
        sa.Column("base_model", sa.String(200), nullable=True),
        sa.Column("fine_tuned_model", sa.String(200), nullable=True),
        sa.Column(
            "status",
            sa.String(30),
            nullable=False,
            server_default="pending",
            comment="pending | testing | completed | failed",
        ),
        sa.Column("error", postgresql.JSONB, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("created_by", sa.String(200), nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_training_reports_fine_tune_job_id", "training_reports", ["fine_tune_job_id"]
    )
    op.create_index("ix_training_reports_bot_id", "training_reports", ["bot_id"])


def downgrade() -> None:
    """Drop all training pipeline tables."""

    op.drop_index("ix_training_reports_bot_id", table_name="training_reports")
    op.drop_index("ix_training_reports_fine_tune_job_id", table_name="training_reports")
    op.drop_table("training_reports")

    op.drop_index("ix_fine_tune_jobs_provider_job", table_name="fine_tune_jobs")
    op.drop_index("ix_fine_tune_jobs_bot_created", table_name="fine_tune_jobs")
    op.drop_index("ix_fine_tune_jobs_parent_job_id", table_name="fine_tune_jobs")
    op.drop_index("ix_fine_tune_jobs_bot_id", table_name="fine_tune_jobs")
    op.drop_table("fine_tune_jobs")

    op.drop_index("ix_datasets_file_id", table_name="datasets")
    op.drop_index("ix_datasets_status", table_name="datasets")
    op.drop_index("ix_datasets_type_created", table_name="datasets")
    op.drop_table("datasets")

    op.drop_index("ix_bots_status", table_name="bots")
    op.drop_table("bots")
