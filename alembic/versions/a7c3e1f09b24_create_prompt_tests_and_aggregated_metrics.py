"""Create prompt_tests and aggregated_metrics tables.

prompt_tests holds one row per prompt executed on one LLM platform, with the
per-brand analysis embedded as a JSONB document. aggregated_metrics holds one
row per (user, scope, scope_value) rollup.

Revision ID: a7c3e1f09b24
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "a7c3e1f09b24"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "prompt_tests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("prompt_id", sa.String(64), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=True),
        sa.Column("llm_provider", sa.String(20), nullable=False),
        sa.Column("topic", sa.String(255), nullable=True),
        sa.Column("persona", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("brand_metrics", postgresql.JSONB(), nullable=True),
        sa.Column("tested_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prompt_tests_user_id", "prompt_tests", ["user_id"])
    op.create_index("ix_prompt_tests_prompt_id", "prompt_tests", ["prompt_id"])

    op.create_table(
        "aggregated_metrics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("scope_value", sa.String(255), nullable=False, server_default="all"),
        sa.Column("date_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_prompts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_responses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_brands", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("brand_metrics", postgresql.JSONB(), nullable=True),
        sa.Column("prompt_test_ids", postgresql.JSONB(), nullable=True),
        sa.Column(
            "last_calculated", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "scope", "scope_value", name="uq_aggregated_metric_scope"),
    )
    op.create_index("ix_aggregated_metrics_user_id", "aggregated_metrics", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_aggregated_metrics_user_id", table_name="aggregated_metrics")
    op.drop_table("aggregated_metrics")
    op.drop_index("ix_prompt_tests_prompt_id", table_name="prompt_tests")
    op.drop_index("ix_prompt_tests_user_id", table_name="prompt_tests")
    op.drop_table("prompt_tests")
