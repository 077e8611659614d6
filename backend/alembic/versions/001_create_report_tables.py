"""Create report generation tables

Revision ID: 001
Revises: None
Create Date: 2025-03-03 00:00:00.000000+00:00

What:  Creates categories, profiles, preferences, notes, reports and
       idempotency_keys.
How:   PostgreSQL-specific types: UUID primary keys, uuid[] for
       preferences.active_categories, JSONB for report category snapshots,
       TIMESTAMP WITH TIME ZONE everywhere.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str):
    return [
        sa.Column(
            name,
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        )
        for name in names
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_categories"),
        sa.UniqueConstraint("slug", name="uq_categories_slug"),
    )

    op.create_table(
        "profiles",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "timezone",
            sa.String(64),
            server_default=sa.text("'UTC'"),
            nullable=False,
            comment="IANA timezone name used for the weekly report quota",
        ),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("user_id", name="pk_profiles"),
    )

    op.create_table(
        "preferences",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "active_categories",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        *_timestamps("updated_at"),
        sa.PrimaryKeyConstraint("user_id", name="pk_preferences"),
    )

    op.create_table(
        "notes",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("category_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notes"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], name="fk_notes_category"),
    )
    op.execute(
        "CREATE INDEX idx_notes_user_category_created "
        "ON notes (user_id, category_id, created_at DESC)"
    )

    op.create_table(
        "reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("generated_by", sa.String(20), nullable=False, comment="scheduled | on_demand"),
        sa.Column(
            "categories_snapshot",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("html", sa.Text(), nullable=False),
        sa.Column("text_version", sa.Text(), nullable=True),
        sa.Column("pdf_path", sa.String(255), nullable=True),
        sa.Column("llm_model", sa.String(100), nullable=True),
        sa.Column("system_prompt_version", sa.String(20), nullable=True),
        *_timestamps("created_at"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_reports"),
        sa.CheckConstraint(
            "generated_by IN ('scheduled', 'on_demand')",
            name="ck_reports_generated_by",
        ),
    )
    op.create_index(
        "idx_reports_user_kind_created",
        "reports",
        ["user_id", "generated_by", "created_at"],
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("report_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_idempotency_keys"),
        sa.UniqueConstraint("user_id", "key", name="unique_user_idempotency_key"),
        sa.ForeignKeyConstraint(
            ["report_id"],
            ["reports.id"],
            name="fk_idempotency_keys_report",
            ondelete="CASCADE",
        ),
    )
    op.create_index("idx_idempotency_keys_expires_at", "idempotency_keys", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_idempotency_keys_expires_at", table_name="idempotency_keys")
    op.drop_table("idempotency_keys")
    op.drop_index("idx_reports_user_kind_created", table_name="reports")
    op.drop_table("reports")
    op.execute("DROP INDEX IF EXISTS idx_notes_user_category_created")
    op.drop_table("notes")
    op.drop_table("preferences")
    op.drop_table("profiles")
    op.drop_table("categories")
