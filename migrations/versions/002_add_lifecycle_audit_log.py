"""Add lifecycle_audit_log table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Append-only: rows are inserted by transitions and purges, never updated
    op.create_table(
        "lifecycle_audit_log",
        sa.Column(
            "audit_id",
            sa.String(36).with_variant(postgresql.UUID(as_uuid=True), "postgresql"),
            primary_key=True,
        ),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "event_data",
            sa.JSON().with_variant(postgresql.JSONB, "postgresql"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "action IN ('delete', 'terminate', 'retire', 'disable', 'archive', "
            "'deactivate', 'purge')",
            name="ck_audit_action",
        ),
    )

    op.create_index("idx_audit_kind_entity", "lifecycle_audit_log", ["kind", "entity_id"])
    op.create_index("idx_audit_action", "lifecycle_audit_log", ["action"])
    op.create_index("idx_audit_actor", "lifecycle_audit_log", ["actor"])
    op.create_index("idx_audit_occurred", "lifecycle_audit_log", ["occurred_at"])


def downgrade() -> None:
    op.drop_table("lifecycle_audit_log")
