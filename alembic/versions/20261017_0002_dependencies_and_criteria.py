"""Dependency edges and acceptance criteria."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "dependencies",
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("depends_on_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("item_id <> depends_on_id", name="ck_dependencies_no_self_loop"),
        sa.ForeignKeyConstraint(["item_id"], ["work_items.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["depends_on_id"], ["work_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("item_id", "depends_on_id", name="pk_dependencies"),
    )
    op.create_index(
        "ix_dependencies_depends_on_id",
        "dependencies",
        ["depends_on_id"],
        unique=False,
    )

    op.create_table(
        "acceptance_criteria",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["work_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id", "position", name="uq_acceptance_criteria_item_position"),
    )
    op.create_index(
        "ix_acceptance_criteria_item_id",
        "acceptance_criteria",
        ["item_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_acceptance_criteria_item_id", table_name="acceptance_criteria")
    op.drop_table("acceptance_criteria")
    op.drop_index("ix_dependencies_depends_on_id", table_name="dependencies")
    op.drop_table("dependencies")
