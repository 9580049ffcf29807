"""giveaways, entries and users

Revision ID: 0001_giveaway_engine
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_giveaway_engine"
down_revision = None
branch_labels = None
depends_on = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("image", sa.String(length=1024), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )

    op.create_table(
        "giveaways",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("must_be_logged_in", sa.Boolean(), nullable=False),
        sa.Column("require_photo_usage_consent", sa.Boolean(), nullable=False),
        sa.Column("require_profile_public", sa.Boolean(), nullable=False),
        sa.Column("device_fingerprinting", sa.Boolean(), nullable=False),
        sa.Column("max_winners", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_s", sa.Integer(), nullable=True),
        sa.Column("remaining_s", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("draw_seed", sa.String(length=64), nullable=True),
        sa.Column("draw_input_hash", sa.String(length=64), nullable=True),
        sa.Column("draw_input_size", sa.Integer(), nullable=True),
        sa.Column("draw_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winners", sa.JSON(), nullable=False),
        sa.Column("winner_proofs", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "max_winners >= 1", name="ck_giveaways_max_winners_positive"
        ),
        sa.CheckConstraint(
            "status IN ('draft','active','paused','closed','cancelled')",
            name="ck_giveaways_status_enum",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_giveaways"),
    )
    op.create_index(
        "ix_giveaways_status_window",
        "giveaways",
        ["status", "start_at", "end_at"],
    )

    op.create_table(
        "giveaway_entries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("giveaway_id", ID_TYPE, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=True),
        sa.Column("anon_id", sa.String(length=128), nullable=True),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("disqualified", sa.Boolean(), nullable=False),
        sa.Column("final_confirmations", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (anon_id IS NULL)",
            name="ck_giveaway_entries_one_identity",
        ),
        sa.ForeignKeyConstraint(
            ["giveaway_id"],
            ["giveaways.id"],
            name="fk_giveaway_entries_giveaway_id_giveaways",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_giveaway_entries_user_id_users",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_giveaway_entries"),
        sa.UniqueConstraint("giveaway_id", "user_id", name="uq_giveaway_entry_user"),
        sa.UniqueConstraint("giveaway_id", "anon_id", name="uq_giveaway_entry_anon"),
    )
    op.create_index(
        "ix_giveaway_entries_giveaway_id", "giveaway_entries", ["giveaway_id"]
    )
    op.create_index(
        "ix_giveaway_entries_snapshot",
        "giveaway_entries",
        ["giveaway_id", "created_at", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_giveaway_entries_snapshot", table_name="giveaway_entries")
    op.drop_index("ix_giveaway_entries_giveaway_id", table_name="giveaway_entries")
    op.drop_table("giveaway_entries")
    op.drop_index("ix_giveaways_status_window", table_name="giveaways")
    op.drop_table("giveaways")
    op.drop_table("users")
