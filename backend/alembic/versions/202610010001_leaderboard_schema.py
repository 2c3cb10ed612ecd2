"""Leaderboard cache and refresh job status tables.

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "202610010001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "leaderboard_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("collection_slug", sa.String(), nullable=False),
        sa.Column("nft_type", sa.String(), nullable=False),
        sa.Column("token_id", sa.String(), nullable=False),
        sa.Column("points", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("opensea_url", sa.Text(), nullable=True),
        sa.Column("is_listed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("collection_slug", "token_id", name="uq_leaderboard_collection_token"),
    )
    op.create_index("idx_leaderboard_points", "leaderboard_entries", ["points"])
    op.create_index("idx_leaderboard_nft_type", "leaderboard_entries", ["nft_type"])
    op.create_index("idx_leaderboard_token_id", "leaderboard_entries", ["token_id"])

    op.create_table(
        "leaderboard_meta",
        sa.Column("cache_key", sa.String(), primary_key=True),
        sa.Column("status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("last_started_at", sa.DateTime(), nullable=True),
        sa.Column("last_completed_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("leaderboard_meta")
    op.drop_index("idx_leaderboard_token_id", table_name="leaderboard_entries")
    op.drop_index("idx_leaderboard_nft_type", table_name="leaderboard_entries")
    op.drop_index("idx_leaderboard_points", table_name="leaderboard_entries")
    op.drop_table("leaderboard_entries")
