"""Initial schema: users, user_achievements, score_history, upvotes, messages

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("country", sa.String(64), nullable=True),
        sa.Column("state", sa.String(64), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("rizz_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("main_character_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("npc_level", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rank", sa.String(32), nullable=False, server_default="Unranked"),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("login_streak", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_conversations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_login_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("xp >= 0", name="ck_users_xp_nonneg"),
        sa.CheckConstraint("upvotes >= 0", name="ck_users_upvotes_nonneg"),
    )
    op.create_index("ix_users_rizz_score_desc", "users", ["rizz_score"])
    op.create_index("ix_users_country", "users", ["country"])

    op.create_table(
        "user_achievements",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("achievement_id", sa.String(64), primary_key=True),
        sa.Column(
            "unlocked_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "score_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("rank", sa.String(32), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_score_history_user_ts", "score_history", ["user_id", "timestamp"])

    op.create_table(
        "upvotes",
        sa.Column(
            "from_user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "to_user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("from_user_id", sa.String(128), nullable=False),
        sa.Column("to_user_id", sa.String(128), nullable=False),
        sa.Column("participant_low", sa.String(128), nullable=False),
        sa.Column("participant_high", sa.String(128), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_messages_pair_ts",
        "messages",
        ["participant_low", "participant_high", "timestamp"],
    )
    op.create_index("ix_messages_to_read", "messages", ["to_user_id", "read"])
    op.create_index("ix_messages_from", "messages", ["from_user_id"])


def downgrade() -> None:
    op.drop_index("ix_messages_from", table_name="messages")
    op.drop_index("ix_messages_to_read", table_name="messages")
    op.drop_index("ix_messages_pair_ts", table_name="messages")
    op.drop_table("messages")
    op.drop_table("upvotes")
    op.drop_index("ix_score_history_user_ts", table_name="score_history")
    op.drop_table("score_history")
    op.drop_table("user_achievements")
    op.drop_index("ix_users_country", table_name="users")
    op.drop_index("ix_users_rizz_score_desc", table_name="users")
    op.drop_table("users")
