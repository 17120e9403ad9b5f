"""Initial schema: users, gatherings, schedules, votes, scores, notifications

Revision ID: 3f2c9a1e7b40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2c9a1e7b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    """Create every Huddle table."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("nickname", sa.String(50), nullable=False),
        sa.Column("has_unlimited_votes", sa.Boolean(), server_default=sa.false()),
        _created_at(),
    )

    op.create_table(
        "gatherings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "creator_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("max_members", sa.Integer(), nullable=False),
        sa.Column("current_members", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approval_required", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_completed", sa.Boolean(), server_default=sa.false()),
        _created_at(),
        sa.CheckConstraint(
            "current_members >= 0",
            name="ck_gatherings_current_members",
        ),
    )
    op.create_index("ix_gatherings_creator", "gatherings", ["creator_id"])

    op.create_table(
        "gathering_memberships",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "gathering_id", sa.BigInteger(),
            sa.ForeignKey("gatherings.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        _created_at(),
        sa.UniqueConstraint("gathering_id", "user_id", name="uq_gathering_memberships_pair"),
    )
    op.create_index(
        "ix_gathering_memberships_status", "gathering_memberships", ["gathering_id", "status"]
    )
    op.create_index("ix_gathering_memberships_user", "gathering_memberships", ["user_id"])

    op.create_table(
        "schedules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "gathering_id", sa.BigInteger(),
            sa.ForeignKey("gatherings.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "creator_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_members", sa.Integer(), nullable=False),
        sa.Column("current_members", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), server_default=sa.false()),
        _created_at(),
        sa.CheckConstraint(
            "current_members >= 0",
            name="ck_schedules_current_members",
        ),
    )
    op.create_index("ix_schedules_gathering", "schedules", ["gathering_id"])

    op.create_table(
        "schedule_memberships",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "schedule_id", sa.BigInteger(),
            sa.ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="approved"),
        sa.Column(
            "attendance_status", sa.String(20), nullable=False, server_default="pending"
        ),
        _created_at("joined_at"),
        sa.UniqueConstraint("schedule_id", "user_id", name="uq_schedule_memberships_pair"),
    )
    op.create_index("ix_schedule_memberships_user", "schedule_memberships", ["user_id"])

    op.create_table(
        "popularity_votes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "voter_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "target_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "schedule_id", sa.BigInteger(),
            sa.ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True,
        ),
        _created_at(),
        _created_at("updated_at"),
        sa.UniqueConstraint(
            "voter_id", "target_id", "category",
            name="uq_popularity_votes_voter_target_category",
        ),
        sa.CheckConstraint("voter_id <> target_id", name="ck_popularity_votes_no_self"),
    )
    op.create_index(
        "ix_popularity_votes_target_active", "popularity_votes", ["target_id", "is_active"]
    )
    op.create_index("ix_popularity_votes_updated", "popularity_votes", ["updated_at"])
    op.create_index(
        "ix_popularity_votes_voter_schedule", "popularity_votes", ["voter_id", "schedule_id"]
    )

    op.create_table(
        "daily_vote_limits",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "voter_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "target_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("day", sa.Date(), nullable=False),
        sa.UniqueConstraint("voter_id", "target_id", "day", name="uq_daily_vote_limits"),
    )
    op.create_index("ix_daily_vote_limits_voter_day", "daily_vote_limits", ["voter_id", "day"])

    op.create_table(
        "popularity_scores",
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("total_score", sa.Integer(), server_default="0"),
        *[
            sa.Column(f"{name}_count", sa.Integer(), server_default="0")
            for name in (
                "thumbs_up", "thumbs_down", "kind", "friendly",
                "punctual", "cheerful", "active", "vibe_maker",
            )
        ],
        _created_at("updated_at"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("gathering_id", sa.BigInteger(), nullable=True),
        sa.Column("related_user_id", sa.BigInteger(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_notifications_user_time", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop every Huddle table (reverse dependency order)."""
    op.drop_index("ix_notifications_user_time", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("popularity_scores")
    op.drop_index("ix_daily_vote_limits_voter_day", table_name="daily_vote_limits")
    op.drop_table("daily_vote_limits")
    op.drop_index("ix_popularity_votes_voter_schedule", table_name="popularity_votes")
    op.drop_index("ix_popularity_votes_updated", table_name="popularity_votes")
    op.drop_index("ix_popularity_votes_target_active", table_name="popularity_votes")
    op.drop_table("popularity_votes")
    op.drop_index("ix_schedule_memberships_user", table_name="schedule_memberships")
    op.drop_table("schedule_memberships")
    op.drop_index("ix_schedules_gathering", table_name="schedules")
    op.drop_table("schedules")
    op.drop_index("ix_gathering_memberships_user", table_name="gathering_memberships")
    op.drop_index("ix_gathering_memberships_status", table_name="gathering_memberships")
    op.drop_table("gathering_memberships")
    op.drop_index("ix_gatherings_creator", table_name="gatherings")
    op.drop_table("gatherings")
    op.drop_table("users")
