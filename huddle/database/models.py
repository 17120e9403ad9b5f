"""
huddle.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                  — Community members
- gatherings             — Persistent groups with a denormalized member count
- gathering_memberships  — Join / approval lifecycle per (gathering, user)
- schedules              — Scheduled events nested under a gathering
- schedule_memberships   — Participation + attendance per (schedule, user)
- popularity_votes       — Toggleable vote ledger (source of truth for scores)
- daily_vote_limits      — Per-voter per-target per-day quota markers
- popularity_scores      — Recomputable aggregate cache
- notifications          — Persisted notification events
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Huddle ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MembershipStatus(enum.StrEnum):
    """Lifecycle of a gathering membership row."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    KICKED = "kicked"


class MembershipRole(enum.StrEnum):
    CREATOR = "creator"
    MEMBER = "member"


class AttendanceStatus(enum.StrEnum):
    """Self-managed attendance sub-state of a schedule membership."""
    PENDING = "pending"
    CONFIRMED = "confirmed"


class VoteCategory(enum.StrEnum):
    """Closed set of evaluation tags."""
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"
    KIND = "kind"
    FRIENDLY = "friendly"
    PUNCTUAL = "punctual"
    CHEERFUL = "cheerful"
    ACTIVE = "active"
    VIBE_MAKER = "vibe_maker"


class NotificationType(enum.StrEnum):
    APPLICATION_RECEIVED = "application_received"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    MEMBER_KICKED = "member_kicked"
    GATHERING_COMPLETED = "gathering_completed"
    SCHEDULE_COMPLETED = "schedule_completed"
    SCHEDULE_CANCELLED = "schedule_cancelled"
    POPULARITY_RECEIVED = "popularity_received"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    nickname: Mapped[str] = mapped_column(String(50), nullable=False)
    # Premium members are exempt from the daily vote quota
    has_unlimited_votes: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} nickname={self.nickname!r}>"


# ---------------------------------------------------------------------------
# Gatherings
# ---------------------------------------------------------------------------
class Gathering(Base):
    """A persistent group.

    ``current_members`` is a denormalized count of ``approved`` membership
    rows.  It is only ever changed by SQL-side increments issued in the same
    transaction as the membership status write.
    """
    __tablename__ = "gatherings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    creator_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    max_members: Mapped[int] = mapped_column(Integer, nullable=False)
    current_members: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approval_required: Mapped[bool] = mapped_column(Boolean, default=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    memberships: Mapped[list[GatheringMembership]] = relationship(
        back_populates="gathering", cascade="all, delete-orphan"
    )
    schedules: Mapped[list[Schedule]] = relationship(
        back_populates="gathering", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_gatherings_creator", "creator_id"),
        CheckConstraint("current_members >= 0", name="ck_gatherings_current_members"),
    )

    def __repr__(self) -> str:
        return (
            f"<Gathering id={self.id} members={self.current_members}/"
            f"{self.max_members} completed={self.is_completed}>"
        )


class GatheringMembership(Base):
    __tablename__ = "gathering_memberships"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    gathering_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("gatherings.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipStatus.PENDING.value
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipRole.MEMBER.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    gathering: Mapped[Gathering] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("gathering_id", "user_id", name="uq_gathering_memberships_pair"),
        Index("ix_gathering_memberships_status", "gathering_id", "status"),
        Index("ix_gathering_memberships_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GatheringMembership gathering={self.gathering_id} "
            f"user={self.user_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------
class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    gathering_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("gatherings.id", ondelete="CASCADE"), nullable=False
    )
    # NULL while every member has left; the next joiner takes over
    creator_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_members: Mapped[int] = mapped_column(Integer, nullable=False)
    current_members: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    gathering: Mapped[Gathering] = relationship(back_populates="schedules")
    memberships: Mapped[list[ScheduleMembership]] = relationship(
        back_populates="schedule", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_schedules_gathering", "gathering_id"),
        CheckConstraint("current_members >= 0", name="ck_schedules_current_members"),
    )

    def __repr__(self) -> str:
        return (
            f"<Schedule id={self.id} gathering={self.gathering_id} "
            f"members={self.current_members}/{self.max_members}>"
        )


class ScheduleMembership(Base):
    __tablename__ = "schedule_memberships"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipStatus.APPROVED.value
    )
    attendance_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AttendanceStatus.PENDING.value
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    schedule: Mapped[Schedule] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("schedule_id", "user_id", name="uq_schedule_memberships_pair"),
        Index("ix_schedule_memberships_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduleMembership schedule={self.schedule_id} "
            f"user={self.user_id} attendance={self.attendance_status}>"
        )


# ---------------------------------------------------------------------------
# PopularityVote — toggleable vote ledger
# ---------------------------------------------------------------------------
class PopularityVote(Base):
    """One (voter, target, category) vote.

    Rows are never deleted by un-voting; ``is_active`` is flipped instead so
    the aggregator can always rebuild scores from this table alone.
    """
    __tablename__ = "popularity_votes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    voter_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    schedule_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "voter_id", "target_id", "category",
            name="uq_popularity_votes_voter_target_category",
        ),
        Index("ix_popularity_votes_target_active", "target_id", "is_active"),
        Index("ix_popularity_votes_updated", "updated_at"),
        Index("ix_popularity_votes_voter_schedule", "voter_id", "schedule_id"),
        CheckConstraint("voter_id <> target_id", name="ck_popularity_votes_no_self"),
    )

    def __repr__(self) -> str:
        return (
            f"<PopularityVote voter={self.voter_id} target={self.target_id} "
            f"category={self.category!r} active={self.is_active}>"
        )


class DailyVoteLimit(Base):
    __tablename__ = "daily_vote_limits"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    voter_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("voter_id", "target_id", "day", name="uq_daily_vote_limits"),
        Index("ix_daily_vote_limits_voter_day", "voter_id", "day"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyVoteLimit voter={self.voter_id} target={self.target_id} "
            f"day={self.day}>"
        )


# ---------------------------------------------------------------------------
# PopularityScore — aggregate cache, written only by the score service
# ---------------------------------------------------------------------------
class PopularityScore(Base):
    __tablename__ = "popularity_scores"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_score: Mapped[int] = mapped_column(Integer, default=0)
    thumbs_up_count: Mapped[int] = mapped_column(Integer, default=0)
    thumbs_down_count: Mapped[int] = mapped_column(Integer, default=0)
    kind_count: Mapped[int] = mapped_column(Integer, default=0)
    friendly_count: Mapped[int] = mapped_column(Integer, default=0)
    punctual_count: Mapped[int] = mapped_column(Integer, default=0)
    cheerful_count: Mapped[int] = mapped_column(Integer, default=0)
    active_count: Mapped[int] = mapped_column(Integer, default=0)
    vibe_maker_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PopularityScore user={self.user_id} total={self.total_score}>"


# ---------------------------------------------------------------------------
# Notification — default persistent notification sink
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    gathering_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # NULL for anonymous notifications (popularity votes)
    related_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"
