"""
huddle.services.schedule_service — Schedule Membership Manager
===============================================================

Join / leave / complete / cancel for schedules nested under a gathering,
plus the self-managed attendance flag.  Every operation except ``leave``
requires an approved membership in the parent gathering (the creator's
own row is approved), checked through :mod:`huddle.services.gathering_service`.
Losing that membership frees the user's seats in open schedules
(:func:`release_open_seats`).

``current_members`` is adjusted with SQL-side increments in the same
transaction as the ``schedule_memberships`` insert/delete, and completion
is a compare-and-set on ``is_completed``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from huddle.database.engine import get_session
from huddle.database.models import (
    AttendanceStatus,
    NotificationType,
    Schedule,
    ScheduleMembership,
)
from huddle.errors import AlreadyMember, Forbidden, Full, InvalidState, NotFound
from huddle.services.gathering_service import has_approved_membership, load_gathering
from huddle.services.notifications import (
    NotificationEvent,
    NotificationSink,
    get_default_sink,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def load_schedule(session: Session, schedule_id: int) -> Schedule:
    schedule = session.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFound(f"Schedule {schedule_id} not found.")
    return schedule


def find_schedule_membership(
    session: Session, schedule_id: int, user_id: int
) -> ScheduleMembership | None:
    return session.scalar(
        select(ScheduleMembership).where(
            ScheduleMembership.schedule_id == schedule_id,
            ScheduleMembership.user_id == user_id,
        )
    )


def _require_gathering_access(session: Session, schedule: Schedule, user_id: int) -> None:
    if not has_approved_membership(session, schedule.gathering_id, user_id):
        raise Forbidden(
            f"User {user_id} is not an approved member of gathering {schedule.gathering_id}."
        )


def _require_creator(schedule: Schedule, actor_id: int, action: str) -> None:
    if schedule.creator_id != actor_id:
        raise Forbidden(f"Only the schedule creator can {action} it.")


def _adjust_members(
    session: Session, schedule_id: int, delta: int, *, respect_capacity: bool = False
) -> bool:
    stmt = (
        update(Schedule)
        .where(Schedule.id == schedule_id)
        .values(current_members=Schedule.current_members + delta)
        .execution_options(synchronize_session=False)
    )
    if respect_capacity:
        stmt = stmt.where(Schedule.current_members < Schedule.max_members)
    return session.execute(stmt).rowcount == 1


def _other_member_ids(session: Session, schedule_id: int, exclude: int) -> list[int]:
    return list(session.scalars(
        select(ScheduleMembership.user_id).where(
            ScheduleMembership.schedule_id == schedule_id,
            ScheduleMembership.user_id != exclude,
        )
    ).all())


# ---------------------------------------------------------------------------
# Schedule lifecycle
# ---------------------------------------------------------------------------
def create_schedule(
    engine: Engine,
    *,
    gathering_id: int,
    creator_id: int,
    title: str,
    max_members: int,
    scheduled_at: datetime | None = None,
) -> Schedule:
    """Create a schedule under a gathering; the creator is its first member."""
    if max_members < 1:
        raise ValueError("max_members must be at least 1")

    with get_session(engine) as session:
        load_gathering(session, gathering_id)
        if not has_approved_membership(session, gathering_id, creator_id):
            raise Forbidden(
                f"User {creator_id} is not an approved member of gathering {gathering_id}."
            )

        schedule = Schedule(
            gathering_id=gathering_id,
            creator_id=creator_id,
            title=title,
            scheduled_at=scheduled_at,
            max_members=max_members,
            current_members=1,
        )
        session.add(schedule)
        session.flush()
        session.add(ScheduleMembership(schedule_id=schedule.id, user_id=creator_id))
        session.flush()
        session.refresh(schedule)
        logger.info(
            "Schedule %d created in gathering %d by user %d",
            schedule.id, gathering_id, creator_id,
        )
        return schedule


def complete(
    engine: Engine,
    *,
    schedule_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> Schedule:
    """Mark a schedule completed.  One-way: opens evaluation, closes joins/leaves."""
    with get_session(engine) as session:
        schedule = load_schedule(session, schedule_id)
        _require_creator(schedule, actor_id, "complete")
        _require_gathering_access(session, schedule, actor_id)

        result = session.execute(
            update(Schedule)
            .where(Schedule.id == schedule_id, Schedule.is_completed.is_(False))
            .values(is_completed=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState(f"Schedule {schedule_id} is already completed.")

        (sink or get_default_sink()).emit(session, [
            NotificationEvent(
                type=NotificationType.SCHEDULE_COMPLETED,
                gathering_id=schedule.gathering_id,
                related_user_id=actor_id,
                target_user_id=uid,
            )
            for uid in _other_member_ids(session, schedule_id, actor_id)
        ])
        session.refresh(schedule)
        logger.info("Schedule %d completed by user %d", schedule_id, actor_id)
        return schedule


def cancel_schedule(
    engine: Engine,
    *,
    schedule_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> None:
    """Delete a not-yet-completed schedule, notifying every other member."""
    with get_session(engine) as session:
        schedule = load_schedule(session, schedule_id)
        _require_creator(schedule, actor_id, "cancel")
        _require_gathering_access(session, schedule, actor_id)
        if schedule.is_completed:
            raise InvalidState(f"Schedule {schedule_id} is completed and cannot be cancelled.")

        (sink or get_default_sink()).emit(session, [
            NotificationEvent(
                type=NotificationType.SCHEDULE_CANCELLED,
                gathering_id=schedule.gathering_id,
                related_user_id=actor_id,
                target_user_id=uid,
            )
            for uid in _other_member_ids(session, schedule_id, actor_id)
        ])
        session.delete(schedule)
        logger.info("Schedule %d cancelled by user %d", schedule_id, actor_id)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------
def join(engine: Engine, *, schedule_id: int, user_id: int) -> ScheduleMembership:
    """Join a schedule.  Immediate; capacity enforced by a conditional increment."""
    with get_session(engine) as session:
        schedule = load_schedule(session, schedule_id)
        if schedule.is_completed:
            raise InvalidState(f"Schedule {schedule_id} is completed.")
        _require_gathering_access(session, schedule, user_id)

        if find_schedule_membership(session, schedule_id, user_id) is not None:
            raise AlreadyMember(f"User {user_id} already joined schedule {schedule_id}.")
        if not _adjust_members(session, schedule_id, +1, respect_capacity=True):
            raise Full(f"Schedule {schedule_id} is full.")

        membership = ScheduleMembership(
            schedule_id=schedule_id,
            user_id=user_id,
            attendance_status=AttendanceStatus.PENDING.value,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(membership)
                session.flush()
        except IntegrityError:
            raise AlreadyMember(f"User {user_id} already joined schedule {schedule_id}.") from None

        # A creator-less schedule is taken over by whoever joins next.
        session.execute(
            update(Schedule)
            .where(Schedule.id == schedule_id, Schedule.creator_id.is_(None))
            .values(creator_id=user_id)
            .execution_options(synchronize_session=False)
        )
        session.refresh(membership)
        logger.info("Schedule %d: user %d joined", schedule_id, user_id)
        return membership


def release_seat(session: Session, schedule: Schedule, user_id: int) -> bool:
    """Delete *user_id*'s row in *schedule* and give the seat back.

    If the leaver organized the schedule, the earliest remaining member
    takes over (or nobody, when the schedule is now empty).  Returns False
    when the user held no seat.
    """
    result = session.execute(
        delete(ScheduleMembership)
        .where(
            ScheduleMembership.schedule_id == schedule.id,
            ScheduleMembership.user_id == user_id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    _adjust_members(session, schedule.id, -1)

    if schedule.creator_id == user_id:
        successor = session.scalar(
            select(ScheduleMembership.user_id)
            .where(ScheduleMembership.schedule_id == schedule.id)
            .order_by(ScheduleMembership.joined_at, ScheduleMembership.id)
            .limit(1)
        )
        session.execute(
            update(Schedule)
            .where(Schedule.id == schedule.id)
            .values(creator_id=successor)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Schedule %d: organizer role passed from %d to %s",
            schedule.id, user_id, successor,
        )
    return True


def release_open_seats(session: Session, gathering_id: int, user_id: int) -> list[int]:
    """Free *user_id*'s seats in every uncompleted schedule of a gathering.

    Called when the user stops being an approved gathering member.  Rows in
    completed schedules stay so their evaluations remain valid.
    """
    schedules = session.scalars(
        select(Schedule)
        .join(ScheduleMembership, ScheduleMembership.schedule_id == Schedule.id)
        .where(
            Schedule.gathering_id == gathering_id,
            Schedule.is_completed.is_(False),
            ScheduleMembership.user_id == user_id,
        )
        .order_by(Schedule.id)
    ).all()
    released = [s.id for s in schedules if release_seat(session, s, user_id)]
    if released:
        logger.info(
            "Gathering %d: released user %d from schedule(s) %s",
            gathering_id, user_id, released,
        )
    return released


def leave(engine: Engine, *, schedule_id: int, user_id: int) -> Schedule:
    """Leave a schedule, handing the organizer role on if the creator leaves.

    Only the seat's owner is needed; gathering standing is not checked, so
    a seat can always be given back.  Returns the schedule as it stands
    afterwards (``creator_id`` may be ``None`` when the last member left).
    """
    with get_session(engine) as session:
        schedule = load_schedule(session, schedule_id)
        if schedule.is_completed:
            raise InvalidState(f"Schedule {schedule_id} is completed.")
        if not release_seat(session, schedule, user_id):
            raise NotFound(f"User {user_id} has not joined schedule {schedule_id}.")

        session.refresh(schedule)
        logger.info("Schedule %d: user %d left", schedule_id, user_id)
        return schedule


def set_attendance(
    engine: Engine,
    *,
    schedule_id: int,
    user_id: int,
    status: AttendanceStatus | str,
) -> ScheduleMembership:
    """Set the caller's own attendance flag.  Informational only."""
    status = AttendanceStatus(status)
    with get_session(engine) as session:
        schedule = load_schedule(session, schedule_id)
        _require_gathering_access(session, schedule, user_id)
        membership = find_schedule_membership(session, schedule_id, user_id)
        if membership is None:
            raise NotFound(f"User {user_id} has not joined schedule {schedule_id}.")
        membership.attendance_status = status.value
        session.flush()
        return membership


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_schedule(engine: Engine, schedule_id: int) -> Schedule:
    with get_session(engine) as session:
        return load_schedule(session, schedule_id)


def list_members(engine: Engine, schedule_id: int) -> list[ScheduleMembership]:
    with get_session(engine) as session:
        load_schedule(session, schedule_id)
        return list(session.scalars(
            select(ScheduleMembership)
            .where(ScheduleMembership.schedule_id == schedule_id)
            .order_by(ScheduleMembership.joined_at, ScheduleMembership.id)
        ).all())
