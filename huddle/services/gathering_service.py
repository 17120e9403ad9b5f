"""
huddle.services.gathering_service — Gathering Membership Manager
=================================================================

Owns every transition of a ``gathering_memberships`` row and the
gathering's denormalized ``current_members`` counter::

    request_join ──► pending ──approve──► approved ──kick──► kicked
          │             └────reject────► rejected
          └──(no approval required)──► approved

Every write follows the same pattern:
  1. Open one transaction (``get_session``)
  2. Check preconditions, raising a typed failure on violation
  3. Compare-and-set the status (``UPDATE … WHERE status = :expected``)
  4. Adjust ``current_members`` with a SQL-side increment
  5. Emit notifications through the sink
  6. Commit

A zero row-count at step 3 means a concurrent request already moved the
row, so the loser fails with :class:`~huddle.errors.InvalidState` and its
transaction (counter included) rolls back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from huddle.database.engine import get_session
from huddle.database.models import (
    Gathering,
    GatheringMembership,
    MembershipRole,
    MembershipStatus,
    NotificationType,
)
from huddle.errors import AlreadyMember, Forbidden, Full, InvalidState, NotFound
from huddle.services.notifications import (
    NotificationEvent,
    NotificationSink,
    get_default_sink,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session-level helpers (shared with the schedule service)
# ---------------------------------------------------------------------------
def load_gathering(session: Session, gathering_id: int) -> Gathering:
    gathering = session.get(Gathering, gathering_id)
    if gathering is None:
        raise NotFound(f"Gathering {gathering_id} not found.")
    return gathering


def find_membership(
    session: Session, gathering_id: int, user_id: int
) -> GatheringMembership | None:
    return session.scalar(
        select(GatheringMembership).where(
            GatheringMembership.gathering_id == gathering_id,
            GatheringMembership.user_id == user_id,
        )
    )


def has_approved_membership(session: Session, gathering_id: int, user_id: int) -> bool:
    """True if *user_id* holds an approved row (the creator's row is approved)."""
    membership = find_membership(session, gathering_id, user_id)
    return membership is not None and membership.status == MembershipStatus.APPROVED


def _adjust_members(
    session: Session, gathering_id: int, delta: int, *, respect_capacity: bool = False
) -> bool:
    """Atomically add *delta* to ``current_members``.

    With ``respect_capacity`` the increment only applies while the gathering
    has room; returns False when no row was updated.
    """
    stmt = (
        update(Gathering)
        .where(Gathering.id == gathering_id)
        .values(current_members=Gathering.current_members + delta)
        .execution_options(synchronize_session=False)
    )
    if respect_capacity:
        stmt = stmt.where(Gathering.current_members < Gathering.max_members)
    return session.execute(stmt).rowcount == 1


def _compare_and_set(
    session: Session,
    membership_id: int,
    *,
    expected: MembershipStatus,
    new: MembershipStatus,
) -> bool:
    result = session.execute(
        update(GatheringMembership)
        .where(
            GatheringMembership.id == membership_id,
            GatheringMembership.status == expected.value,
        )
        .values(status=new.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _load_for_creator(
    session: Session, membership_id: int, actor_id: int
) -> tuple[GatheringMembership, Gathering]:
    """Fetch a membership and its gathering, requiring *actor_id* to be the creator."""
    membership = session.get(GatheringMembership, membership_id)
    if membership is None:
        raise NotFound(f"Membership {membership_id} not found.")
    gathering = load_gathering(session, membership.gathering_id)
    if gathering.creator_id != actor_id:
        raise Forbidden("Only the gathering creator can manage members.")
    return membership, gathering


def _state_error(session: Session, membership: GatheringMembership, action: str) -> InvalidState:
    session.refresh(membership)
    return InvalidState(
        f"Cannot {action} membership {membership.id}: status is {membership.status}."
    )


# ---------------------------------------------------------------------------
# Gathering lifecycle
# ---------------------------------------------------------------------------
def create_gathering(
    engine: Engine,
    *,
    creator_id: int,
    title: str,
    max_members: int,
    approval_required: bool = False,
    description: str | None = None,
) -> Gathering:
    """Create a gathering with its creator enrolled as an approved member."""
    if max_members < 1:
        raise ValueError("max_members must be at least 1")

    with get_session(engine) as session:
        gathering = Gathering(
            creator_id=creator_id,
            title=title,
            description=description,
            max_members=max_members,
            current_members=1,
            approval_required=approval_required,
        )
        session.add(gathering)
        session.flush()
        session.add(GatheringMembership(
            gathering_id=gathering.id,
            user_id=creator_id,
            status=MembershipStatus.APPROVED.value,
            role=MembershipRole.CREATOR.value,
        ))
        session.flush()
        session.refresh(gathering)
        logger.info("Gathering %d created by user %d", gathering.id, creator_id)
        return gathering


def complete_gathering(
    engine: Engine,
    *,
    gathering_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> Gathering:
    """Mark a gathering completed (one-way) and notify its approved members."""
    with get_session(engine) as session:
        gathering = load_gathering(session, gathering_id)
        if gathering.creator_id != actor_id:
            raise Forbidden("Only the gathering creator can complete it.")

        result = session.execute(
            update(Gathering)
            .where(Gathering.id == gathering_id, Gathering.is_completed.is_(False))
            .values(is_completed=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState(f"Gathering {gathering_id} is already completed.")

        member_ids = session.scalars(
            select(GatheringMembership.user_id).where(
                GatheringMembership.gathering_id == gathering_id,
                GatheringMembership.status == MembershipStatus.APPROVED.value,
                GatheringMembership.user_id != actor_id,
            )
        ).all()
        (sink or get_default_sink()).emit(session, [
            NotificationEvent(
                type=NotificationType.GATHERING_COMPLETED,
                gathering_id=gathering_id,
                related_user_id=actor_id,
                target_user_id=uid,
            )
            for uid in member_ids
        ])
        session.refresh(gathering)
        logger.info("Gathering %d completed by user %d", gathering_id, actor_id)
        return gathering


def delete_gathering(engine: Engine, *, gathering_id: int, actor_id: int) -> None:
    """Delete a gathering with its memberships, schedules and schedule memberships."""
    with get_session(engine) as session:
        gathering = load_gathering(session, gathering_id)
        if gathering.creator_id != actor_id:
            raise Forbidden("Only the gathering creator can delete it.")
        session.delete(gathering)
        logger.info("Gathering %d deleted by user %d", gathering_id, actor_id)


# ---------------------------------------------------------------------------
# Membership transitions
# ---------------------------------------------------------------------------
def request_join(
    engine: Engine,
    *,
    gathering_id: int,
    user_id: int,
    sink: NotificationSink | None = None,
) -> GatheringMembership:
    """Apply to (or directly join) a gathering.

    Gatherings without ``approval_required`` admit immediately, bumping the
    counter only while there is room.  Otherwise the row starts ``pending``
    and the creator is notified.
    """
    with get_session(engine) as session:
        gathering = load_gathering(session, gathering_id)
        if gathering.is_completed:
            raise InvalidState(f"Gathering {gathering_id} is completed.")

        existing = find_membership(session, gathering_id, user_id)
        if existing is not None:
            raise AlreadyMember(
                f"User {user_id} already has a {existing.status} membership."
            )

        auto_approve = not gathering.approval_required
        if auto_approve and not _adjust_members(
            session, gathering_id, +1, respect_capacity=True
        ):
            raise Full(f"Gathering {gathering_id} is full.")

        membership = GatheringMembership(
            gathering_id=gathering_id,
            user_id=user_id,
            status=(
                MembershipStatus.APPROVED if auto_approve else MembershipStatus.PENDING
            ).value,
            role=MembershipRole.MEMBER.value,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(membership)
                session.flush()
        except IntegrityError:
            # A concurrent join won the unique (gathering, user) slot.
            raise AlreadyMember(f"User {user_id} already has a membership.") from None

        if not auto_approve:
            (sink or get_default_sink()).emit(session, [NotificationEvent(
                type=NotificationType.APPLICATION_RECEIVED,
                gathering_id=gathering_id,
                related_user_id=user_id,
                target_user_id=gathering.creator_id,
            )])

        session.refresh(membership)
        logger.info(
            "Gathering %d: user %d joined as %s", gathering_id, user_id, membership.status
        )
        return membership


def approve(
    engine: Engine,
    *,
    membership_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> GatheringMembership:
    """pending → approved, +1 member."""
    with get_session(engine) as session:
        membership, gathering = _load_for_creator(session, membership_id, actor_id)
        if not _compare_and_set(
            session, membership_id,
            expected=MembershipStatus.PENDING, new=MembershipStatus.APPROVED,
        ):
            raise _state_error(session, membership, "approve")
        _adjust_members(session, gathering.id, +1)

        (sink or get_default_sink()).emit(session, [NotificationEvent(
            type=NotificationType.APPLICATION_APPROVED,
            gathering_id=gathering.id,
            related_user_id=actor_id,
            target_user_id=membership.user_id,
        )])
        session.refresh(membership)
        logger.info("Gathering %d: user %d approved", gathering.id, membership.user_id)
        return membership


def reject(
    engine: Engine,
    *,
    membership_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> GatheringMembership:
    """pending → rejected.  Terminal; the counter is untouched."""
    with get_session(engine) as session:
        membership, gathering = _load_for_creator(session, membership_id, actor_id)
        if not _compare_and_set(
            session, membership_id,
            expected=MembershipStatus.PENDING, new=MembershipStatus.REJECTED,
        ):
            raise _state_error(session, membership, "reject")

        (sink or get_default_sink()).emit(session, [NotificationEvent(
            type=NotificationType.APPLICATION_REJECTED,
            gathering_id=gathering.id,
            related_user_id=actor_id,
            target_user_id=membership.user_id,
        )])
        session.refresh(membership)
        logger.info("Gathering %d: user %d rejected", gathering.id, membership.user_id)
        return membership


def kick(
    engine: Engine,
    *,
    membership_id: int,
    actor_id: int,
    sink: NotificationSink | None = None,
) -> GatheringMembership:
    """approved → kicked, -1 member.  The row stays for audit.

    The kicked user's seats in the gathering's open schedules are freed in
    the same transaction.
    """
    from huddle.services.schedule_service import release_open_seats  # avoid circular import

    with get_session(engine) as session:
        membership, gathering = _load_for_creator(session, membership_id, actor_id)
        if membership.role == MembershipRole.CREATOR:
            raise Forbidden("The gathering creator cannot be kicked.")
        if not _compare_and_set(
            session, membership_id,
            expected=MembershipStatus.APPROVED, new=MembershipStatus.KICKED,
        ):
            raise _state_error(session, membership, "kick")
        _adjust_members(session, gathering.id, -1)
        release_open_seats(session, gathering.id, membership.user_id)

        (sink or get_default_sink()).emit(session, [NotificationEvent(
            type=NotificationType.MEMBER_KICKED,
            gathering_id=gathering.id,
            related_user_id=actor_id,
            target_user_id=membership.user_id,
        )])
        session.refresh(membership)
        logger.info(
            "Gathering %d: user %d kicked by %d", gathering.id, membership.user_id, actor_id
        )
        return membership


def cancel(engine: Engine, *, gathering_id: int, user_id: int) -> MembershipStatus:
    """Remove the caller's own pending or approved membership.

    Returns the status the row had before removal.  Leaving an approved
    membership also frees the user's seats in open schedules.
    """
    from huddle.services.schedule_service import release_open_seats  # avoid circular import

    with get_session(engine) as session:
        load_gathering(session, gathering_id)
        membership = find_membership(session, gathering_id, user_id)
        if membership is None:
            raise NotFound(f"User {user_id} is not a member of gathering {gathering_id}.")
        if membership.role == MembershipRole.CREATOR:
            raise Forbidden("The creator cannot leave; delete the gathering instead.")

        prior = MembershipStatus(membership.status)
        if prior not in (MembershipStatus.PENDING, MembershipStatus.APPROVED):
            raise InvalidState(f"Cannot cancel a {prior} membership.")

        result = session.execute(
            delete(GatheringMembership)
            .where(
                GatheringMembership.id == membership.id,
                GatheringMembership.status == prior.value,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState("Membership changed while cancelling; reload and retry.")
        session.expunge(membership)

        if prior == MembershipStatus.APPROVED:
            _adjust_members(session, gathering_id, -1)
            release_open_seats(session, gathering_id, user_id)
        logger.info("Gathering %d: user %d cancelled (%s)", gathering_id, user_id, prior)
        return prior


def dismiss(engine: Engine, *, membership_id: int, actor_id: int) -> None:
    """Delete a rejected or kicked row so the user may apply again."""
    with get_session(engine) as session:
        membership, gathering = _load_for_creator(session, membership_id, actor_id)
        if membership.status not in (
            MembershipStatus.REJECTED.value, MembershipStatus.KICKED.value,
        ):
            raise InvalidState(
                f"Only rejected or kicked memberships can be dismissed "
                f"(status is {membership.status})."
            )
        session.delete(membership)
        logger.info(
            "Gathering %d: %s membership of user %d dismissed",
            gathering.id, membership.status, membership.user_id,
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_gathering(engine: Engine, gathering_id: int) -> Gathering:
    with get_session(engine) as session:
        return load_gathering(session, gathering_id)


def get_membership(
    engine: Engine, gathering_id: int, user_id: int
) -> GatheringMembership | None:
    with get_session(engine) as session:
        return find_membership(session, gathering_id, user_id)


def list_members(
    engine: Engine,
    gathering_id: int,
    status: MembershipStatus = MembershipStatus.APPROVED,
) -> list[GatheringMembership]:
    with get_session(engine) as session:
        load_gathering(session, gathering_id)
        return list(session.scalars(
            select(GatheringMembership)
            .where(
                GatheringMembership.gathering_id == gathering_id,
                GatheringMembership.status == status.value,
            )
            .order_by(GatheringMembership.created_at, GatheringMembership.id)
        ).all())


def count_approved(engine: Engine, gathering_id: int) -> int:
    """Count approved rows directly (what ``current_members`` must equal)."""
    with get_session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(GatheringMembership).where(
                GatheringMembership.gathering_id == gathering_id,
                GatheringMembership.status == MembershipStatus.APPROVED.value,
            )
        ) or 0
