"""
huddle.services.vote_service — Popularity Vote Ledger
======================================================

Every vote is one ``popularity_votes`` row keyed by (voter, target,
category).  Un-voting flips ``is_active`` instead of deleting, so the
ledger is the single source of truth the score aggregator rebuilds from.

Two entry points write the ledger:

* :func:`toggle_vote` — free-standing profile voting, gated by the daily
  new-target quota (:mod:`huddle.services.vote_quota`), or scoped to a
  completed schedule both users took part in.
* :func:`submit_evaluation` — one-shot batch of activations after a
  schedule completes.

Neither touches ``popularity_scores``.  Both return a
:class:`RecomputeTrigger` naming the users whose score must be rebuilt;
the caller hands it to :class:`~huddle.services.recompute_queue.ScoreRecomputeQueue`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from huddle.constants import DEFAULT_DAILY_NEW_TARGET_QUOTA, DEFAULT_RECENT_VOTES_LIMIT
from huddle.database.engine import get_session
from huddle.database.models import (
    NotificationType,
    PopularityVote,
    Schedule,
    ScheduleMembership,
    User,
    VoteCategory,
)
from huddle.errors import AlreadyExists, NotAMember, NotCompleted, NotFound, SelfVote
from huddle.services import vote_quota
from huddle.services.notifications import (
    NotificationEvent,
    NotificationSink,
    get_default_sink,
)
from huddle.services.schedule_service import load_schedule

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RecomputeTrigger:
    """Users whose aggregate score is stale after a ledger write."""

    user_ids: tuple[int, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.user_ids)


@dataclass(frozen=True, slots=True)
class VoteResult:
    changed: bool
    quota_consumed: bool = False
    trigger: RecomputeTrigger = field(default_factory=RecomputeTrigger)
    votes: tuple[PopularityVote, ...] = ()


@dataclass(frozen=True, slots=True)
class ReceivedVote:
    """An active vote as shown to its target; the voter is never exposed."""

    category: str
    schedule_id: int | None
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "schedule_id": self.schedule_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _lock_voter(session: Session, voter_id: int) -> User:
    """``SELECT … FOR UPDATE`` the voter row; serializes a voter's writes."""
    voter = session.scalar(select(User).where(User.id == voter_id).with_for_update())
    if voter is None:
        raise NotFound(f"User {voter_id} not found.")
    return voter


def _require_user(session: Session, user_id: int) -> None:
    if session.get(User, user_id) is None:
        raise NotFound(f"User {user_id} not found.")


def _check_schedule_scope(
    session: Session, schedule_id: int, voter_id: int, target_ids: Iterable[int]
) -> Schedule:
    """Evaluation scope: completed schedule, voter and every target took part."""
    schedule = load_schedule(session, schedule_id)
    if not schedule.is_completed:
        raise NotCompleted(f"Schedule {schedule_id} has not been completed yet.")

    wanted = {voter_id, *target_ids}
    members = set(session.scalars(
        select(ScheduleMembership.user_id).where(
            ScheduleMembership.schedule_id == schedule_id,
            ScheduleMembership.user_id.in_(wanted),
        )
    ).all())
    if voter_id not in members:
        raise NotAMember(f"User {voter_id} did not take part in schedule {schedule_id}.")
    missing = sorted(wanted - members)
    if missing:
        raise NotAMember(f"User {missing[0]} did not take part in schedule {schedule_id}.")
    return schedule


def _find_vote(
    session: Session, voter_id: int, target_id: int, category: VoteCategory
) -> PopularityVote | None:
    return session.scalar(
        select(PopularityVote).where(
            PopularityVote.voter_id == voter_id,
            PopularityVote.target_id == target_id,
            PopularityVote.category == category.value,
        )
    )


def _activate(
    session: Session,
    vote: PopularityVote | None,
    *,
    voter_id: int,
    target_id: int,
    category: VoteCategory,
    schedule_id: int | None,
    now: datetime,
) -> PopularityVote:
    if vote is None:
        vote = PopularityVote(
            voter_id=voter_id,
            target_id=target_id,
            category=category.value,
            is_active=True,
            schedule_id=schedule_id,
            created_at=now,
            updated_at=now,
        )
        session.add(vote)
    else:
        vote.is_active = True
        vote.updated_at = now
        # First evaluation stamp wins; has_evaluated() keys on it.
        if schedule_id is not None and vote.schedule_id is None:
            vote.schedule_id = schedule_id
    return vote


def _received_event(target_id: int, schedule: Schedule | None) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.POPULARITY_RECEIVED,
        gathering_id=schedule.gathering_id if schedule is not None else None,
        related_user_id=None,  # anonymous
        target_user_id=target_id,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def toggle_vote(
    engine: Engine,
    *,
    voter_id: int,
    target_id: int,
    category: VoteCategory | str,
    active: bool,
    schedule_id: int | None = None,
    daily_quota: int = DEFAULT_DAILY_NEW_TARGET_QUOTA,
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> VoteResult:
    """Set the (voter, target, category) vote to *active*.

    Idempotent: if the row is already in the requested state nothing is
    written, no quota is charged, and the result has ``changed=False``.

    Raises
    ------
    SelfVote
        If *voter_id* equals *target_id*.
    NotFound
        If either user or the referenced schedule does not exist.
    NotCompleted / NotAMember
        For a schedule-scoped vote on an open schedule, or one either user
        never took part in.
    RateLimited
        If activating would begin a new target past today's quota.
    """
    category = VoteCategory(category)
    if voter_id == target_id:
        raise SelfVote("You cannot vote for yourself.")
    now = now or datetime.now(UTC)

    with get_session(engine) as session:
        voter = _lock_voter(session, voter_id)
        _require_user(session, target_id)
        schedule = None
        if schedule_id is not None:
            schedule = _check_schedule_scope(session, schedule_id, voter_id, [target_id])

        vote = _find_vote(session, voter_id, target_id, category)
        current = vote.is_active if vote is not None else False
        if current == active:
            logger.debug(
                "Vote no-op: voter=%d target=%d category=%s active=%s",
                voter_id, target_id, category, active,
            )
            return VoteResult(changed=False, votes=(vote,) if vote is not None else ())

        quota_consumed = False
        if not active:
            vote.is_active = False
            vote.updated_at = now
        else:
            if schedule is None and not voter.has_unlimited_votes:
                quota_consumed = vote_quota.consume(
                    session,
                    voter_id=voter_id,
                    target_id=target_id,
                    quota=daily_quota,
                    now=now,
                )
            vote = _activate(
                session, vote,
                voter_id=voter_id,
                target_id=target_id,
                category=category,
                schedule_id=schedule_id,
                now=now,
            )
            (sink or get_default_sink()).emit(session, [_received_event(target_id, schedule)])

        session.flush()
        logger.info(
            "Vote %s: voter=%d target=%d category=%s schedule=%s",
            "activated" if active else "withdrawn",
            voter_id, target_id, category, schedule_id,
        )
        return VoteResult(
            changed=True,
            quota_consumed=quota_consumed,
            trigger=RecomputeTrigger((target_id,)),
            votes=(vote,),
        )


def submit_evaluation(
    engine: Engine,
    *,
    voter_id: int,
    schedule_id: int,
    votes: Iterable[tuple[int, VoteCategory | str]],
    now: datetime | None = None,
    sink: NotificationSink | None = None,
) -> VoteResult:
    """Apply a batch of (target, category) activations for a completed schedule.

    All-or-nothing: any invalid pair rolls the whole batch back.  A voter
    evaluates a schedule once; a second submission raises
    :class:`~huddle.errors.AlreadyExists`.  Evaluations never touch the
    daily quota.
    """
    pairs = list(dict.fromkeys((int(t), VoteCategory(c)) for t, c in votes))
    if not pairs:
        return VoteResult(changed=False)
    if any(target == voter_id for target, _ in pairs):
        raise SelfVote("You cannot vote for yourself.")
    now = now or datetime.now(UTC)

    with get_session(engine) as session:
        _lock_voter(session, voter_id)
        targets = sorted({target for target, _ in pairs})
        schedule = _check_schedule_scope(session, schedule_id, voter_id, targets)

        already = session.scalar(
            select(PopularityVote.id).where(
                PopularityVote.voter_id == voter_id,
                PopularityVote.schedule_id == schedule_id,
            ).limit(1)
        )
        if already is not None:
            raise AlreadyExists(f"User {voter_id} already evaluated schedule {schedule_id}.")

        written: list[PopularityVote] = []
        notify: list[int] = []
        for target_id, category in pairs:
            existing = _find_vote(session, voter_id, target_id, category)
            if existing is None or not existing.is_active:
                notify.append(target_id)
            written.append(_activate(
                session, existing,
                voter_id=voter_id,
                target_id=target_id,
                category=category,
                schedule_id=schedule_id,
                now=now,
            ))

        (sink or get_default_sink()).emit(
            session, [_received_event(t, schedule) for t in dict.fromkeys(notify)]
        )
        session.flush()
        logger.info(
            "Evaluation submitted: voter=%d schedule=%d votes=%d",
            voter_id, schedule_id, len(written),
        )
        return VoteResult(
            changed=True,
            trigger=RecomputeTrigger(tuple(targets)),
            votes=tuple(written),
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def has_evaluated(engine: Engine, voter_id: int, schedule_id: int) -> bool:
    with get_session(engine) as session:
        return session.scalar(
            select(PopularityVote.id).where(
                PopularityVote.voter_id == voter_id,
                PopularityVote.schedule_id == schedule_id,
            ).limit(1)
        ) is not None


def votes_cast(engine: Engine, voter_id: int, target_id: int) -> list[str]:
    """Categories *voter_id* currently has active against *target_id*."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(PopularityVote.category).where(
                PopularityVote.voter_id == voter_id,
                PopularityVote.target_id == target_id,
                PopularityVote.is_active.is_(True),
            ).order_by(PopularityVote.category)
        ).all())


def recent_votes_received(
    engine: Engine, user_id: int, limit: int = DEFAULT_RECENT_VOTES_LIMIT
) -> list[ReceivedVote]:
    """Most recent active votes targeting *user_id*, newest first."""
    with get_session(engine) as session:
        rows = session.execute(
            select(
                PopularityVote.category,
                PopularityVote.schedule_id,
                PopularityVote.updated_at,
            )
            .where(
                PopularityVote.target_id == user_id,
                PopularityVote.is_active.is_(True),
            )
            .order_by(PopularityVote.updated_at.desc(), PopularityVote.id.desc())
            .limit(limit)
        ).all()
        return [ReceivedVote(category=c, schedule_id=s, updated_at=u) for c, s, u in rows]
