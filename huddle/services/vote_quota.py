"""
huddle.services.vote_quota — Daily New-Target Vote Quota
=========================================================

A voter may *begin* evaluating at most ``quota`` new targets per UTC
calendar day.  Beginning a target is recorded as a
``daily_vote_limits(voter, target, day)`` row; once that row exists every
further category against the same target that day is free.

These helpers never open their own session: the vote service calls them
inside its transaction, after locking the voter's ``users`` row, so the
count-then-insert below cannot interleave with another request from the
same voter.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from huddle.database.models import DailyVoteLimit
from huddle.errors import RateLimited

logger = logging.getLogger(__name__)


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def quota_day(now: datetime | None = None) -> date:
    """UTC calendar day that *now* falls into."""
    return _normalize_dt(now or datetime.now(UTC)).date()


def seconds_until_reset(now: datetime | None = None) -> int:
    """Seconds until the next UTC midnight, at least 1."""
    current = _normalize_dt(now or datetime.now(UTC))
    midnight = datetime.combine(current.date() + timedelta(days=1), time.min, tzinfo=UTC)
    return max(1, int((midnight - current).total_seconds()))


def has_begun(session: Session, voter_id: int, target_id: int, day: date) -> bool:
    """True if *voter_id* already spent quota on *target_id* on *day*."""
    return session.scalar(
        select(DailyVoteLimit.id).where(
            DailyVoteLimit.voter_id == voter_id,
            DailyVoteLimit.target_id == target_id,
            DailyVoteLimit.day == day,
        )
    ) is not None


def targets_begun(session: Session, voter_id: int, day: date) -> int:
    return session.scalar(
        select(func.count(DailyVoteLimit.id)).where(
            DailyVoteLimit.voter_id == voter_id,
            DailyVoteLimit.day == day,
        )
    ) or 0


def consume(
    session: Session,
    *,
    voter_id: int,
    target_id: int,
    quota: int,
    now: datetime | None = None,
) -> bool:
    """Charge one new target against the voter's quota for today.

    Returns ``False`` when the target was already begun today (nothing is
    charged), ``True`` when a new marker row was written.

    Raises
    ------
    RateLimited
        If the voter has already begun *quota* targets today.  The
        exception's ``retry_after`` is the number of seconds until the
        next UTC midnight.
    """
    day = quota_day(now)
    if has_begun(session, voter_id, target_id, day):
        return False

    used = targets_begun(session, voter_id, day)
    if used >= quota:
        logger.warning(
            "Vote quota exhausted: voter=%d used=%d quota=%d day=%s",
            voter_id, used, quota, day,
        )
        raise RateLimited(
            f"Daily limit of {quota} new target(s) reached.",
            retry_after=seconds_until_reset(now),
        )

    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(DailyVoteLimit(voter_id=voter_id, target_id=target_id, day=day))
            session.flush()
    except IntegrityError:
        # Marker written by a concurrent transaction for the same pair.
        return False

    logger.debug("Quota charged: voter=%d target=%d day=%s", voter_id, target_id, day)
    return True
