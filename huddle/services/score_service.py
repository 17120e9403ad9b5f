"""
huddle.services.score_service — Popularity Score Aggregator
============================================================

Rebuilds ``popularity_scores`` rows from the vote ledger.  Every recompute
is a full recount of the target's active votes (never an increment), so it
can be replayed any number of times and always converges on the ledger.

Recomputes for *different* users run independently (``recompute_async``
fans them out on worker threads).  Recomputes for the *same* user are
serialized so two overlapping recounts never interleave their upserts:

* PostgreSQL — ``pg_advisory_xact_lock`` keyed by a hash of the user id,
  released automatically when the transaction ends.
* Anything else (SQLite in tests) — one of a fixed set of in-process
  locks, picked by user id.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager, nullcontext
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, text

from huddle.constants import score_column
from huddle.database.engine import get_session, run_db
from huddle.database.models import PopularityScore, PopularityVote, User, VoteCategory
from huddle.engine.scoring import ScoreTally, tally_votes
from huddle.errors import NotFound

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-user serialization
# ---------------------------------------------------------------------------
_LOCK_STRIPES = 64
_local_locks: tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))


def _lock_key(user_id: int) -> int:
    """Stable signed 64-bit advisory lock key for *user_id*'s score row."""
    digest = hashlib.sha256(f"popularity_score:{user_id}".encode()).digest()
    val = int.from_bytes(digest[:8], byteorder="big", signed=False)
    if val > (2 ** 63 - 1):
        val -= 2 ** 64
    return val


def _is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


@contextmanager
def _local_lock(user_id: int) -> Iterator[None]:
    """Hold the stripe lock for *user_id*; users sharing a stripe wait on each other."""
    with _local_locks[user_id % _LOCK_STRIPES]:
        yield


def _advisory_lock(session: Session, user_id: int) -> None:
    session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": _lock_key(user_id)})


# ---------------------------------------------------------------------------
# Recompute
# ---------------------------------------------------------------------------
def _apply_tally(row: PopularityScore, tally: ScoreTally, now: datetime) -> None:
    row.total_score = tally.total_score
    for category in VoteCategory:
        setattr(row, score_column(category), tally.counts[category])
    row.updated_at = now


def recompute_user(engine: Engine, user_id: int) -> ScoreTally | None:
    """Recount *user_id*'s active votes and upsert the score row.

    Returns the new tally, or ``None`` if the user no longer exists.
    """
    postgres = _is_postgres(engine)
    with nullcontext() if postgres else _local_lock(user_id):
        with get_session(engine) as session:
            if postgres:
                _advisory_lock(session, user_id)
            if session.get(User, user_id) is None:
                logger.warning("Score recompute skipped: user %d not found", user_id)
                return None

            tally = tally_votes(session.scalars(
                select(PopularityVote.category).where(
                    PopularityVote.target_id == user_id,
                    PopularityVote.is_active.is_(True),
                )
            ).all())

            row = session.get(PopularityScore, user_id)
            if row is None:
                row = PopularityScore(user_id=user_id)
                session.add(row)
            _apply_tally(row, tally, datetime.now(UTC))

    logger.debug("Score recomputed: user=%d total=%d", user_id, tally.total_score)
    return tally


def recompute(engine: Engine, user_ids: Iterable[int]) -> dict[int, ScoreTally]:
    """Recompute every id in *user_ids* (deduplicated), one transaction each."""
    results: dict[int, ScoreTally] = {}
    for user_id in sorted(set(user_ids)):
        tally = recompute_user(engine, user_id)
        if tally is not None:
            results[user_id] = tally
    if results:
        logger.info("Recomputed popularity for %d user(s)", len(results))
    return results


async def recompute_async(engine: Engine, user_ids: Iterable[int]) -> dict[int, ScoreTally]:
    """Like :func:`recompute`, but users are recounted concurrently on threads."""
    ids = sorted(set(user_ids))
    tallies = await asyncio.gather(*(run_db(recompute_user, engine, uid) for uid in ids))
    return {uid: tally for uid, tally in zip(ids, tallies) if tally is not None}


def recompute_recent(engine: Engine, since: datetime) -> dict[int, ScoreTally]:
    """Batch job: recompute every user whose received votes changed since *since*."""
    with get_session(engine) as session:
        user_ids = session.scalars(
            select(PopularityVote.target_id)
            .where(PopularityVote.updated_at >= since)
            .distinct()
        ).all()
    logger.info("Batch recompute: %d user(s) touched since %s", len(user_ids), since)
    return recompute(engine, user_ids)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_score(engine: Engine, user_id: int) -> ScoreTally:
    """Cached aggregate for *user_id*; all zeros before the first recompute."""
    with get_session(engine) as session:
        if session.get(User, user_id) is None:
            raise NotFound(f"User {user_id} not found.")
        row = session.get(PopularityScore, user_id)
        tally = ScoreTally()
        if row is None:
            return tally
        tally.total_score = row.total_score or 0
        for category in VoteCategory:
            tally.counts[category] = getattr(row, score_column(category)) or 0
        return tally
