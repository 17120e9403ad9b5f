"""
huddle.services.recompute_queue — Background score recompute consumer
=======================================================================

Collects :class:`~huddle.services.vote_service.RecomputeTrigger` user ids
from request handlers and recounts them on a background task, so a vote
request returns as soon as its ledger write commits.

Pending ids are a set: ten toggles against the same target before the
next drain cost one recompute.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

from huddle.services import score_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class ScoreRecomputeQueue:
    """Deduplicating queue of user ids drained every ``interval`` seconds.

    ``request`` may be called from worker threads (sync route handlers);
    ``drain_once`` runs on the event loop.
    """

    def __init__(self, engine: Engine, interval: float = 10) -> None:
        self.engine = engine
        self.interval = interval
        self._pending: set[int] = set()
        self._lock = threading.Lock()
        self._drain_task: asyncio.Task | None = None

    @property
    def pending(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._pending)

    def request(self, user_ids: Iterable[int]) -> None:
        """Mark *user_ids* stale.  Never blocks on the database."""
        with self._lock:
            self._pending.update(user_ids)

    def _take(self) -> list[int]:
        with self._lock:
            batch = sorted(self._pending)
            self._pending.clear()
        return batch

    async def drain_once(self) -> int:
        """Recompute everything pending right now; returns how many ids ran.

        Ids whose recompute fails are put back for the next drain.
        """
        batch = self._take()
        if not batch:
            return 0
        try:
            await score_service.recompute_async(self.engine, batch)
        except Exception:
            self.request(batch)
            raise
        logger.debug("Drained %d score recompute(s)", len(batch))
        return len(batch)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background drain task."""
        if self._drain_task is not None:
            return

        async def _drain_loop() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.drain_once()
                except Exception:
                    logger.exception("Score recompute drain error")

        self._drain_task = loop.create_task(_drain_loop(), name="score-recompute-drain")

    def stop(self) -> None:
        """Cancel the drain task."""
        if self._drain_task:
            self._drain_task.cancel()
            self._drain_task = None


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_queue: ScoreRecomputeQueue | None = None


def get_recompute_queue() -> ScoreRecomputeQueue:
    """Return the global recompute queue instance."""
    if _queue is None:
        raise RuntimeError(
            "Recompute queue not configured — call configure_recompute_queue() first"
        )
    return _queue


def configure_recompute_queue(*, engine: Engine, interval: float = 10) -> ScoreRecomputeQueue:
    """Create the global queue bound to *engine*; replaces any previous one."""
    global _queue
    if _queue is not None:
        _queue.stop()
    _queue = ScoreRecomputeQueue(engine, interval=interval)
    return _queue
