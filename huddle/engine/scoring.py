"""
huddle.engine.scoring — Popularity Score Tally
===============================================

Pure calculation: no DB I/O.  Given the categories of a user's *active*
votes, produce the aggregate total and per-category counts.  The score
service feeds this from the ledger on every recompute, so the result only
ever depends on the current ledger state, never on toggle history.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from huddle.database.models import VoteCategory

__all__ = ["CATEGORY_WEIGHTS", "ScoreTally", "tally_votes"]

# ---------------------------------------------------------------------------
# Category weights
# ---------------------------------------------------------------------------
CATEGORY_WEIGHTS: dict[VoteCategory, int] = {
    VoteCategory.THUMBS_UP: 1,
    VoteCategory.THUMBS_DOWN: -1,
    VoteCategory.KIND: 1,
    VoteCategory.FRIENDLY: 1,
    VoteCategory.PUNCTUAL: 1,
    VoteCategory.CHEERFUL: 1,
    VoteCategory.ACTIVE: 1,
    VoteCategory.VIBE_MAKER: 1,
}


@dataclass
class ScoreTally:
    """Aggregate of one user's active votes."""

    total_score: int = 0
    counts: dict[VoteCategory, int] = field(
        default_factory=lambda: {category: 0 for category in VoteCategory}
    )

    def as_dict(self) -> dict[str, int | dict[str, int]]:
        return {
            "total_score": self.total_score,
            "categories": {c.value: n for c, n in self.counts.items()},
        }


def tally_votes(categories: Iterable[str]) -> ScoreTally:
    """Sum category weights over *categories* (one entry per active vote).

    Unknown category strings are skipped.
    """
    result = ScoreTally()
    for raw in categories:
        try:
            category = VoteCategory(raw)
        except ValueError:
            continue
        result.counts[category] += 1
        result.total_score += CATEGORY_WEIGHTS[category]
    return result
