"""
huddle.constants — Shared Constants
====================================

Vote category labels and service defaults.  Import from here instead of
duplicating values across services, routes and jobs.
"""

from __future__ import annotations

from huddle.database.models import VoteCategory

# ---------------------------------------------------------------------------
# Popularity votes
# ---------------------------------------------------------------------------
DEFAULT_DAILY_NEW_TARGET_QUOTA = 1  # New targets a voter may begin per UTC day
DEFAULT_RECENT_VOTES_LIMIT = 10

# Descriptive tags that can only ever count in the target's favour
POSITIVE_TAGS: frozenset[VoteCategory] = frozenset({
    VoteCategory.KIND,
    VoteCategory.FRIENDLY,
    VoteCategory.PUNCTUAL,
    VoteCategory.CHEERFUL,
    VoteCategory.ACTIVE,
    VoteCategory.VIBE_MAKER,
})

CATEGORY_LABELS: dict[VoteCategory, str] = {
    VoteCategory.THUMBS_UP: "Liked them",
    VoteCategory.THUMBS_DOWN: "Not for me",
    VoteCategory.KIND: "Really kind",
    VoteCategory.FRIENDLY: "Easy to get along with",
    VoteCategory.PUNCTUAL: "Always on time",
    VoteCategory.CHEERFUL: "Cheerful",
    VoteCategory.ACTIVE: "Joins in actively",
    VoteCategory.VIBE_MAKER: "Lifts the mood",
}


def score_column(category: VoteCategory | str) -> str:
    """Name of the ``popularity_scores`` column holding *category*'s count."""
    return f"{VoteCategory(category).value}_count"
