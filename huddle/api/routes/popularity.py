"""
huddle.api.routes.popularity — Vote + score endpoints
=======================================================

Vote writes commit the ledger and hand the affected user ids to the
background :class:`~huddle.services.recompute_queue.ScoreRecomputeQueue`;
the score returned by ``GET /users/{id}/popularity`` catches up on the next
drain.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from huddle.api.deps import ConfigDep, CurrentUser, EngineDep, QueueDep
from huddle.constants import CATEGORY_LABELS, POSITIVE_TAGS
from huddle.database.models import PopularityVote, VoteCategory
from huddle.services import score_service, vote_service

router = APIRouter(tags=["popularity"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class VoteToggle(BaseModel):
    category: VoteCategory
    active: bool = True
    schedule_id: int | None = None


class EvaluationItem(BaseModel):
    target_id: int
    category: VoteCategory


class EvaluationSubmit(BaseModel):
    votes: list[EvaluationItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _vote_dict(v: PopularityVote) -> dict:
    return {
        "target_id": v.target_id,
        "category": v.category,
        "is_active": v.is_active,
        "schedule_id": v.schedule_id,
    }


def _result_dict(result: vote_service.VoteResult) -> dict:
    return {
        "changed": result.changed,
        "quota_consumed": result.quota_consumed,
        "votes": [_vote_dict(v) for v in result.votes],
    }


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
@router.get("/popularity/categories")
def list_categories():
    return {
        "categories": [
            {
                "key": c.value,
                "label": CATEGORY_LABELS[c],
                "positive_only": c in POSITIVE_TAGS,
            }
            for c in VoteCategory
        ]
    }


@router.put("/users/{target_id}/votes")
def toggle_vote(
    target_id: int,
    body: VoteToggle,
    user_id: CurrentUser,
    engine: EngineDep,
    config: ConfigDep,
    queue: QueueDep,
):
    result = vote_service.toggle_vote(
        engine,
        voter_id=user_id,
        target_id=target_id,
        category=body.category,
        active=body.active,
        schedule_id=body.schedule_id,
        daily_quota=config.daily_new_target_quota,
    )
    if result.trigger:
        queue.request(result.trigger.user_ids)
    return _result_dict(result)


@router.get("/users/{target_id}/votes")
def my_votes(target_id: int, user_id: CurrentUser, engine: EngineDep):
    """Categories the caller currently has active against *target_id*."""
    return {"categories": vote_service.votes_cast(engine, user_id, target_id)}


@router.post("/schedules/{schedule_id}/evaluation")
def submit_evaluation(
    schedule_id: int,
    body: EvaluationSubmit,
    user_id: CurrentUser,
    engine: EngineDep,
    queue: QueueDep,
):
    result = vote_service.submit_evaluation(
        engine,
        voter_id=user_id,
        schedule_id=schedule_id,
        votes=[(item.target_id, item.category) for item in body.votes],
    )
    if result.trigger:
        queue.request(result.trigger.user_ids)
    return _result_dict(result)


@router.get("/schedules/{schedule_id}/evaluation")
def evaluation_status(schedule_id: int, user_id: CurrentUser, engine: EngineDep):
    return {"evaluated": vote_service.has_evaluated(engine, user_id, schedule_id)}


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/popularity")
def get_popularity(user_id: int, engine: EngineDep, config: ConfigDep):
    tally = score_service.get_score(engine, user_id)
    recent = vote_service.recent_votes_received(
        engine, user_id, limit=config.recent_votes_limit
    )
    return {
        "user_id": user_id,
        **tally.as_dict(),
        "recent": [r.to_dict() for r in recent],
    }
