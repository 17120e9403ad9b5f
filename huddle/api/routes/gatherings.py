"""
huddle.api.routes.gatherings — Gathering + membership endpoints
=================================================================

Every mutation returns the server-confirmed row so clients can reconcile
optimistic UI state against it.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from huddle.api.deps import CurrentUser, EngineDep
from huddle.database.models import Gathering, GatheringMembership, MembershipStatus
from huddle.services import gathering_service

router = APIRouter(tags=["gatherings"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class GatheringCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    max_members: int = Field(ge=1)
    approval_required: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _gathering_dict(g: Gathering) -> dict:
    return {
        "id": g.id,
        "creator_id": g.creator_id,
        "title": g.title,
        "description": g.description,
        "max_members": g.max_members,
        "current_members": g.current_members,
        "approval_required": g.approval_required,
        "is_completed": g.is_completed,
        "created_at": g.created_at.isoformat() if g.created_at else None,
    }


def _membership_dict(m: GatheringMembership) -> dict:
    return {
        "id": m.id,
        "gathering_id": m.gathering_id,
        "user_id": m.user_id,
        "status": m.status,
        "role": m.role,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


# ---------------------------------------------------------------------------
# Gatherings
# ---------------------------------------------------------------------------
@router.post("/gatherings", status_code=status.HTTP_201_CREATED)
def create_gathering(body: GatheringCreate, user_id: CurrentUser, engine: EngineDep):
    gathering = gathering_service.create_gathering(
        engine,
        creator_id=user_id,
        title=body.title,
        description=body.description,
        max_members=body.max_members,
        approval_required=body.approval_required,
    )
    return _gathering_dict(gathering)


@router.get("/gatherings/{gathering_id}")
def get_gathering(gathering_id: int, engine: EngineDep):
    return _gathering_dict(gathering_service.get_gathering(engine, gathering_id))


@router.post("/gatherings/{gathering_id}/complete")
def complete_gathering(gathering_id: int, user_id: CurrentUser, engine: EngineDep):
    gathering = gathering_service.complete_gathering(
        engine, gathering_id=gathering_id, actor_id=user_id
    )
    return _gathering_dict(gathering)


@router.delete("/gatherings/{gathering_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_gathering(gathering_id: int, user_id: CurrentUser, engine: EngineDep):
    gathering_service.delete_gathering(engine, gathering_id=gathering_id, actor_id=user_id)


# ---------------------------------------------------------------------------
# Membership (caller's own)
# ---------------------------------------------------------------------------
@router.post("/gatherings/{gathering_id}/join", status_code=status.HTTP_201_CREATED)
def join_gathering(gathering_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = gathering_service.request_join(
        engine, gathering_id=gathering_id, user_id=user_id
    )
    return _membership_dict(membership)


@router.get("/gatherings/{gathering_id}/membership")
def my_membership(gathering_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = gathering_service.get_membership(engine, gathering_id, user_id)
    return {"membership": _membership_dict(membership) if membership else None}


@router.delete("/gatherings/{gathering_id}/membership")
def cancel_membership(gathering_id: int, user_id: CurrentUser, engine: EngineDep):
    prior = gathering_service.cancel(engine, gathering_id=gathering_id, user_id=user_id)
    gathering = gathering_service.get_gathering(engine, gathering_id)
    return {"cancelled": prior.value, "gathering": _gathering_dict(gathering)}


@router.get("/gatherings/{gathering_id}/members")
def list_members(
    gathering_id: int,
    engine: EngineDep,
    status_filter: MembershipStatus = Query(MembershipStatus.APPROVED, alias="status"),
):
    members = gathering_service.list_members(engine, gathering_id, status=status_filter)
    return {"members": [_membership_dict(m) for m in members]}


# ---------------------------------------------------------------------------
# Creator actions on a membership row
# ---------------------------------------------------------------------------
@router.post("/memberships/{membership_id}/approve")
def approve_membership(membership_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = gathering_service.approve(
        engine, membership_id=membership_id, actor_id=user_id
    )
    return _membership_dict(membership)


@router.post("/memberships/{membership_id}/reject")
def reject_membership(membership_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = gathering_service.reject(
        engine, membership_id=membership_id, actor_id=user_id
    )
    return _membership_dict(membership)


@router.post("/memberships/{membership_id}/kick")
def kick_member(membership_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = gathering_service.kick(
        engine, membership_id=membership_id, actor_id=user_id
    )
    return _membership_dict(membership)


@router.delete("/memberships/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
def dismiss_membership(membership_id: int, user_id: CurrentUser, engine: EngineDep):
    gathering_service.dismiss(engine, membership_id=membership_id, actor_id=user_id)
