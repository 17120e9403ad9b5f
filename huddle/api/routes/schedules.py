"""
huddle.api.routes.schedules — Schedule endpoints
==================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from huddle.api.deps import CurrentUser, EngineDep
from huddle.database.models import AttendanceStatus, Schedule, ScheduleMembership
from huddle.services import schedule_service

router = APIRouter(tags=["schedules"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ScheduleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    max_members: int = Field(ge=1)
    scheduled_at: datetime | None = None


class AttendanceUpdate(BaseModel):
    status: AttendanceStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _schedule_dict(s: Schedule) -> dict:
    return {
        "id": s.id,
        "gathering_id": s.gathering_id,
        "creator_id": s.creator_id,
        "title": s.title,
        "scheduled_at": s.scheduled_at.isoformat() if s.scheduled_at else None,
        "max_members": s.max_members,
        "current_members": s.current_members,
        "is_completed": s.is_completed,
    }


def _member_dict(m: ScheduleMembership) -> dict:
    return {
        "schedule_id": m.schedule_id,
        "user_id": m.user_id,
        "attendance_status": m.attendance_status,
        "joined_at": m.joined_at.isoformat() if m.joined_at else None,
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/gatherings/{gathering_id}/schedules", status_code=status.HTTP_201_CREATED)
def create_schedule(
    gathering_id: int, body: ScheduleCreate, user_id: CurrentUser, engine: EngineDep
):
    schedule = schedule_service.create_schedule(
        engine,
        gathering_id=gathering_id,
        creator_id=user_id,
        title=body.title,
        max_members=body.max_members,
        scheduled_at=body.scheduled_at,
    )
    return _schedule_dict(schedule)


@router.get("/schedules/{schedule_id}")
def get_schedule(schedule_id: int, engine: EngineDep):
    schedule = schedule_service.get_schedule(engine, schedule_id)
    members = schedule_service.list_members(engine, schedule_id)
    return {**_schedule_dict(schedule), "members": [_member_dict(m) for m in members]}


@router.post("/schedules/{schedule_id}/join", status_code=status.HTTP_201_CREATED)
def join_schedule(schedule_id: int, user_id: CurrentUser, engine: EngineDep):
    membership = schedule_service.join(engine, schedule_id=schedule_id, user_id=user_id)
    return _member_dict(membership)


@router.post("/schedules/{schedule_id}/leave")
def leave_schedule(schedule_id: int, user_id: CurrentUser, engine: EngineDep):
    return _schedule_dict(
        schedule_service.leave(engine, schedule_id=schedule_id, user_id=user_id)
    )


@router.post("/schedules/{schedule_id}/complete")
def complete_schedule(schedule_id: int, user_id: CurrentUser, engine: EngineDep):
    return _schedule_dict(
        schedule_service.complete(engine, schedule_id=schedule_id, actor_id=user_id)
    )


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_schedule(schedule_id: int, user_id: CurrentUser, engine: EngineDep):
    schedule_service.cancel_schedule(engine, schedule_id=schedule_id, actor_id=user_id)


@router.put("/schedules/{schedule_id}/attendance")
def set_attendance(
    schedule_id: int, body: AttendanceUpdate, user_id: CurrentUser, engine: EngineDep
):
    membership = schedule_service.set_attendance(
        engine, schedule_id=schedule_id, user_id=user_id, status=body.status
    )
    return _member_dict(membership)
