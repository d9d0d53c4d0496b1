"""Slot availability checks across classes, makeups, trials and holidays."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_user, verify_branch_access
from services.availability import get_availability_service

router = APIRouter(prefix="/api/availability", tags=["availability"])


class AvailabilityRequest(BaseModel):
    date: str
    startTime: str
    endTime: str
    branchId: str
    roomId: Optional[str] = None
    teacherId: Optional[str] = None
    excludeId: Optional[str] = None
    excludeType: Optional[str] = None


@router.post("/check")
async def check_availability(payload: AvailabilityRequest, user: AuthenticatedUser = Depends(get_current_user)):
    verify_branch_access(user, payload.branchId)
    return get_availability_service().check_availability(
        payload.date, payload.startTime, payload.endTime, payload.branchId,
        room_id=payload.roomId,
        teacher_id=payload.teacherId,
        exclude_id=payload.excludeId,
        exclude_type=payload.excludeType,
    )


@router.get("/day")
async def day_conflicts(
    date: str = Query(..., description="YYYY-MM-DD"),
    branch_id: str = Query(...),
    user: AuthenticatedUser = Depends(get_current_user)
):
    verify_branch_access(user, branch_id)
    return get_availability_service().get_day_conflicts(date, branch_id)
