"""
Parent-facing LIFF endpoints.

Callers are identified by their LINE ID token (X-Line-Id-Token). The
trial booking and open events listings are public.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import LineUser, get_line_user
from routes.common import invalidate_dashboard, service_errors
from services.branches import get_branch_service
from services.liff import get_liff_service
from services.subjects import get_subject_service

router = APIRouter(prefix="/api/liff", tags=["liff"])


class LinkRequest(BaseModel):
    token: str
    phone: str


class LeaveRequest(BaseModel):
    studentId: str
    classId: str
    scheduleId: str
    reason: Optional[str] = ""
    type: str = "leave"


class CancelLeaveRequest(BaseModel):
    makeupId: str
    studentId: str
    classId: str
    scheduleId: str


class TrialStudent(BaseModel):
    name: str
    schoolName: Optional[str] = None
    gradeLevel: Optional[str] = None
    birthdate: Optional[str] = None
    subjectInterests: List[str] = []


class PublicTrialBooking(BaseModel):
    parentName: str
    parentPhone: str
    parentEmail: Optional[str] = None
    branchId: str
    students: List[TrialStudent]
    contactNote: Optional[str] = ""


class EventRegistrationRequest(BaseModel):
    eventId: str
    scheduleId: str
    branchId: str
    parentName: Optional[str] = None
    parentPhone: Optional[str] = None
    parents: List[dict] = []
    students: List[dict] = []
    specialRequest: Optional[str] = None


# Account

@router.get("/profile")
async def profile(line_user: LineUser = Depends(get_line_user)):
    with service_errors():
        return get_liff_service().get_parent_profile(line_user.user_id)


@router.post("/link")
async def link_account(payload: LinkRequest, line_user: LineUser = Depends(get_line_user)):
    with service_errors():
        parent = get_liff_service().link_account(
            payload.token, payload.phone, line_user.user_id,
            display_name=line_user.display_name, picture_url=line_user.picture_url
        )
    return {"success": True, "parent": parent}


# Schedule and leave

@router.get("/schedule")
async def schedule(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    line_user: LineUser = Depends(get_line_user)
):
    with service_errors():
        return get_liff_service().get_parent_schedule(line_user.user_id, start, end)


@router.post("/leave", status_code=201)
async def request_leave(payload: LeaveRequest, line_user: LineUser = Depends(get_line_user)):
    with service_errors():
        makeup = get_liff_service().submit_leave_request(
            line_user.user_id, payload.studentId, payload.classId, payload.scheduleId,
            payload.reason or "", leave_type=payload.type
        )
    invalidate_dashboard()
    return makeup


@router.post("/leave/cancel")
async def cancel_leave(payload: CancelLeaveRequest, line_user: LineUser = Depends(get_line_user)):
    with service_errors():
        get_liff_service().cancel_leave_request(
            line_user.user_id, payload.makeupId, payload.studentId, payload.classId, payload.scheduleId
        )
    invalidate_dashboard()
    return {"success": True}


# Public trial booking

@router.get("/trial-options")
async def trial_options():
    """Branches and subjects shown on the public booking form."""
    return {
        "branches": [
            {"id": b["id"], "name": b.get("name", "")}
            for b in get_branch_service().get_active_branches()
        ],
        "subjects": [
            {"id": s["id"], "name": s.get("name", ""), "category": s.get("category"), "ageRange": s.get("ageRange")}
            for s in get_subject_service().get_active_subjects()
        ],
    }


@router.post("/trial-booking", status_code=201)
async def trial_booking(payload: PublicTrialBooking):
    with service_errors():
        booking = get_liff_service().create_public_trial_booking(payload.model_dump(exclude_none=True))
    invalidate_dashboard()
    return {"success": True, "bookingId": booking["id"]}


# Events

@router.get("/events")
async def open_events(branch_id: Optional[str] = Query(None)):
    return get_liff_service().get_open_events(branch_id)


@router.post("/events/register", status_code=201)
async def register_for_event(payload: EventRegistrationRequest, line_user: LineUser = Depends(get_line_user)):
    data = payload.model_dump(exclude_none=True)
    if line_user.display_name:
        data["lineDisplayName"] = line_user.display_name
    with service_errors():
        return get_liff_service().register_for_event(line_user.user_id, data)


@router.get("/events/my-registrations")
async def my_registrations(line_user: LineUser = Depends(get_line_user)):
    return get_liff_service().get_my_event_registrations(line_user.user_id)


@router.post("/events/registrations/{registration_id}/cancel")
async def cancel_my_registration(registration_id: str, line_user: LineUser = Depends(get_line_user)):
    with service_errors():
        return get_liff_service().cancel_my_event_registration(line_user.user_id, registration_id)
