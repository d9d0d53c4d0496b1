"""Trial class booking and session endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import invalidate_dashboard, require_found, scoped_branch, service_errors
from services.notifications import get_notification_service
from services.trials import get_trial_service

router = APIRouter(prefix="/api/trials", tags=["trials"])


class TrialStudent(BaseModel):
    name: str
    schoolName: Optional[str] = None
    gradeLevel: Optional[str] = None
    birthdate: Optional[str] = None
    subjectInterests: List[str] = []


class BookingPayload(BaseModel):
    source: Optional[str] = None
    parentName: Optional[str] = None
    parentPhone: Optional[str] = None
    parentEmail: Optional[str] = None
    parentLineId: Optional[str] = None
    branchId: Optional[str] = None
    students: Optional[List[TrialStudent]] = None
    contactNote: Optional[str] = None


class BookingStatusRequest(BaseModel):
    status: str
    note: Optional[str] = None


class SessionPayload(BaseModel):
    bookingId: Optional[str] = None
    studentName: Optional[str] = None
    subjectId: Optional[str] = None
    scheduledDate: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    teacherId: Optional[str] = None
    branchId: Optional[str] = None
    roomId: Optional[str] = None
    roomName: Optional[str] = None
    status: Optional[str] = None
    feedback: Optional[str] = None
    interestedLevel: Optional[str] = None
    teacherNote: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = ""


class ConvertRequest(BaseModel):
    sessionId: str
    classId: str
    pricing: dict
    studentInfo: Optional[dict] = None


class RoomCheckRequest(BaseModel):
    branchId: str
    roomId: str
    date: str
    startTime: str
    endTime: str
    excludeSessionId: Optional[str] = None


# Bookings

@router.get("/bookings")
async def list_bookings(
    branch_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_trial_service()
    if status:
        return service.get_trial_bookings_by_status(status)
    return service.get_trial_bookings(scoped_branch(user, branch_id))


@router.get("/bookings/stats")
async def booking_stats(branch_id: Optional[str] = Query(None), user: AuthenticatedUser = Depends(get_current_user)):
    return get_trial_service().get_trial_booking_stats(scoped_branch(user, branch_id))


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    service = get_trial_service()
    booking = require_found(service.get_trial_booking(booking_id), f"Trial booking not found: {booking_id}")
    return {**booking, "sessions": service.get_trial_sessions_by_booking(booking_id)}


@router.post("/bookings", status_code=201)
async def create_booking(payload: BookingPayload, user: AuthenticatedUser = Depends(get_current_user)):
    data = payload.model_dump(exclude_none=True)
    data.setdefault("source", "walkin")
    with service_errors():
        created = get_trial_service().create_trial_booking(data)
    invalidate_dashboard()
    return created


@router.put("/bookings/{booking_id}")
async def update_booking(booking_id: str, payload: BookingPayload,
                         user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_trial_service().update_trial_booking(booking_id, payload.model_dump(exclude_none=True))


@router.post("/bookings/{booking_id}/status")
async def update_booking_status(booking_id: str, payload: BookingStatusRequest,
                                user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_trial_service().update_booking_status(booking_id, payload.status, payload.note)


@router.delete("/bookings/{booking_id}")
async def delete_booking(booking_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    deleted = get_trial_service().delete_trial_booking(booking_id)
    require_found(deleted or None, f"Trial booking not found: {booking_id}")
    invalidate_dashboard()
    return {"success": True}


@router.post("/bookings/{booking_id}/convert")
async def convert_booking(booking_id: str, payload: ConvertRequest,
                          user: AuthenticatedUser = Depends(get_current_admin)):
    """Create parent, student and enrollment from an attended trial."""
    with service_errors():
        result = get_trial_service().convert_trial_to_enrollment(
            booking_id, payload.sessionId, payload.classId, payload.pricing, payload.studentInfo
        )
    invalidate_dashboard()
    return result


# Sessions

@router.get("/sessions")
async def list_sessions(
    branch_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_trial_service().get_trial_sessions(scoped_branch(user, branch_id), status)


@router.get("/sessions/upcoming")
async def upcoming_sessions(
    branch_id: Optional[str] = Query(None),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_trial_service().get_upcoming_trial_sessions(start, end, scoped_branch(user, branch_id))


@router.post("/sessions/check-room")
async def check_room(payload: RoomCheckRequest, user: AuthenticatedUser = Depends(get_current_user)):
    return get_trial_service().check_trial_room_availability(
        payload.branchId, payload.roomId, payload.date, payload.startTime, payload.endTime,
        exclude_session_id=payload.excludeSessionId
    )


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_trial_service().get_trial_session(session_id), f"Trial session not found: {session_id}")


@router.post("/sessions", status_code=201)
async def create_session(
    payload: SessionPayload,
    notify: bool = Query(False, description="Send a LINE confirmation to the parent"),
    user: AuthenticatedUser = Depends(get_current_user)
):
    with service_errors():
        session = get_trial_service().create_trial_session(payload.model_dump(exclude_none=True))
    notified = False
    if notify:
        notified = await get_notification_service().send_trial_confirmation(session["id"])
    invalidate_dashboard()
    return {**session, "parentNotified": notified}


@router.put("/sessions/{session_id}")
async def update_session(session_id: str, payload: SessionPayload,
                         user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_trial_service().update_trial_session(session_id, payload.model_dump(exclude_none=True))


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(session_id: str, payload: CancelRequest, user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        result = get_trial_service().cancel_trial_session(session_id, payload.reason or "")
    invalidate_dashboard()
    return result


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    deleted = get_trial_service().delete_trial_session(session_id)
    require_found(deleted or None, f"Trial session not found: {session_id}")
    return {"success": True}
