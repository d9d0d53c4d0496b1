"""Class, schedule and attendance endpoints."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user, verify_branch_access
from routes.common import invalidate_dashboard, require_found, scoped_branch, service_errors
from services.classes import get_class_service
from services.enrollments import get_enrollment_service
from services.reschedule import get_reschedule_service

router = APIRouter(prefix="/api/classes", tags=["classes"])


class ClassPayload(BaseModel):
    subjectId: Optional[str] = None
    teacherId: Optional[str] = None
    branchId: Optional[str] = None
    roomId: Optional[str] = None
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    totalSessions: Optional[int] = None
    daysOfWeek: Optional[List[int]] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    maxStudents: Optional[int] = None
    minStudents: Optional[int] = None
    pricing: Optional[Dict[str, float]] = None
    status: Optional[str] = None


class StatusRequest(BaseModel):
    status: str


class ScheduleUpdate(BaseModel):
    sessionDate: Optional[str] = None
    topic: Optional[str] = None
    status: Optional[str] = None
    note: Optional[str] = None
    actualTeacherId: Optional[str] = None
    attendance: Optional[List[dict]] = None


class AttendanceEntry(BaseModel):
    studentId: str
    status: str
    note: Optional[str] = ""


class AttendanceRequest(BaseModel):
    attendance: List[AttendanceEntry]
    actualTeacherId: Optional[str] = None
    note: Optional[str] = None


class RescheduleRequest(BaseModel):
    newDate: str
    reason: Optional[str] = ""


class RoomCheckRequest(BaseModel):
    branchId: str
    roomId: str
    daysOfWeek: List[int]
    startTime: str
    endTime: str
    startDate: str
    endDate: str
    excludeClassId: Optional[str] = None


def _load_class(class_id: str, user: AuthenticatedUser) -> dict:
    class_data = require_found(get_class_service().get_class(class_id), f"Class not found: {class_id}")
    verify_branch_access(user, class_data.get("branchId"))
    return class_data


@router.get("")
async def list_classes(
    branch_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    teacher_id: Optional[str] = Query(None),
    subject_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_class_service().get_classes(
        branch_id=scoped_branch(user, branch_id),
        status=status,
        teacher_id=teacher_id,
        subject_id=subject_id,
    )


@router.post("/check-room")
async def check_room(payload: RoomCheckRequest, user: AuthenticatedUser = Depends(get_current_user)):
    verify_branch_access(user, payload.branchId)
    with service_errors():
        return get_class_service().check_room_availability(
            payload.branchId, payload.roomId, payload.daysOfWeek, payload.startTime, payload.endTime,
            payload.startDate, payload.endDate, exclude_class_id=payload.excludeClassId
        )


@router.get("/{class_id}")
async def get_class(class_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return _load_class(class_id, user)


@router.post("", status_code=201)
async def create_class(payload: ClassPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    verify_branch_access(user, payload.branchId)
    with service_errors():
        created = get_class_service().create_class(payload.model_dump(exclude_none=True), created_by=user.uid)
    invalidate_dashboard()
    return created


@router.put("/{class_id}")
async def update_class(class_id: str, payload: ClassPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    _load_class(class_id, user)
    with service_errors():
        updated = get_class_service().update_class(class_id, payload.model_dump(exclude_none=True))
    invalidate_dashboard()
    return updated


@router.patch("/{class_id}/status")
async def update_class_status(class_id: str, payload: StatusRequest,
                              user: AuthenticatedUser = Depends(get_current_admin)):
    _load_class(class_id, user)
    with service_errors():
        updated = get_class_service().update_class_status(class_id, payload.status)
        if payload.status == "completed":
            get_enrollment_service().complete_class_enrollments(class_id)
    invalidate_dashboard()
    return updated


@router.delete("/{class_id}")
async def delete_class(class_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    _load_class(class_id, user)
    with service_errors():
        get_class_service().delete_class(class_id)
    invalidate_dashboard()
    return {"success": True}


@router.get("/{class_id}/stats")
async def class_stats(class_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    _load_class(class_id, user)
    return get_class_service().get_class_statistics(class_id)


# Schedules

@router.get("/{class_id}/schedules")
async def list_schedules(
    class_id: str,
    upcoming: bool = Query(False, description="Only sessions from today onwards"),
    user: AuthenticatedUser = Depends(get_current_user)
):
    _load_class(class_id, user)
    service = get_class_service()
    return service.get_upcoming_sessions(class_id) if upcoming else service.get_class_schedules(class_id)


@router.get("/{class_id}/reschedule-history")
async def reschedule_history(class_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    _load_class(class_id, user)
    return get_reschedule_service().get_reschedule_history(class_id)


@router.get("/{class_id}/schedules/{schedule_id}")
async def get_schedule(class_id: str, schedule_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    _load_class(class_id, user)
    return require_found(
        get_class_service().get_class_schedule(class_id, schedule_id),
        f"Schedule not found: {schedule_id}"
    )


@router.put("/{class_id}/schedules/{schedule_id}")
async def update_schedule(class_id: str, schedule_id: str, payload: ScheduleUpdate,
                          user: AuthenticatedUser = Depends(get_current_user)):
    _load_class(class_id, user)
    with service_errors():
        return get_class_service().update_class_schedule(class_id, schedule_id, payload.model_dump(exclude_none=True))


@router.post("/{class_id}/schedules/{schedule_id}/attendance")
async def record_attendance(class_id: str, schedule_id: str, payload: AttendanceRequest,
                            user: AuthenticatedUser = Depends(get_current_user)):
    """Teachers record attendance; absences may auto-create makeup requests."""
    _load_class(class_id, user)
    if not payload.attendance:
        raise HTTPException(status_code=400, detail="Attendance list is empty")
    with service_errors():
        result = get_class_service().record_attendance(
            class_id, schedule_id,
            [entry.model_dump() for entry in payload.attendance],
            checked_by=user.uid,
            actual_teacher_id=payload.actualTeacherId,
            note=payload.note,
        )
    invalidate_dashboard()
    return result


@router.post("/{class_id}/schedules/{schedule_id}/reschedule")
async def reschedule_session(class_id: str, schedule_id: str, payload: RescheduleRequest,
                             user: AuthenticatedUser = Depends(get_current_admin)):
    _load_class(class_id, user)
    with service_errors():
        return get_class_service().reschedule_session(
            class_id, schedule_id, payload.newDate, reason=payload.reason or "", rescheduled_by=user.uid
        )
