"""Makeup class endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import invalidate_dashboard, require_found, scoped_branch, service_errors
from services.makeup import get_makeup_service
from services.notifications import get_notification_service

router = APIRouter(prefix="/api/makeup", tags=["makeup"])


class MakeupRequest(BaseModel):
    type: str = "scheduled"
    studentId: str
    parentId: Optional[str] = None
    originalClassId: str
    originalScheduleId: str
    reason: str
    attendanceStatus: Optional[str] = None
    notes: Optional[str] = None
    bypassLimit: bool = False


class ScheduleRequest(BaseModel):
    date: str
    startTime: str
    endTime: str
    teacherId: str
    branchId: str
    roomId: str


class MakeupAttendanceRequest(BaseModel):
    status: str
    note: Optional[str] = ""


class CancelRequest(BaseModel):
    reason: Optional[str] = ""


@router.get("")
async def list_makeups(
    branch_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    class_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_makeup_service()
    if student_id:
        return service.get_makeup_classes_by_student(student_id)
    if class_id:
        return service.get_makeup_classes_by_class(class_id)
    return service.get_makeup_classes(branch_id=scoped_branch(user, branch_id), status=status)


@router.get("/upcoming")
async def upcoming_makeups(
    branch_id: Optional[str] = Query(None),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_makeup_service().get_upcoming_makeup_classes(scoped_branch(user, branch_id), start, end)


@router.get("/count")
async def makeup_count(student_id: str = Query(...), class_id: str = Query(...),
                       user: AuthenticatedUser = Depends(get_current_user)):
    return {"count": get_makeup_service().get_makeup_count(student_id, class_id)}


@router.get("/{makeup_id}")
async def get_makeup(makeup_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_makeup_service().get_makeup_class(makeup_id), f"Makeup not found: {makeup_id}")


@router.post("", status_code=201)
async def create_makeup(payload: MakeupRequest, user: AuthenticatedUser = Depends(get_current_user)):
    data = payload.model_dump(exclude_none=True, exclude={"bypassLimit"})
    data["requestedBy"] = user.uid
    with service_errors():
        created = get_makeup_service().create_makeup_request(data, bypass_limit=payload.bypassLimit)
    invalidate_dashboard()
    return created


@router.post("/{makeup_id}/schedule")
async def schedule_makeup(makeup_id: str, payload: ScheduleRequest,
                          user: AuthenticatedUser = Depends(get_current_admin)):
    """Assign a slot; parents are told over LINE when makeup settings allow it."""
    service = get_makeup_service()
    with service_errors():
        makeup = service.schedule_makeup_class(makeup_id, payload.model_dump(), confirmed_by=user.uid)

    notified = False
    if service.should_notify_parent():
        notified = await get_notification_service().send_makeup_notification(makeup_id, "scheduled")
    invalidate_dashboard()
    return {**makeup, "parentNotified": notified}


@router.post("/{makeup_id}/attendance")
async def record_makeup_attendance(makeup_id: str, payload: MakeupAttendanceRequest,
                                   user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_makeup_service().record_makeup_attendance(
            makeup_id, payload.status, checked_by=user.uid, note=payload.note or ""
        )


@router.post("/{makeup_id}/cancel")
async def cancel_makeup(makeup_id: str, payload: CancelRequest, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        result = get_makeup_service().cancel_makeup_class(makeup_id, payload.reason or "", cancelled_by=user.uid)
    invalidate_dashboard()
    return result


@router.delete("/{makeup_id}")
async def delete_makeup(makeup_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    deleted = get_makeup_service().delete_makeup_request(makeup_id, restore_attendance=True)
    require_found(deleted or None, f"Makeup not found: {makeup_id}")
    invalidate_dashboard()
    return {"success": True}
