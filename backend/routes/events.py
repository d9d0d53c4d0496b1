"""Event, event schedule and registration endpoints for staff."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import require_found, scoped_branch, service_errors
from services.events import get_event_service

router = APIRouter(prefix="/api/events", tags=["events"])


class EventPayload(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    branchIds: Optional[List[str]] = None
    eventType: Optional[str] = None
    registrationStartDate: Optional[str] = None
    registrationEndDate: Optional[str] = None
    countingMethod: Optional[str] = None
    enableReminder: Optional[bool] = None
    reminderDaysBefore: Optional[int] = None
    status: Optional[str] = None
    isActive: Optional[bool] = None


class SchedulePayload(BaseModel):
    date: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    maxAttendees: Optional[int] = None
    status: Optional[str] = None


class RegistrationPayload(BaseModel):
    scheduleId: str
    branchId: str
    parentId: Optional[str] = None
    parentName: Optional[str] = ""
    parentPhone: Optional[str] = ""
    parents: List[dict] = []
    students: List[dict] = []
    specialRequest: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = ""


class AttendanceItem(BaseModel):
    registrationId: str
    attended: bool
    note: Optional[str] = ""


def _load_event(event_id: str) -> dict:
    return require_found(get_event_service().get_event(event_id), f"Event not found: {event_id}")


@router.get("")
async def list_events(branch_id: Optional[str] = Query(None), user: AuthenticatedUser = Depends(get_current_user)):
    return get_event_service().get_events(scoped_branch(user, branch_id))


@router.get("/{event_id}")
async def get_event(event_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    event = _load_event(event_id)
    return {**event, "schedules": get_event_service().get_event_schedules(event_id)}


@router.post("", status_code=201)
async def create_event(payload: EventPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_event_service().create_event(payload.model_dump(exclude_none=True), created_by=user.uid)


@router.put("/{event_id}")
async def update_event(event_id: str, payload: EventPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_event_service().update_event(event_id, payload.model_dump(exclude_none=True), updated_by=user.uid)


@router.delete("/{event_id}")
async def delete_event(event_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        deleted = get_event_service().delete_event(event_id)
    require_found(deleted or None, f"Event not found: {event_id}")
    return {"success": True}


@router.get("/{event_id}/stats")
async def event_stats(event_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_event_service().get_event_statistics(event_id)


# Schedules

@router.get("/{event_id}/schedules")
async def list_schedules(event_id: str, available_only: bool = Query(False),
                         user: AuthenticatedUser = Depends(get_current_user)):
    service = get_event_service()
    return service.get_available_schedules(event_id) if available_only else service.get_event_schedules(event_id)


@router.post("/{event_id}/schedules", status_code=201)
async def create_schedule(event_id: str, payload: SchedulePayload,
                          user: AuthenticatedUser = Depends(get_current_admin)):
    data = {**payload.model_dump(exclude_none=True), "eventId": event_id}
    with service_errors():
        return get_event_service().create_event_schedule(data)


@router.put("/{event_id}/schedules/{schedule_id}")
async def update_schedule(event_id: str, schedule_id: str, payload: SchedulePayload,
                          user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_event_service().update_event_schedule(schedule_id, payload.model_dump(exclude_none=True))


@router.delete("/{event_id}/schedules/{schedule_id}")
async def delete_schedule(event_id: str, schedule_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        deleted = get_event_service().delete_event_schedule(schedule_id)
    require_found(deleted or None, f"Event schedule not found: {schedule_id}")
    return {"success": True}


# Registrations

@router.get("/{event_id}/registrations")
async def list_registrations(
    event_id: str,
    status: Optional[str] = Query(None),
    schedule_id: Optional[str] = Query(None),
    branch_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_event_service().get_event_registrations(
        event_id, status=status, schedule_id=schedule_id, branch_id=scoped_branch(user, branch_id)
    )


@router.post("/{event_id}/registrations", status_code=201)
async def create_registration(event_id: str, payload: RegistrationPayload,
                              user: AuthenticatedUser = Depends(get_current_user)):
    """Staff registration on behalf of a parent (walk-in or phone)."""
    event = _load_event(event_id)
    data = {**payload.model_dump(exclude_none=True), "registeredFrom": "admin"}
    with service_errors():
        return get_event_service().create_event_registration(data, event)


@router.post("/registrations/{registration_id}/cancel")
async def cancel_registration(registration_id: str, payload: CancelRequest,
                              user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_event_service().cancel_event_registration(
            registration_id, payload.reason or "", cancelled_by=user.uid
        )


@router.post("/registrations/attendance")
async def record_attendance(items: List[AttendanceItem], user: AuthenticatedUser = Depends(get_current_user)):
    count = get_event_service().update_event_attendance([i.model_dump() for i in items], checked_by=user.uid)
    return {"updated": count}
