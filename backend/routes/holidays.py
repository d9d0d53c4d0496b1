"""Holiday endpoints, including automatic class rescheduling."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import invalidate_dashboard, require_found, service_errors
from services.holidays import get_holiday_service
from services.reschedule import get_reschedule_service

router = APIRouter(prefix="/api/holidays", tags=["holidays"])


class HolidayPayload(BaseModel):
    name: Optional[str] = None
    date: Optional[str] = None
    type: Optional[str] = None
    branches: Optional[List[str]] = None
    isSchoolClosed: Optional[bool] = None
    description: Optional[str] = None


@router.get("")
async def list_holidays(
    year: Optional[int] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_holiday_service()
    return service.get_holidays(year) if year else service.get_all_holidays()


@router.get("/calendar")
async def holiday_calendar(
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    branch_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_holiday_service().get_holidays_for_calendar(year, month, branch_id)


@router.get("/{holiday_id}")
async def get_holiday(holiday_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_holiday_service().get_holiday(holiday_id), f"Holiday not found: {holiday_id}")


@router.get("/{holiday_id}/affected-classes")
async def affected_classes(holiday_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    """Preview which class sessions a holiday would move."""
    holiday = require_found(get_holiday_service().get_holiday(holiday_id), f"Holiday not found: {holiday_id}")
    return [
        {
            "classId": class_data["id"],
            "className": class_data.get("name", ""),
            "branchId": class_data.get("branchId"),
            "sessions": [
                {"id": s["id"], "sessionNumber": s.get("sessionNumber"), "sessionDate": s.get("sessionDate")}
                for s in schedules
            ],
        }
        for class_data, schedules in get_reschedule_service().get_affected_classes(holiday)
    ]


@router.post("", status_code=201)
async def create_holiday(
    payload: HolidayPayload,
    reschedule: bool = Query(True, description="Move sessions that fall on a closed day"),
    user: AuthenticatedUser = Depends(get_current_admin)
):
    with service_errors():
        holiday = get_holiday_service().add_holiday(payload.model_dump(exclude_none=True))
    rescheduled = 0
    if reschedule and holiday.get("isSchoolClosed"):
        rescheduled = get_reschedule_service().reschedule_classes_for_holiday(holiday, user.uid)
        invalidate_dashboard()
    return {**holiday, "rescheduledSessions": rescheduled}


@router.put("/{holiday_id}")
async def update_holiday(holiday_id: str, payload: HolidayPayload,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_holiday_service().update_holiday(holiday_id, payload.model_dump(exclude_none=True))


@router.post("/{holiday_id}/reschedule")
async def reschedule_for_holiday(holiday_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    holiday = require_found(get_holiday_service().get_holiday(holiday_id), f"Holiday not found: {holiday_id}")
    count = get_reschedule_service().reschedule_classes_for_holiday(holiday, user.uid)
    invalidate_dashboard()
    return {"rescheduledSessions": count}


@router.delete("/year/{year}")
async def delete_year(year: int, user: AuthenticatedUser = Depends(get_current_admin)):
    return {"deleted": get_holiday_service().delete_all_holidays(year)}


@router.delete("/{holiday_id}")
async def delete_holiday(
    holiday_id: str,
    revert: bool = Query(True, description="Restore sessions moved for this holiday"),
    user: AuthenticatedUser = Depends(get_current_admin)
):
    holiday = require_found(get_holiday_service().delete_holiday(holiday_id), f"Holiday not found: {holiday_id}")
    restored = 0
    if revert:
        restored = get_reschedule_service().revert_reschedule_for_deleted_holiday(holiday)
        invalidate_dashboard()
    return {"success": True, "restoredSessions": restored}
