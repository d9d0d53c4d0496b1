"""Enrollment and payment endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user, verify_branch_access
from routes.common import invalidate_dashboard, require_found, scoped_branch, service_errors
from services.enrollments import get_enrollment_service
from services.notifications import get_notification_service

router = APIRouter(prefix="/api/enrollments", tags=["enrollments"])


class EnrollmentPayload(BaseModel):
    studentId: Optional[str] = None
    classId: Optional[str] = None
    parentId: Optional[str] = None
    branchId: Optional[str] = None
    pricing: Optional[dict] = None
    payment: Optional[dict] = None
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = ""


class TransferRequest(BaseModel):
    newClassId: str
    reason: Optional[str] = ""


class PaymentRequest(BaseModel):
    amount: float
    method: str = "cash"
    receiptNumber: Optional[str] = None
    paidDate: Optional[str] = None


class PaymentReminderRequest(BaseModel):
    dueDate: str
    paymentInfo: Optional[str] = ""


def _load_enrollment(enrollment_id: str, user: AuthenticatedUser) -> dict:
    enrollment = require_found(
        get_enrollment_service().get_enrollment(enrollment_id),
        f"Enrollment not found: {enrollment_id}"
    )
    verify_branch_access(user, enrollment.get("branchId"))
    return enrollment


@router.get("")
async def list_enrollments(
    branch_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    class_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    parent_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_enrollment_service()
    if class_id:
        return service.get_enrollments_by_class(class_id, status=status)
    if student_id:
        return service.get_enrollments_by_student(student_id)
    if parent_id:
        return service.get_enrollments_by_parent(parent_id)
    return service.get_enrollments(branch_id=scoped_branch(user, branch_id), status=status)


@router.get("/stats")
async def enrollment_stats(branch_id: Optional[str] = Query(None),
                           user: AuthenticatedUser = Depends(get_current_user)):
    return get_enrollment_service().get_enrollment_stats(scoped_branch(user, branch_id))


@router.get("/seats/{class_id}")
async def available_seats(class_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    with service_errors():
        return get_enrollment_service().check_available_seats(class_id)


@router.get("/{enrollment_id}")
async def get_enrollment(enrollment_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return _load_enrollment(enrollment_id, user)


@router.post("", status_code=201)
async def create_enrollment(payload: EnrollmentPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    if payload.branchId:
        verify_branch_access(user, payload.branchId)
    with service_errors():
        created = get_enrollment_service().create_enrollment(payload.model_dump(exclude_none=True))
    invalidate_dashboard()
    return created


@router.put("/{enrollment_id}")
async def update_enrollment(enrollment_id: str, payload: EnrollmentPayload,
                            user: AuthenticatedUser = Depends(get_current_admin)):
    _load_enrollment(enrollment_id, user)
    with service_errors():
        return get_enrollment_service().update_enrollment(enrollment_id, payload.model_dump(exclude_none=True))


@router.post("/{enrollment_id}/payment")
async def record_payment(enrollment_id: str, payload: PaymentRequest,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    _load_enrollment(enrollment_id, user)
    with service_errors():
        return get_enrollment_service().record_payment(
            enrollment_id, payload.amount, method=payload.method,
            receipt_number=payload.receiptNumber, paid_date=payload.paidDate
        )


@router.post("/{enrollment_id}/payment-reminder")
async def send_payment_reminder(enrollment_id: str, payload: PaymentReminderRequest,
                                user: AuthenticatedUser = Depends(get_current_admin)):
    _load_enrollment(enrollment_id, user)
    sent = await get_notification_service().send_payment_reminder(
        enrollment_id, payload.dueDate, payload.paymentInfo or ""
    )
    return {"sent": sent}


@router.post("/{enrollment_id}/cancel")
async def cancel_enrollment(enrollment_id: str, payload: CancelRequest,
                            user: AuthenticatedUser = Depends(get_current_admin)):
    _load_enrollment(enrollment_id, user)
    with service_errors():
        result = get_enrollment_service().cancel_enrollment(enrollment_id, reason=payload.reason or "")
    invalidate_dashboard()
    return result


@router.post("/{enrollment_id}/transfer")
async def transfer_enrollment(enrollment_id: str, payload: TransferRequest,
                              user: AuthenticatedUser = Depends(get_current_admin)):
    _load_enrollment(enrollment_id, user)
    with service_errors():
        result = get_enrollment_service().transfer_enrollment(
            enrollment_id, payload.newClassId, reason=payload.reason or ""
        )
    invalidate_dashboard()
    return result
