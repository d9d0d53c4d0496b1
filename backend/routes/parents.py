"""Parent, student and LINE link-token endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import require_found, scoped_branch, service_errors
from services.parents import get_parent_service
from services.settings import get_settings_service

router = APIRouter(tags=["parents"])


class ParentPayload(BaseModel):
    displayName: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    lineUserId: Optional[str] = None
    pictureUrl: Optional[str] = None
    emergencyPhone: Optional[str] = None
    address: Optional[dict] = None
    preferredBranchId: Optional[str] = None


class StudentPayload(BaseModel):
    name: Optional[str] = None
    nickname: Optional[str] = None
    birthdate: Optional[str] = None
    gender: Optional[str] = None
    schoolName: Optional[str] = None
    gradeLevel: Optional[str] = None
    profileImage: Optional[str] = None
    allergies: Optional[str] = None
    specialNeeds: Optional[str] = None
    emergencyContact: Optional[str] = None
    emergencyPhone: Optional[str] = None
    isActive: Optional[bool] = None


# Parents

@router.get("/api/parents")
async def list_parents(
    search: Optional[str] = Query(None, description="Name, phone or email fragment"),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_parent_service()
    return service.search_parents(search) if search else service.get_parents()


@router.get("/api/parents/{parent_id}")
async def get_parent(parent_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_parent_service().get_parent(parent_id), f"Parent not found: {parent_id}")


@router.post("/api/parents", status_code=201)
async def create_parent(payload: ParentPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_parent_service().create_parent(payload.model_dump(exclude_none=True))


@router.put("/api/parents/{parent_id}")
async def update_parent(parent_id: str, payload: ParentPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_parent_service().update_parent(parent_id, payload.model_dump(exclude_none=True))


@router.delete("/api/parents/{parent_id}")
async def delete_parent(parent_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        deleted = get_parent_service().delete_parent(parent_id)
    require_found(deleted or None, f"Parent not found: {parent_id}")
    return {"success": True}


@router.post("/api/parents/{parent_id}/link-token", status_code=201)
async def create_link_token(parent_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    """Issue a one-time LINE link token and the LIFF URL the parent opens."""
    with service_errors():
        token = get_parent_service().create_link_token(parent_id)
    liff_id = get_settings_service().get_line_settings().get("liffId")
    token["linkUrl"] = f"https://liff.line.me/{liff_id}?token={token['token']}" if liff_id else None
    return token


# Students

@router.get("/api/students")
async def list_students(branch_id: Optional[str] = Query(None),
                        user: AuthenticatedUser = Depends(get_current_user)):
    return get_parent_service().get_all_students_with_parents(scoped_branch(user, branch_id))


@router.get("/api/parents/{parent_id}/students")
async def list_parent_students(parent_id: str, active_only: bool = Query(False),
                               user: AuthenticatedUser = Depends(get_current_user)):
    return get_parent_service().get_students_by_parent(parent_id, active_only=active_only)


@router.get("/api/parents/{parent_id}/students/{student_id}")
async def get_student(parent_id: str, student_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(
        get_parent_service().get_student_with_parent(student_id, parent_id),
        f"Student not found: {student_id}"
    )


@router.post("/api/parents/{parent_id}/students", status_code=201)
async def create_student(parent_id: str, payload: StudentPayload,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_parent_service().create_student(parent_id, payload.model_dump(exclude_none=True))


@router.put("/api/parents/{parent_id}/students/{student_id}")
async def update_student(parent_id: str, student_id: str, payload: StudentPayload,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_parent_service().update_student(parent_id, student_id, payload.model_dump(exclude_none=True))


@router.delete("/api/parents/{parent_id}/students/{student_id}")
async def delete_student(parent_id: str, student_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        deleted = get_parent_service().delete_student(parent_id, student_id)
    require_found(deleted or None, f"Student not found: {student_id}")
    return {"success": True}
