"""Teacher and admin user endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user, get_super_admin
from routes.common import require_found, scoped_branch, service_errors
from services.teachers import get_teacher_service

router = APIRouter(tags=["teachers"])


class TeacherPayload(BaseModel):
    name: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    lineUserId: Optional[str] = None
    specialties: Optional[List[str]] = None
    availableBranches: Optional[List[str]] = None
    profileImage: Optional[str] = None
    hourlyRate: Optional[float] = None
    bankAccount: Optional[dict] = None
    isActive: Optional[bool] = None


class TeacherAccountRequest(TeacherPayload):
    email: str
    password: str
    name: str


class AdminUserRequest(BaseModel):
    email: str
    password: str
    displayName: str
    role: str
    branchIds: List[str] = []


class AdminUserUpdate(BaseModel):
    displayName: Optional[str] = None
    role: Optional[str] = None
    branchIds: Optional[List[str]] = None
    isActive: Optional[bool] = None


# Teachers

@router.get("/api/teachers")
async def list_teachers(
    branch_id: Optional[str] = Query(None),
    specialty: Optional[str] = Query(None, description="Subject id the teacher can teach"),
    active_only: bool = Query(False),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_teacher_service()
    if specialty:
        return service.get_teachers_by_specialty(specialty)
    branch = scoped_branch(user, branch_id)
    return service.get_active_teachers(branch) if active_only else service.get_teachers(branch)


@router.get("/api/teachers/{teacher_id}")
async def get_teacher(teacher_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_teacher_service().get_teacher(teacher_id), f"Teacher not found: {teacher_id}")


@router.get("/api/teachers/{teacher_id}/stats")
async def teacher_stats(teacher_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return get_teacher_service().get_teacher_stats(teacher_id)


@router.post("/api/teachers", status_code=201)
async def create_teacher(payload: TeacherAccountRequest, user: AuthenticatedUser = Depends(get_current_admin)):
    data = payload.model_dump(exclude_none=True, exclude={"email", "password"})
    with service_errors():
        return get_teacher_service().create_teacher_account(payload.email, payload.password, data, user.uid)


@router.put("/api/teachers/{teacher_id}")
async def update_teacher(teacher_id: str, payload: TeacherPayload,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_teacher_service().update_teacher(teacher_id, payload.model_dump(exclude_none=True))


@router.delete("/api/teachers/{teacher_id}")
async def delete_teacher(teacher_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_teacher_service().delete_teacher(teacher_id)


# Admin users

@router.get("/api/admin-users")
async def list_admin_users(user: AuthenticatedUser = Depends(get_super_admin)):
    return get_teacher_service().get_admin_users()


@router.get("/api/admin-users/me")
async def current_admin_user(user: AuthenticatedUser = Depends(get_current_user)):
    return {
        "uid": user.uid,
        "email": user.email,
        "role": user.role.value,
        "branchIds": user.branch_ids,
        "displayName": user.display_name,
    }


@router.get("/api/admin-users/{uid}")
async def get_admin_user(uid: str, user: AuthenticatedUser = Depends(get_super_admin)):
    return require_found(get_teacher_service().get_admin_user(uid), f"Admin user not found: {uid}")


@router.post("/api/admin-users", status_code=201)
async def create_admin_user(payload: AdminUserRequest, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_teacher_service().create_admin_user(
            payload.email, payload.password, payload.displayName, payload.role,
            branch_ids=payload.branchIds, created_by=user.uid
        )


@router.put("/api/admin-users/{uid}")
async def update_admin_user(uid: str, payload: AdminUserUpdate, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_teacher_service().update_admin_user(uid, payload.model_dump(exclude_none=True))


@router.post("/api/admin-users/{uid}/reset-password")
async def reset_password(uid: str, user: AuthenticatedUser = Depends(get_super_admin)):
    service = get_teacher_service()
    admin = require_found(service.get_admin_user(uid), f"Admin user not found: {uid}")
    return {"link": service.generate_password_reset_link(admin["email"])}
