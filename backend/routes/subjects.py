"""Subject catalog endpoints."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user
from routes.common import require_found, service_errors
from services.subjects import get_subject_service

router = APIRouter(prefix="/api/subjects", tags=["subjects"])


class SubjectPayload(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    ageRange: Optional[Dict[str, int]] = None
    color: Optional[str] = None
    prerequisites: Optional[List[str]] = None
    isActive: Optional[bool] = None


@router.get("")
async def list_subjects(
    category: Optional[str] = Query(None, description="Filter by category"),
    active_only: bool = Query(False),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_subject_service()
    if category:
        return service.get_subjects_by_category(category)
    return service.get_active_subjects() if active_only else service.get_subjects()


@router.get("/stats")
async def subject_stats(user: AuthenticatedUser = Depends(get_current_user)):
    return get_subject_service().get_subject_count_by_category()


@router.get("/{subject_id}")
async def get_subject(subject_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    return require_found(get_subject_service().get_subject(subject_id), f"Subject not found: {subject_id}")


@router.post("", status_code=201)
async def create_subject(payload: SubjectPayload, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_subject_service().create_subject(payload.model_dump(exclude_none=True))


@router.put("/{subject_id}")
async def update_subject(subject_id: str, payload: SubjectPayload,
                         user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        return get_subject_service().update_subject(subject_id, payload.model_dump(exclude_none=True))


@router.delete("/{subject_id}")
async def delete_subject(subject_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    with service_errors():
        deleted = get_subject_service().delete_subject(subject_id)
    require_found(deleted or None, f"Subject not found: {subject_id}")
    return {"success": True}
