"""Branch and room endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_current_admin, get_current_user, get_super_admin, verify_branch_access
from routes.common import require_found, service_errors
from services.branches import get_branch_service

router = APIRouter(prefix="/api/branches", tags=["branches"])


class BranchPayload(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    openTime: Optional[str] = None
    closeTime: Optional[str] = None
    openDays: Optional[List[int]] = None
    isActive: Optional[bool] = None
    managerName: Optional[str] = None
    managerPhone: Optional[str] = None
    lineGroupUrl: Optional[str] = None


class RoomPayload(BaseModel):
    name: Optional[str] = None
    capacity: Optional[int] = None
    floor: Optional[str] = None
    hasProjector: Optional[bool] = None
    hasWhiteboard: Optional[bool] = None
    isActive: Optional[bool] = None


@router.get("")
async def list_branches(
    active_only: bool = Query(False, description="Only active branches"),
    user: AuthenticatedUser = Depends(get_current_user)
):
    service = get_branch_service()
    branches = service.get_active_branches() if active_only else service.get_branches()
    return [b for b in branches if user.can_access_branch(b["id"])]


@router.get("/{branch_id}")
async def get_branch(branch_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    verify_branch_access(user, branch_id)
    return require_found(get_branch_service().get_branch(branch_id), f"Branch not found: {branch_id}")


@router.post("", status_code=201)
async def create_branch(payload: BranchPayload, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_branch_service().create_branch(payload.model_dump(exclude_none=True))


@router.put("/{branch_id}")
async def update_branch(branch_id: str, payload: BranchPayload,
                        user: AuthenticatedUser = Depends(get_current_admin)):
    verify_branch_access(user, branch_id)
    with service_errors():
        return get_branch_service().update_branch(branch_id, payload.model_dump(exclude_none=True))


@router.post("/{branch_id}/toggle-status")
async def toggle_branch_status(branch_id: str, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_branch_service().toggle_branch_status(branch_id)


# Rooms

@router.get("/{branch_id}/rooms")
async def list_rooms(
    branch_id: str,
    active_only: bool = Query(False),
    user: AuthenticatedUser = Depends(get_current_user)
):
    verify_branch_access(user, branch_id)
    return get_branch_service().get_rooms(branch_id, active_only=active_only)


@router.get("/{branch_id}/rooms/{room_id}")
async def get_room(branch_id: str, room_id: str, user: AuthenticatedUser = Depends(get_current_user)):
    verify_branch_access(user, branch_id)
    return require_found(get_branch_service().get_room(branch_id, room_id), f"Room not found: {room_id}")


@router.post("/{branch_id}/rooms", status_code=201)
async def create_room(branch_id: str, payload: RoomPayload,
                      user: AuthenticatedUser = Depends(get_current_admin)):
    verify_branch_access(user, branch_id)
    with service_errors():
        return get_branch_service().create_room(branch_id, payload.model_dump(exclude_none=True))


@router.put("/{branch_id}/rooms/{room_id}")
async def update_room(branch_id: str, room_id: str, payload: RoomPayload,
                      user: AuthenticatedUser = Depends(get_current_admin)):
    verify_branch_access(user, branch_id)
    with service_errors():
        return get_branch_service().update_room(branch_id, room_id, payload.model_dump(exclude_none=True))


@router.delete("/{branch_id}/rooms/{room_id}")
async def delete_room(branch_id: str, room_id: str, user: AuthenticatedUser = Depends(get_current_admin)):
    verify_branch_access(user, branch_id)
    with service_errors():
        deleted = get_branch_service().delete_room(branch_id, room_id)
    require_found(deleted or None, f"Room not found: {room_id}")
    return {"success": True}
