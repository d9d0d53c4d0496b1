"""Dashboard stats and the combined calendar feed."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.auth import AuthenticatedUser, get_current_user
from routes.common import scoped_branch
from services.dashboard import get_dashboard_service

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
async def dashboard_stats(branch_id: Optional[str] = Query(None), user: AuthenticatedUser = Depends(get_current_user)):
    return get_dashboard_service().get_dashboard_stats(scoped_branch(user, branch_id))


@router.get("/calendar")
async def calendar_events(
    start: str = Query(..., description="YYYY-MM-DD"),
    end: str = Query(..., description="YYYY-MM-DD"),
    branch_id: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user)
):
    return get_dashboard_service().get_calendar_events(start, end, scoped_branch(user, branch_id))
