"""System settings endpoints (general, makeup, LINE)."""

from fastapi import APIRouter, Depends, Request

from core.auth import AuthenticatedUser, get_current_user, get_super_admin
from core.config import APP_URL
from routes.common import service_errors
from services.settings import generate_webhook_url, get_settings_service

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/general")
async def get_general_settings(user: AuthenticatedUser = Depends(get_current_user)):
    return get_settings_service().get_general_settings()


@router.put("/general")
async def update_general_settings(data: dict, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_settings_service().update_general_settings(data, user_id=user.uid)


@router.get("/makeup")
async def get_makeup_settings(user: AuthenticatedUser = Depends(get_current_user)):
    return get_settings_service().get_makeup_settings()


@router.put("/makeup")
async def update_makeup_settings(data: dict, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_settings_service().update_makeup_settings(data, user_id=user.uid)


@router.get("/line")
async def get_line_settings(user: AuthenticatedUser = Depends(get_super_admin)):
    """LINE settings with channel secrets masked."""
    settings = get_settings_service().get_masked_line_settings()
    settings["webhookUrl"] = generate_webhook_url(APP_URL)
    return settings


@router.put("/line")
async def update_line_settings(data: dict, user: AuthenticatedUser = Depends(get_super_admin)):
    with service_errors():
        return get_settings_service().update_line_settings(data, user_id=user.uid)


@router.get("/line/webhook-url")
async def webhook_url(request: Request, user: AuthenticatedUser = Depends(get_super_admin)):
    base_url = APP_URL or str(request.base_url)
    return {"url": generate_webhook_url(base_url)}
