"""LINE messaging, webhook receiver and connection test endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel

from api.client import LineMessagingClient
from core.auth import AuthenticatedUser, get_current_admin, get_super_admin
from routes.common import service_errors
from services.notifications import get_notification_service
from services.settings import get_settings_service
from services.webhook import get_webhook_log, handle_webhook

router = APIRouter(tags=["line"])


class TextMessageRequest(BaseModel):
    userId: str
    message: str


class FlexMessageRequest(BaseModel):
    userId: str
    altText: str
    contents: dict


class ConnectionTestRequest(BaseModel):
    accessToken: Optional[str] = None


def _delivery_result(result: dict) -> dict:
    if not result["success"]:
        status_code = 502 if result.get("status") else 400
        raise HTTPException(status_code=status_code, detail=result["error"])
    return result


@router.post("/api/line/send-message")
async def send_message(payload: TextMessageRequest, user: AuthenticatedUser = Depends(get_current_admin)):
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is empty")
    result = await get_notification_service().send_line_message(payload.userId, payload.message)
    return _delivery_result(result)


@router.post("/api/line/send-flex-message")
async def send_flex_message(payload: FlexMessageRequest, user: AuthenticatedUser = Depends(get_current_admin)):
    result = await get_notification_service().send_flex_message(payload.userId, payload.altText, payload.contents)
    return _delivery_result(result)


@router.post("/api/line/test")
async def test_connection(payload: ConnectionTestRequest, user: AuthenticatedUser = Depends(get_super_admin)):
    """Check an access token (or the stored one) by fetching the bot profile."""
    token = payload.accessToken or get_settings_service().get_line_settings().get("messagingChannelAccessToken")
    if not token:
        raise HTTPException(status_code=400, detail="LINE channel access token is not configured")
    with service_errors():
        async with LineMessagingClient(token) as client:
            bot = await client.get_bot_info()
    return {
        "success": True,
        "botInfo": {
            "displayName": bot.get("displayName"),
            "basicId": bot.get("basicId"),
            "pictureUrl": bot.get("pictureUrl"),
        },
    }


@router.get("/api/line/webhook-logs")
async def webhook_logs(user: AuthenticatedUser = Depends(get_super_admin)):
    return get_webhook_log().entries()


@router.delete("/api/line/webhook-logs")
async def clear_webhook_logs(user: AuthenticatedUser = Depends(get_super_admin)):
    get_webhook_log().clear()
    return {"success": True}


# Webhook receiver (called by LINE, no admin auth)

@router.post("/api/webhooks/line")
async def line_webhook(request: Request, x_line_signature: Optional[str] = Header(None)):
    body = await request.body()
    with service_errors():
        return await handle_webhook(body, x_line_signature)


@router.get("/api/webhooks/line")
async def line_webhook_check(challenge: Optional[str] = Query(None, alias="hub.challenge")):
    """Reachability check; echoes hub.challenge when present."""
    if challenge:
        return challenge
    return {"status": "ok"}
