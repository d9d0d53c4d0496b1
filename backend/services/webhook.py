"""
LINE Webhook Receiver

Verifies the X-Line-Signature header, keeps a short in-memory log of the
latest events for the admin settings page, and answers follow and
message events with the configured auto-replies.
"""

import base64
import hashlib
import hmac
import json
import uuid
from collections import deque
from typing import List, Dict, Any, Optional

from api.client import LineApiError, LineMessagingClient, text_message
from core.config import is_development
from core.calendar import utc_timestamp
from core.errors import NotConfiguredError, SignatureError, ValidationError
from core.parsers import render_template
from services.parents import get_parent_service
from services.settings import get_settings_service, is_within_business_hours

MAX_LOG_ENTRIES = 20


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Base64 HMAC-SHA256 of the raw body, compared in constant time."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


class WebhookLog:
    """Ring buffer of recent webhook events, newest first."""

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._entries = deque(maxlen=max_entries)

    def add(self, event_type: str, user_id: Optional[str] = None, message: Optional[str] = None) -> Dict[str, Any]:
        entry = {
            "id": uuid.uuid4().hex,
            "timestamp": utc_timestamp(),
            "type": event_type,
            "userId": user_id,
            "message": message,
        }
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)


_webhook_log = WebhookLog()


def get_webhook_log() -> WebhookLog:
    return _webhook_log


def _describe(event: Dict[str, Any]) -> Optional[str]:
    event_type = event.get("type")
    if event_type == "message":
        message = event.get("message") or {}
        if message.get("type") == "text":
            return message.get("text")
        return f"[{message.get('type', 'unknown')}]"
    if event_type == "postback":
        return (event.get("postback") or {}).get("data")
    return None


class WebhookHandler:
    """Dispatches LINE webhook events."""

    def __init__(self, log: Optional[WebhookLog] = None):
        self.log = log or get_webhook_log()

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and process one webhook delivery.

        Raises:
            NotConfiguredError: No channel secret configured
            SignatureError: Signature mismatch outside development
            ValidationError: Body is not valid JSON
        """
        settings = get_settings_service().get_line_settings()
        secret = settings.get("messagingChannelSecret")
        if not secret:
            raise NotConfiguredError("LINE channel secret is not configured")

        if not verify_signature(body, signature, secret):
            if not is_development():
                raise SignatureError("Invalid signature")
            print("[Webhook] Signature mismatch ignored in development")

        try:
            payload = json.loads(body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("Webhook body is not valid JSON", {"body": "invalid"})

        if not isinstance(payload, dict) or not isinstance(payload.get("events") or [], list):
            raise ValidationError("Webhook body must be an object with an events list", {"body": "invalid"})

        events = [e for e in (payload.get("events") or []) if isinstance(e, dict)]
        for event in events:
            source = event.get("source") or {}
            self.log.add(event.get("type", "unknown"), source.get("userId"), _describe(event))

        if events and not settings.get("webhookVerified"):
            get_settings_service().mark_webhook_verified()

        for event in events:
            await self._dispatch(event, settings)

        return {"success": True, "processed": len(events)}

    async def _dispatch(self, event: Dict[str, Any], settings: Dict[str, Any]):
        event_type = event.get("type")
        user_id = (event.get("source") or {}).get("userId")

        if event_type == "message":
            await self._handle_message(event, settings)
        elif event_type == "follow":
            await self._handle_follow(event, user_id, settings)
        elif event_type == "unfollow":
            self._handle_unfollow(user_id)
        elif event_type == "postback":
            print(f"[Webhook] Postback from {user_id}: {(event.get('postback') or {}).get('data')}")
        else:
            print(f"[Webhook] Unhandled event type: {event_type}")

    async def _handle_message(self, event: Dict[str, Any], settings: Dict[str, Any]):
        if not settings.get("enableAutoReply"):
            return
        if is_within_business_hours(settings.get("businessHours") or {}):
            return
        reply = (settings.get("autoReplyMessages") or {}).get("outsideHours")
        if reply:
            await self._reply(event.get("replyToken"), reply, settings)

    async def _handle_follow(self, event: Dict[str, Any], user_id: Optional[str], settings: Dict[str, Any]):
        if user_id:
            parents = get_parent_service()
            parent = parents.get_parent_by_line_id(user_id)
            if parent:
                parents.update_parent(parent["id"], {"lastLoginAt": utc_timestamp(), "lineFollowing": True})

        welcome = (settings.get("autoReplyMessages") or {}).get("welcome")
        if welcome:
            school_name = get_settings_service().get_general_settings().get("schoolName", "")
            await self._reply(event.get("replyToken"), render_template(welcome, {"schoolName": school_name}), settings)

    def _handle_unfollow(self, user_id: Optional[str]):
        if not user_id:
            return
        parents = get_parent_service()
        parent = parents.get_parent_by_line_id(user_id)
        if parent:
            parents.update_parent(parent["id"], {"lineFollowing": False})
            print(f"[Webhook] Parent {parent['id']} unfollowed")

    async def _reply(self, reply_token: Optional[str], text: str, settings: Dict[str, Any]):
        token = settings.get("messagingChannelAccessToken")
        if not reply_token or not token:
            return
        try:
            async with LineMessagingClient(token) as client:
                await client.reply(reply_token, [text_message(text)])
        except LineApiError as e:
            print(f"[Webhook] Reply failed: {e}")


async def handle_webhook(body: bytes, signature: Optional[str]) -> Dict[str, Any]:
    return await WebhookHandler().handle_webhook(body, signature)
