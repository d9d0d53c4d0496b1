"""
LINE Messaging API Client with Rate Limiting and Delivery Reporting

Provides an async HTTP client for the LINE Messaging API with:
- Rate limiting to stay under LINE's per-channel request limits
- Mapping of LINE error responses to readable messages
- A delivery report for batch sends (reminders, broadcasts)
"""

import asyncio
import aiohttp
import time
from datetime import datetime
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field

from core.config import LINE_API_BASE

USER_AGENT = "TutoringSchoolAdmin/1.0 (LINE Notifications)"

PUSH_ENDPOINT = f"{LINE_API_BASE}/message/push"
MULTICAST_ENDPOINT = f"{LINE_API_BASE}/message/multicast"
REPLY_ENDPOINT = f"{LINE_API_BASE}/message/reply"
PROFILE_ENDPOINT = f"{LINE_API_BASE}/profile"
BOT_INFO_ENDPOINT = f"{LINE_API_BASE}/info"

# Rate limiting
DEFAULT_REQUESTS_PER_SECOND = 20
BURST_LIMIT = 40
MULTICAST_CHUNK = 500  # LINE accepts at most 500 recipients per multicast
MAX_MESSAGES_PER_REQUEST = 5


class LineApiError(Exception):
    """Raised when the LINE Messaging API rejects a request."""
    def __init__(self, message: str, status_code: int = 0, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def map_line_error(status_code: int, body: Dict[str, Any]) -> str:
    """Translate a LINE error response into a message staff can act on."""
    message = body.get("message", "") if isinstance(body, dict) else str(body)
    if status_code == 400:
        if "Invalid user" in message or "invalid user" in message.lower():
            return "Invalid LINE user ID, or the user has not added the official account as a friend"
        if "The property" in message:
            return "Invalid message format"
        return f"Bad request: {message}"
    if status_code == 401:
        return "Invalid channel access token"
    if status_code == 403:
        return "Not authorized to use this API"
    if status_code == 429:
        return "LINE message quota exceeded"
    return message or f"LINE API error ({status_code})"


def text_message(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def flex_message(alt_text: str, contents: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap opaque flex contents; the payload is passed through untouched."""
    return {"type": "flex", "altText": alt_text, "contents": contents}


# Delivery Report

@dataclass
class DeliveryReport:
    """Tracks the outcome of a batch of outbound messages"""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    job: str = ""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add_success(self, count: int = 1):
        self.sent += count

    def add_skipped(self, count: int = 1):
        """Recipient has no linked LINE account"""
        self.skipped += count

    def add_failure(self, recipient: str, message: str, status: int = 0):
        self.failed += 1
        if len(self.errors) < 100:  # Limit stored errors
            self.errors.append({
                "recipient": recipient,
                "status": status,
                "message": message,
                "time": datetime.now().isoformat()
            })

    def has_issues(self) -> bool:
        return bool(self.failed or self.errors)

    def summary(self) -> str:
        """Generate a summary report"""
        lines = [
            "=" * 60,
            "DELIVERY REPORT",
            "=" * 60,
            f"Timestamp: {self.timestamp}",
            f"Job: {self.job}",
            f"Sent: {self.sent}",
            f"Skipped (no LINE account): {self.skipped}",
            f"Failed: {self.failed}",
        ]
        if not self.has_issues():
            lines.append("[OK] All messages delivered")
        else:
            lines.append(f"[ERROR] Delivery errors: {len(self.errors)}")
            for err in self.errors[:5]:
                lines.append(f"  - {err['recipient']}: {err['status']} - {err['message']}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and logs"""
        return {
            "timestamp": self.timestamp,
            "job": self.job,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors,
            "has_issues": self.has_issues()
        }


# Rate Limiter

class RateLimiter:
    """Token bucket rate limiter"""

    def __init__(self, rate: float = DEFAULT_REQUESTS_PER_SECOND, burst: int = BURST_LIMIT):
        self.rate = rate
        self.burst = burst
        self.tokens = burst
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Acquire a token, waiting if necessary"""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                await asyncio.sleep(wait_time)
                self.tokens = 0
            else:
                self.tokens -= 1


# API Client

class LineMessagingClient:
    """
    LINE Messaging API client with rate limiting.

    Usage:
        async with LineMessagingClient(token) as client:
            await client.push_text(user_id, "Hello")
    """

    def __init__(self, access_token: str, rate_limit: float = DEFAULT_REQUESTS_PER_SECOND):
        if not access_token:
            raise LineApiError("LINE channel access token is not configured", 0)
        self.access_token = access_token
        self.rate_limiter = RateLimiter(rate=rate_limit)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        timeout = aiohttp.ClientTimeout(total=30, connect=5, sock_read=15)
        connector = aiohttp.TCPConnector(limit=20, keepalive_timeout=30)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={
                'User-Agent': USER_AGENT,
                'Authorization': f'Bearer {self.access_token}',
                'Content-Type': 'application/json',
            }
        )
        return self

    async def __aexit__(self, *args):
        if self.session:
            await self.session.close()

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self.rate_limiter.acquire()
        try:
            async with self.session.request(method, url, json=payload) as resp:
                if resp.status == 200:
                    if resp.content_type == "application/json":
                        return await resp.json()
                    return {}
                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = {"message": await resp.text()}
                raise LineApiError(map_line_error(resp.status, body or {}), resp.status, body or {})
        except aiohttp.ClientError as e:
            raise LineApiError(f"Could not reach LINE: {e}", 0)

    async def push_messages(self, to: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not to:
            raise LineApiError("Recipient LINE user ID is required", 400)
        return await self._request("POST", PUSH_ENDPOINT, {
            "to": to,
            "messages": messages[:MAX_MESSAGES_PER_REQUEST],
        })

    async def push_text(self, to: str, text: str) -> Dict[str, Any]:
        return await self.push_messages(to, [text_message(text)])

    async def multicast(self, recipients: List[str], messages: List[Dict[str, Any]],
                        report: Optional[DeliveryReport] = None) -> DeliveryReport:
        """Send the same messages to many users, in chunks of 500."""
        report = report or DeliveryReport(job="multicast")
        unique = list(dict.fromkeys(r for r in recipients if r))
        for i in range(0, len(unique), MULTICAST_CHUNK):
            chunk = unique[i:i + MULTICAST_CHUNK]
            try:
                await self._request("POST", MULTICAST_ENDPOINT, {
                    "to": chunk,
                    "messages": messages[:MAX_MESSAGES_PER_REQUEST],
                })
                report.add_success(len(chunk))
            except LineApiError as e:
                for recipient in chunk:
                    report.add_failure(recipient, str(e), e.status_code)
        return report

    async def reply(self, reply_token: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._request("POST", REPLY_ENDPOINT, {
            "replyToken": reply_token,
            "messages": messages[:MAX_MESSAGES_PER_REQUEST],
        })

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{PROFILE_ENDPOINT}/{user_id}")

    async def get_bot_info(self) -> Dict[str, Any]:
        return await self._request("GET", BOT_INFO_ENDPOINT)
