"""
Shared parsing and normalization utilities.

Used by the services and the HTTP layer so times, phone numbers and
Firestore snapshots are handled the same way everywhere.
"""

import re
from typing import Any, Dict, Mapping, Optional

TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')
THAI_PHONE_PATTERN = re.compile(r'^0[0-9]{8,9}$')
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PLACEHOLDER_PATTERN = re.compile(r'\{(\w+)\}')


def parse_time(value: str) -> int:
    """
    Convert an HH:MM string to minutes since midnight.

    Raises:
        ValueError: If the string is not a valid 24h clock time
    """
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    """Two half-open time ranges overlap when start1 < end2 and end1 > start2"""
    return parse_time(start1) < parse_time(end2) and parse_time(end1) > parse_time(start2)


def is_valid_time_range(start: str, end: str) -> bool:
    try:
        return parse_time(start) < parse_time(end)
    except ValueError:
        return False


def normalize_phone(phone: Optional[str]) -> str:
    """Strip spaces and dashes from a phone number"""
    return re.sub(r'[\s-]', '', phone or '')


def is_valid_thai_phone(phone: Optional[str]) -> bool:
    return bool(THAI_PHONE_PATTERN.match(normalize_phone(phone)))


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email))


def render_template(template: str, values: Mapping[str, Any]) -> str:
    """
    Fill {placeholder} markers in a message template.

    Unknown placeholders are left as they are so a misconfigured template
    is visible in the delivered message instead of silently dropped.
    """
    def replace(match):
        key = match.group(1)
        if key in values and values[key] is not None:
            return str(values[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template or "")


def doc_to_dict(doc) -> Optional[Dict[str, Any]]:
    """Firestore snapshot to dict with its id, or None when missing"""
    if doc is None or not doc.exists:
        return None
    data = doc.to_dict() or {}
    data["id"] = doc.id
    return data


def clean_update(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop None values and the id key before writing an update"""
    return {k: v for k, v in data.items() if v is not None and k != "id"}
