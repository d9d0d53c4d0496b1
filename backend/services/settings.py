"""
Settings Service

Three singleton documents live in the settings collection:
- settings/general: school identity and contact details
- settings/makeup: makeup-class policy
- settings/line: LINE channel credentials, auto-replies and templates

Stored documents are merged over defaults on read, so a partially filled
document (or none at all) still yields a complete settings object.
"""

import copy
import re
from datetime import datetime
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from core.config import (
    LINE_CHANNEL_ACCESS_TOKEN,
    LINE_CHANNEL_SECRET,
    get_firestore_client,
    initialize_firebase,
)
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import ValidationError
from core.parsers import is_valid_email, parse_time
from services.cache import get_cache

MAKEUP_STATUSES = ["absent", "sick", "leave"]

DEFAULT_GENERAL_SETTINGS = {
    "schoolName": "Tutoring School",
    "schoolNameEn": "Tutoring School",
    "logoUrl": "",
    "address": {
        "houseNumber": "",
        "street": "",
        "subDistrict": "",
        "district": "",
        "province": "Bangkok",
        "postalCode": "",
        "country": "Thailand",
    },
    "contactPhone": "",
    "contactEmail": "",
    "lineOfficialId": "",
    "lineOfficialUrl": "",
    "facebook": "",
    "website": "",
}

DEFAULT_MAKEUP_SETTINGS = {
    "autoCreateMakeup": True,
    "makeupLimitPerCourse": 0,
    "allowMakeupForStatuses": list(MAKEUP_STATUSES),
    "makeupRequestDeadlineDays": 1,
    "makeupValidityDays": 90,
    "sendLineNotification": True,
    "notifyParentOnAutoCreate": False,
}

DEFAULT_LINE_SETTINGS = {
    "messagingChannelId": "",
    "messagingChannelSecret": "",
    "messagingChannelAccessToken": "",
    "loginChannelId": "",
    "loginChannelSecret": "",
    "liffId": "",
    "webhookUrl": "",
    "webhookVerified": False,
    "richMenuEnabled": False,
    "enableAutoReply": True,
    "enableNotifications": True,
    "businessHours": {
        "start": "09:00",
        "end": "18:00",
        "days": [1, 2, 3, 4, 5],
    },
    "quickReplyTemplates": [
        "Class schedule",
        "Request leave",
        "Contact staff",
    ],
    "autoReplyMessages": {
        "welcome": "Welcome to {schoolName}! Link your account to receive class updates.",
        "unknownCommand": "Sorry, we did not understand that. Please use the menu below.",
        "outsideHours": "Thank you for your message. Our staff will reply during business hours.",
    },
    "notificationTemplates": {
        "classReminder": (
            "Class reminder\n"
            "Student: {studentName}\n"
            "Subject: {subjectName}\n"
            "Date: {date}\n"
            "Time: {time}\n"
            "Location: {location}"
        ),
        "makeupConfirmation": (
            "Makeup class\n"
            "Student: {studentName}\n"
            "Subject: {subjectName}\n"
            "Date: {date}\n"
            "Time: {time}\n"
            "Teacher: {teacherName}\n"
            "Location: {location}"
        ),
        "paymentReminder": (
            "Payment reminder\n"
            "Student: {studentName}\n"
            "Course: {courseName}\n"
            "Amount: {amount} THB\n"
            "Due date: {dueDate}\n"
            "{paymentInfo}"
        ),
        "trialConfirmation": (
            "Trial class confirmed\n"
            "Student: {studentName}\n"
            "Subject: {subjectName}\n"
            "Date: {date}\n"
            "Time: {time}\n"
            "Location: {location}\n"
            "Questions? Call {contactPhone}"
        ),
    },
}

SECRET_FIELDS = ["messagingChannelSecret", "messagingChannelAccessToken", "loginChannelSecret"]


def _deep_merge(defaults: Dict[str, Any], stored: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in (stored or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_general_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate general settings.

    Returns:
        Dict with isValid and an errors mapping of field -> message
    """
    errors = {}

    if "schoolName" in settings and not (settings.get("schoolName") or "").strip():
        errors["schoolName"] = "School name is required"

    phone = settings.get("contactPhone")
    if phone and not re.match(r'^[0-9-]+$', phone.replace(" ", "")):
        errors["contactPhone"] = "Phone number may only contain digits and dashes"

    email = settings.get("contactEmail")
    if email and not is_valid_email(email):
        errors["contactEmail"] = "Invalid email address"

    address = settings.get("address")
    if address is not None:
        if not address.get("province"):
            errors["address.province"] = "Province is required"
        if not address.get("district"):
            errors["address.district"] = "District is required"
        if not address.get("subDistrict"):
            errors["address.subDistrict"] = "Sub-district is required"

    logo_url = settings.get("logoUrl")
    if logo_url and not _is_valid_url(logo_url):
        errors["logoUrl"] = "Invalid logo URL"

    return {"isValid": not errors, "errors": errors}


def validate_makeup_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    errors = {}
    limit = settings.get("makeupLimitPerCourse")
    if limit is not None and (not isinstance(limit, int) or limit < 0):
        errors["makeupLimitPerCourse"] = "Limit must be 0 (unlimited) or a positive number"
    statuses = settings.get("allowMakeupForStatuses")
    if statuses is not None and any(s not in MAKEUP_STATUSES for s in statuses):
        errors["allowMakeupForStatuses"] = f"Statuses must be among {', '.join(MAKEUP_STATUSES)}"
    for field_name in ("makeupRequestDeadlineDays", "makeupValidityDays"):
        value = settings.get(field_name)
        if value is not None and (not isinstance(value, int) or value < 0):
            errors[field_name] = "Must be a non-negative number of days"
    return {"isValid": not errors, "errors": errors}


def validate_line_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate LINE channel settings.

    Returns:
        Dict with isValid and an errors mapping of field -> message
    """
    errors = {}

    for field_name in ("messagingChannelId", "loginChannelId"):
        value = settings.get(field_name)
        if value and not re.match(r'^\d+$', str(value)):
            errors[field_name] = "Channel ID must be numeric"

    for field_name in ("messagingChannelSecret", "loginChannelSecret"):
        value = settings.get(field_name)
        if value and len(value) != 32:
            errors[field_name] = "Channel secret must be 32 characters"

    token = settings.get("messagingChannelAccessToken")
    if token and len(token) < 100:
        errors["messagingChannelAccessToken"] = "Access token looks too short"

    liff_id = settings.get("liffId")
    if liff_id and not re.match(r'^\d{10}-\w{8}$', liff_id):
        errors["liffId"] = "LIFF ID format is invalid"

    webhook_url = settings.get("webhookUrl")
    if webhook_url and not webhook_url.startswith("https://"):
        errors["webhookUrl"] = "Webhook URL must use https://"

    hours = settings.get("businessHours")
    if hours:
        try:
            if parse_time(hours.get("start", "")) // 60 >= parse_time(hours.get("end", "")) // 60:
                errors["businessHours"] = "Opening hour must be before closing hour"
        except ValueError:
            errors["businessHours"] = "Business hours must be HH:MM"

    return {"isValid": not errors, "errors": errors}


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * 8}{value[-4:]}"


class SettingsService:
    """Service for the settings singleton documents."""

    SETTINGS_COLLECTION = "settings"
    GENERAL_DOC = "general"
    MAKEUP_DOC = "makeup"
    LINE_DOC = "line"

    def __init__(self):
        self.db = get_firestore_client()

    def _load(self, name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        cache = get_cache()
        cached = cache.get_settings(name)
        if cached is not None:
            return _deep_merge(defaults, cached)

        doc = self.db.collection(self.SETTINGS_COLLECTION).document(name).get()
        stored = doc.to_dict() if doc.exists else {}
        cache.set_settings(name, stored)
        return _deep_merge(defaults, stored)

    def _save(self, name: str, data: Dict[str, Any], user_id: Optional[str]) -> None:
        payload = dict(data)
        payload.pop("id", None)
        payload["updatedAt"] = utc_timestamp()
        payload["updatedBy"] = user_id
        self.db.collection(self.SETTINGS_COLLECTION).document(name).set(payload, merge=True)
        get_cache().invalidate_settings(name)

    # --- General ---

    def get_default_general_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_GENERAL_SETTINGS)

    def get_general_settings(self) -> Dict[str, Any]:
        return self._load(self.GENERAL_DOC, DEFAULT_GENERAL_SETTINGS)

    def update_general_settings(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate and merge-write general settings.

        Raises:
            ValidationError: With the per-field error mapping
        """
        result = validate_general_settings(data)
        if not result["isValid"]:
            raise ValidationError("Invalid general settings", result["errors"])
        self._save(self.GENERAL_DOC, data, user_id)
        return self.get_general_settings()

    # --- Makeup ---

    def get_makeup_settings(self) -> Dict[str, Any]:
        return self._load(self.MAKEUP_DOC, DEFAULT_MAKEUP_SETTINGS)

    def update_makeup_settings(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        result = validate_makeup_settings(data)
        if not result["isValid"]:
            raise ValidationError("Invalid makeup settings", result["errors"])
        self._save(self.MAKEUP_DOC, data, user_id)
        return self.get_makeup_settings()

    # --- LINE ---

    def get_default_line_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_LINE_SETTINGS)

    def get_line_settings(self) -> Dict[str, Any]:
        settings = self._load(self.LINE_DOC, DEFAULT_LINE_SETTINGS)
        if not settings.get("messagingChannelAccessToken") and LINE_CHANNEL_ACCESS_TOKEN:
            settings["messagingChannelAccessToken"] = LINE_CHANNEL_ACCESS_TOKEN
        if not settings.get("messagingChannelSecret") and LINE_CHANNEL_SECRET:
            settings["messagingChannelSecret"] = LINE_CHANNEL_SECRET
        return settings

    def get_masked_line_settings(self) -> Dict[str, Any]:
        settings = self.get_line_settings()
        for field_name in SECRET_FIELDS:
            settings[field_name] = mask_secret(settings.get(field_name))
        return settings

    def update_line_settings(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate and merge-write LINE settings.

        Masked secrets echoed back by the admin form are ignored so they do
        not overwrite the stored values.
        """
        payload = {
            k: v for k, v in data.items()
            if not (k in SECRET_FIELDS and isinstance(v, str) and "*" in v)
        }
        result = validate_line_settings(payload)
        if not result["isValid"]:
            raise ValidationError("Invalid LINE settings", result["errors"])
        self._save(self.LINE_DOC, payload, user_id)
        return self.get_masked_line_settings()

    def mark_webhook_verified(self) -> None:
        self.db.collection(self.SETTINGS_COLLECTION).document(self.LINE_DOC).set({
            "webhookVerified": True,
            "webhookVerifiedAt": utc_timestamp(),
        }, merge=True)
        get_cache().invalidate_settings(self.LINE_DOC)


def generate_webhook_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/api/webhooks/line"


def format_business_hours(hours: Dict[str, Any]) -> str:
    """e.g. 'Monday-Friday 09:00-18:00' or 'Monday, Wednesday 09:00-12:00'"""
    days = sorted(hours.get("days") or [])
    time_range = f"{hours.get('start', '')}-{hours.get('end', '')}"
    if not days:
        return time_range
    names = [SchoolCalendar.day_name(d) for d in days]
    consecutive = all(b - a == 1 for a, b in zip(days, days[1:]))
    if len(days) > 2 and consecutive:
        return f"{names[0]}-{names[-1]} {time_range}"
    return f"{', '.join(names)} {time_range}"


def is_within_business_hours(hours: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or SchoolCalendar.now()
    if SchoolCalendar.day_of_week(now) not in (hours.get("days") or []):
        return False
    minutes = now.hour * 60 + now.minute
    return parse_time(hours.get("start", "00:00")) <= minutes < parse_time(hours.get("end", "23:59"))


_settings_service: Optional[SettingsService] = None


def get_settings_service() -> SettingsService:
    """Get singleton instance of SettingsService."""
    global _settings_service
    if _settings_service is None:
        initialize_firebase()
        _settings_service = SettingsService()
    return _settings_service
