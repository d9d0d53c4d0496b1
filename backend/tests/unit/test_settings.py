"""
Tests for services/settings.py - settings documents, validation and masking
"""

import pytest
from datetime import datetime
from unittest.mock import patch

import services.settings
from core.calendar import SchoolCalendar
from core.errors import ValidationError
from services.settings import (
    format_business_hours,
    generate_webhook_url,
    get_settings_service,
    is_within_business_hours,
    mask_secret,
    validate_general_settings,
    validate_line_settings,
    validate_makeup_settings,
)


class TestGeneralSettingsValidation:
    def test_defaults_are_valid(self):
        defaults = services.settings.DEFAULT_GENERAL_SETTINGS
        assert validate_general_settings({"schoolName": defaults["schoolName"]})["isValid"] is True

    def test_blank_school_name(self):
        result = validate_general_settings({"schoolName": "   "})
        assert result["errors"]["schoolName"] == "School name is required"

    def test_phone_and_email(self):
        result = validate_general_settings({"contactPhone": "02-abc", "contactEmail": "bad"})
        assert set(result["errors"]) == {"contactPhone", "contactEmail"}

    def test_address_requires_province_district_subdistrict(self):
        result = validate_general_settings({"address": {"province": "Bangkok"}})
        assert "address.district" in result["errors"]
        assert "address.subDistrict" in result["errors"]
        assert "address.province" not in result["errors"]

    def test_logo_url(self):
        assert validate_general_settings({"logoUrl": "ftp://x"})["isValid"] is False
        assert validate_general_settings({"logoUrl": "https://cdn.test/logo.png"})["isValid"] is True


class TestMakeupSettingsValidation:
    def test_negative_limit(self):
        assert "makeupLimitPerCourse" in validate_makeup_settings({"makeupLimitPerCourse": -1})["errors"]

    def test_zero_limit_means_unlimited(self):
        assert validate_makeup_settings({"makeupLimitPerCourse": 0})["isValid"] is True

    def test_unknown_status(self):
        result = validate_makeup_settings({"allowMakeupForStatuses": ["absent", "late"]})
        assert "allowMakeupForStatuses" in result["errors"]


class TestLineSettingsValidation:
    def test_channel_id_numeric(self):
        assert "messagingChannelId" in validate_line_settings({"messagingChannelId": "abc"})["errors"]

    def test_secret_length(self):
        assert "messagingChannelSecret" in validate_line_settings({"messagingChannelSecret": "short"})["errors"]
        assert validate_line_settings({"messagingChannelSecret": "a" * 32})["isValid"] is True

    def test_token_too_short(self):
        assert "messagingChannelAccessToken" in validate_line_settings({"messagingChannelAccessToken": "x" * 20})["errors"]

    def test_liff_id_format(self):
        assert validate_line_settings({"liffId": "1234567890-AbCd1234"})["isValid"] is True
        assert validate_line_settings({"liffId": "liff-123"})["isValid"] is False

    def test_webhook_must_be_https(self):
        assert "webhookUrl" in validate_line_settings({"webhookUrl": "http://x.test/hook"})["errors"]

    def test_business_hours_order(self):
        result = validate_line_settings({"businessHours": {"start": "18:00", "end": "09:00"}})
        assert result["errors"]["businessHours"] == "Opening hour must be before closing hour"


class TestHelpers:
    def test_mask_secret(self):
        assert mask_secret("") == ""
        assert mask_secret("abcd") == "****"
        assert mask_secret("abcdefghijklmnop") == "abcd********mnop"

    def test_webhook_url(self):
        assert generate_webhook_url("https://school.test/") == "https://school.test/api/webhooks/line"

    def test_business_hours_range(self):
        assert format_business_hours({"start": "09:00", "end": "18:00", "days": [1, 2, 3, 4, 5]}) == "Monday-Friday 09:00-18:00"

    def test_business_hours_list(self):
        assert format_business_hours({"start": "09:00", "end": "12:00", "days": [3, 1]}) == "Monday, Wednesday 09:00-12:00"

    def test_within_business_hours(self):
        hours = {"start": "09:00", "end": "18:00", "days": [1, 2, 3, 4, 5]}
        monday_ten = datetime(2026, 10, 19, 10, 0, tzinfo=SchoolCalendar.TZ)
        monday_night = datetime(2026, 10, 19, 19, 0, tzinfo=SchoolCalendar.TZ)
        sunday_ten = datetime(2026, 10, 18, 10, 0, tzinfo=SchoolCalendar.TZ)
        assert is_within_business_hours(hours, monday_ten) is True
        assert is_within_business_hours(hours, monday_night) is False
        assert is_within_business_hours(hours, sunday_ten) is False


class TestSettingsService:
    """Tests for the settings documents against the in-memory store"""

    def test_missing_document_returns_defaults(self, fake_db):
        settings = get_settings_service().get_makeup_settings()
        assert settings["autoCreateMakeup"] is True
        assert settings["makeupLimitPerCourse"] == 0

    def test_stored_values_merge_over_defaults(self, fake_db):
        fake_db.seed("settings/general", {"schoolName": "Bright Kids", "address": {"district": "Bang Rak"}})
        settings = get_settings_service().get_general_settings()
        assert settings["schoolName"] == "Bright Kids"
        assert settings["address"]["district"] == "Bang Rak"
        assert settings["address"]["country"] == "Thailand"

    def test_update_rejects_invalid(self, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            get_settings_service().update_makeup_settings({"makeupLimitPerCourse": -2})
        assert "makeupLimitPerCourse" in exc_info.value.errors

    def test_update_records_author_and_invalidates_cache(self, fake_db):
        service = get_settings_service()
        service.update_makeup_settings({"makeupLimitPerCourse": 3}, user_id="admin1")
        stored = fake_db.data("settings/makeup")
        assert stored["makeupLimitPerCourse"] == 3
        assert stored["updatedBy"] == "admin1"
        services.settings.get_cache().invalidate_settings.assert_called_with("makeup")

    def test_masked_secrets_are_not_written_back(self, fake_db):
        fake_db.seed("settings/line", {"messagingChannelSecret": "s" * 32})
        service = get_settings_service()
        masked = service.get_masked_line_settings()
        assert masked["messagingChannelSecret"] == "ssss********ssss"

        service.update_line_settings({"messagingChannelSecret": masked["messagingChannelSecret"], "liffId": "1234567890-AbCd1234"})

        stored = fake_db.data("settings/line")
        assert stored["messagingChannelSecret"] == "s" * 32
        assert stored["liffId"] == "1234567890-AbCd1234"

    def test_env_token_fills_blank_setting(self, fake_db):
        with patch.object(services.settings, "LINE_CHANNEL_ACCESS_TOKEN", "env-token"):
            assert get_settings_service().get_line_settings()["messagingChannelAccessToken"] == "env-token"
