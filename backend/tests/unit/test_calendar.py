"""
Tests for core/calendar.py and core/parsers.py - dates, times, phones, templates
"""

import pytest
from datetime import date, datetime, timezone

from core.calendar import SchoolCalendar, utc_timestamp
from core.parsers import (
    clean_update,
    doc_to_dict,
    is_valid_email,
    is_valid_thai_phone,
    is_valid_time_range,
    normalize_phone,
    parse_time,
    render_template,
    times_overlap,
)


class TestSchoolCalendar:
    """Tests for date coercion and weekday numbering"""

    def test_to_date_accepts_iso_string(self):
        assert SchoolCalendar.to_date("2026-10-18") == date(2026, 10, 18)

    def test_to_date_converts_utc_timestamp_to_school_day(self):
        """23:30 UTC is already the next morning in Bangkok"""
        late_utc = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
        assert SchoolCalendar.to_date(late_utc) == date(2026, 10, 19)

    def test_to_date_parses_zulu_string(self):
        assert SchoolCalendar.to_date("2026-10-18T20:00:00Z") == date(2026, 10, 19)

    def test_to_date_rejects_empty(self):
        with pytest.raises(ValueError):
            SchoolCalendar.to_date("")

    def test_day_of_week_sunday_is_zero(self):
        assert SchoolCalendar.day_of_week("2026-10-18") == 0  # Sunday
        assert SchoolCalendar.day_of_week("2026-10-19") == 1
        assert SchoolCalendar.day_of_week("2026-10-24") == 6

    def test_day_name(self):
        assert SchoolCalendar.day_name(0) == "Sunday"
        assert SchoolCalendar.day_name(6) == "Saturday"

    def test_iter_dates_is_inclusive(self):
        days = list(SchoolCalendar.iter_dates("2026-10-30", "2026-11-02"))
        assert [d.isoformat() for d in days] == ["2026-10-30", "2026-10-31", "2026-11-01", "2026-11-02"]

    def test_month_bounds_handles_leap_year(self):
        assert SchoolCalendar.month_bounds(2028, 2) == ("2028-02-01", "2028-02-29")

    def test_combine_is_school_timezone(self):
        combined = SchoolCalendar.combine("2026-10-18", "16:30")
        assert combined.hour == 16 and combined.minute == 30
        assert combined.utcoffset().total_seconds() == 7 * 3600

    def test_is_past(self):
        assert SchoolCalendar.is_past("2000-01-01") is True
        assert SchoolCalendar.is_past("2999-01-01") is False

    def test_utc_timestamp_is_iso(self):
        parsed = datetime.fromisoformat(utc_timestamp())
        assert parsed.tzinfo is not None


class TestTimes:
    """Tests for HH:MM handling"""

    def test_parse_time(self):
        assert parse_time("09:30") == 570
        assert parse_time("0:05") == 5

    @pytest.mark.parametrize("bad", ["24:00", "9.30", "", "ab:cd"])
    def test_parse_time_rejects_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_time(bad)

    def test_overlap_is_half_open(self):
        """Back-to-back slots do not overlap"""
        assert times_overlap("10:00", "11:00", "11:00", "12:00") is False
        assert times_overlap("10:00", "11:00", "10:59", "12:00") is True

    def test_contained_slot_overlaps(self):
        assert times_overlap("09:00", "12:00", "10:00", "10:30") is True

    def test_valid_time_range(self):
        assert is_valid_time_range("10:00", "11:00") is True
        assert is_valid_time_range("11:00", "11:00") is False
        assert is_valid_time_range("bad", "11:00") is False


class TestContactParsing:
    """Tests for phone and email validation"""

    def test_normalize_phone_strips_spaces_and_dashes(self):
        assert normalize_phone("081-234 5678") == "0812345678"
        assert normalize_phone(None) == ""

    def test_thai_phone(self):
        assert is_valid_thai_phone("0812345678") is True
        assert is_valid_thai_phone("02-123-4567") is True
        assert is_valid_thai_phone("812345678") is False
        assert is_valid_thai_phone("08123") is False

    def test_email(self):
        assert is_valid_email("parent@example.com") is True
        assert is_valid_email("no-at-sign") is False
        assert is_valid_email(None) is False


class TestTemplatesAndDocs:
    """Tests for template rendering and snapshot helpers"""

    def test_render_template_fills_known_placeholders(self):
        text = render_template("Hi {studentName}, class at {time}", {"studentName": "Mint", "time": "10:00"})
        assert text == "Hi Mint, class at 10:00"

    def test_render_template_keeps_unknown_placeholders(self):
        assert render_template("See {location}", {}) == "See {location}"

    def test_doc_to_dict_adds_id(self, fake_db):
        fake_db.seed("subjects/s1", {"name": "Scratch"})
        snapshot = fake_db.collection("subjects").document("s1").get()
        assert doc_to_dict(snapshot) == {"name": "Scratch", "id": "s1"}

    def test_doc_to_dict_missing(self, fake_db):
        assert doc_to_dict(fake_db.collection("subjects").document("nope").get()) is None

    def test_clean_update_drops_none_and_id(self):
        assert clean_update({"id": "x", "name": "A", "note": None}) == {"name": "A"}
