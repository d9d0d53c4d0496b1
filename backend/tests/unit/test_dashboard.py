"""
Tests for services/dashboard.py
"""

from datetime import date
from unittest.mock import patch

from core.calendar import SchoolCalendar
from services.cache import get_cache
from services.dashboard import get_dashboard_service


def test_stats_on_a_class_day(school):
    school.seed("classes/c1", {**school.data("classes/c1"), "enrolledCount": 2})
    school.seed("makeupClasses/m1", {"status": "pending", "branchId": "b1", "studentId": "st1"})

    with patch.object(SchoolCalendar, "today", return_value=date(2027, 1, 9)):
        stats = get_dashboard_service().get_dashboard_stats("b1")

    assert stats["totalStudents"] == 2
    assert stats["activeClasses"] == 1
    assert stats["todayClasses"] == 1
    assert stats["pendingMakeups"] == 1
    get_cache().set_dashboard.assert_called_once_with("b1", stats)


def test_cached_stats_are_returned(school):
    get_cache().get_dashboard.return_value = {"totalClasses": 99}
    assert get_dashboard_service().get_dashboard_stats() == {"totalClasses": 99}


def test_calendar_events(school):
    school.seed("holidays/h1", {"name": "Teacher Day", "date": "2027-01-16", "type": "national",
                                "isSchoolClosed": False, "branches": []})
    school.seed("trialSessions/tr1", {"status": "scheduled", "branchId": "b1", "scheduledDate": "2027-01-10",
                                      "startTime": "09:00", "endTime": "10:00", "studentName": "Pim"})

    events = get_dashboard_service().get_calendar_events("2027-01-08", "2027-01-16", "b1")

    assert [(e["type"], e["date"]) for e in events] == [
        ("class", "2027-01-09"), ("trial", "2027-01-10"), ("holiday", "2027-01-16"), ("class", "2027-01-16"),
    ]
    assert events[2]["status"] == "open"
