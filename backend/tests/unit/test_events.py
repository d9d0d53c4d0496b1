"""
Tests for services/events.py - event schedules and seat counting
"""

from datetime import datetime

import pytest

from core.calendar import SchoolCalendar
from core.errors import EventFullError, ValidationError
from services.events import count_attendees, get_event_service, is_registration_open


@pytest.fixture
def open_house(fake_db, seed_branch):
    """A published open house counting students, one schedule with 3 seats."""
    service = get_event_service()
    event = service.create_event({
        "name": "Open House", "branchIds": ["b1"], "countingMethod": "students", "status": "published",
        "registrationStartDate": "2020-01-01", "registrationEndDate": "2999-12-31",
    })
    schedule = service.create_event_schedule({
        "eventId": event["id"], "date": "2999-06-01", "startTime": "10:00", "endTime": "12:00", "maxAttendees": 3,
    })
    return event, schedule


def register(event, schedule, students=1, branch_id="b1"):
    return get_event_service().create_event_registration({
        "scheduleId": schedule["id"], "branchId": branch_id, "lineUserId": "U-parent",
        "parentName": "Khun Nok", "students": [{"name": f"Kid {i}"} for i in range(students)],
    }, event)


class TestCounting:
    def test_methods(self):
        data = {"students": [{}, {}], "parents": [{}]}
        assert count_attendees("students", data) == 2
        assert count_attendees("parents", data) == 1
        assert count_attendees("registrations", data) == 1

    def test_registration_window(self):
        event = {"status": "published", "registrationStartDate": "2027-01-01", "registrationEndDate": "2027-01-31"}
        inside = datetime(2027, 1, 31, 20, 0, tzinfo=SchoolCalendar.TZ)
        after = datetime(2027, 2, 1, 0, 30, tzinfo=SchoolCalendar.TZ)
        assert is_registration_open(event, inside) is True
        assert is_registration_open(event, after) is False
        assert is_registration_open({**event, "status": "draft"}, inside) is False


class TestEvents:
    def test_invalid_counting_method(self, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            get_event_service().create_event({"name": "X", "countingMethod": "heads"})
        assert "countingMethod" in exc_info.value.errors

    def test_registration_end_before_start(self, fake_db):
        with pytest.raises(ValidationError):
            get_event_service().create_event({
                "name": "X", "registrationStartDate": "2027-02-01", "registrationEndDate": "2027-01-01",
            })

    def test_published_events_include_open_schedules(self, open_house):
        event, schedule = open_house
        published = get_event_service().get_published_events("b1")
        assert [e["id"] for e in published] == [event["id"]]
        assert [s["id"] for s in published[0]["schedules"]] == [schedule["id"]]


class TestRegistrations:
    def test_registration_takes_seats_per_branch(self, open_house, fake_db):
        event, schedule = open_house
        registration = register(event, schedule, students=2)

        assert registration["attendeeCount"] == 2
        assert registration["scheduleDate"] == "2999-06-01"
        stored = fake_db.data(f"eventSchedules/{schedule['id']}")
        assert stored["attendeesByBranch"] == {"b1": 2}
        assert stored["status"] == "available"

    def test_last_seat_marks_full(self, open_house, fake_db):
        event, schedule = open_house
        register(event, schedule, students=3)
        assert fake_db.data(f"eventSchedules/{schedule['id']}")["status"] == "full"

    def test_over_capacity_reports_remaining(self, open_house):
        event, schedule = open_house
        register(event, schedule, students=2)
        with pytest.raises(EventFullError) as exc_info:
            register(event, schedule, students=2)
        assert exc_info.value.remaining == 1

    def test_session_of_another_event_refused(self, open_house, fake_db):
        event, _ = open_house
        service = get_event_service()
        draft = service.create_event({"name": "Staff Day", "status": "draft"})
        draft_schedule = service.create_event_schedule({
            "eventId": draft["id"], "date": "2999-07-01", "startTime": "09:00", "endTime": "10:00", "maxAttendees": 5,
        })

        with pytest.raises(ValidationError) as exc_info:
            register(event, draft_schedule)
        assert exc_info.value.errors == {"scheduleId": "mismatch"}
        assert not fake_db.data(f"eventSchedules/{draft_schedule['id']}").get("attendeesByBranch")

    def test_cancelled_session_refused(self, open_house, fake_db):
        event, schedule = open_house
        fake_db.seed(f"eventSchedules/{schedule['id']}",
                     {**fake_db.data(f"eventSchedules/{schedule['id']}"), "status": "cancelled"})

        with pytest.raises(ValidationError) as exc_info:
            register(event, schedule)
        assert exc_info.value.errors == {"scheduleId": "cancelled"}
        assert fake_db.data(f"eventSchedules/{schedule['id']}")["status"] == "cancelled"

    def test_branch_outside_event_refused(self, open_house):
        event, schedule = open_house
        with pytest.raises(ValidationError) as exc_info:
            register(event, schedule, branch_id="b2")
        assert exc_info.value.errors == {"branchId": "invalid"}

    def test_no_attendees(self, open_house):
        event, schedule = open_house
        with pytest.raises(ValidationError):
            register(event, schedule, students=0)

    def test_cancel_returns_seats(self, open_house, fake_db):
        event, schedule = open_house
        registration = register(event, schedule, students=3)

        cancelled = get_event_service().cancel_event_registration(registration["id"], "sick")

        assert cancelled["status"] == "cancelled"
        stored = fake_db.data(f"eventSchedules/{schedule['id']}")
        assert stored["attendeesByBranch"] == {"b1": 0}
        assert stored["status"] == "available"

    def test_cancel_twice(self, open_house):
        event, schedule = open_house
        registration = register(event, schedule)
        service = get_event_service()
        service.cancel_event_registration(registration["id"])
        with pytest.raises(ValidationError):
            service.cancel_event_registration(registration["id"])

    def test_delete_refused_with_active_registrations(self, open_house):
        event, schedule = open_house
        register(event, schedule)
        with pytest.raises(ValidationError):
            get_event_service().delete_event(event["id"])

    def test_attendance_and_statistics(self, open_house):
        event, schedule = open_house
        service = get_event_service()
        first = register(event, schedule)
        second = register(event, schedule)

        assert service.update_event_attendance([
            {"registrationId": first["id"], "attended": True},
            {"registrationId": second["id"], "attended": False},
            {"attended": True},
        ]) == 2

        stats = service.get_event_statistics(event["id"])
        assert stats["totalRegistered"] == 2
        assert stats["totalAttended"] == 1
        assert stats["attendanceRate"] == 50.0
        assert stats["byBranch"] == {"b1": 2}
