"""
Tests for services/classes.py - schedule generation, attendance, room checks
"""

import pytest
from datetime import date

from core.errors import NotFoundError, ValidationError
from services.classes import generate_schedules, get_class_service, normalize_attendance


def class_payload(**overrides):
    data = {
        "subjectId": "s1", "teacherId": "t1", "branchId": "b1", "roomId": "r2",
        "name": "Coding Kids", "code": "CODE-1", "daysOfWeek": [1, 3],
        "startTime": "16:00", "endTime": "17:30", "startDate": "2027-01-01", "endDate": "2027-02-28",
        "totalSessions": 6, "maxStudents": 8, "minStudents": 2,
        "pricing": {"totalPrice": 6000, "pricePerSession": 1000},
    }
    data.update(overrides)
    return data


class TestGenerateSchedules:
    """Tests for enumerating teaching dates"""

    def test_picks_requested_weekdays(self):
        # 2027-01-04 is a Monday
        sessions = generate_schedules("2027-01-04", "2027-01-31", [1, 3], 4)
        assert sessions == [date(2027, 1, 4), date(2027, 1, 6), date(2027, 1, 11), date(2027, 1, 13)]

    def test_skips_holidays(self):
        sessions = generate_schedules("2027-01-04", "2027-01-31", [1], 2, ["2027-01-04"])
        assert sessions == [date(2027, 1, 11), date(2027, 1, 18)]

    def test_stops_at_end_date(self):
        assert len(generate_schedules("2027-01-04", "2027-01-10", [1], 5)) == 1

    def test_empty_inputs(self):
        assert generate_schedules("2027-01-04", "2027-01-31", [], 5) == []
        assert generate_schedules("2027-01-04", "2027-01-31", [1], 0) == []

    def test_normalize_attendance_drops_unknown_fields(self):
        entries = normalize_attendance([{"studentId": "a", "status": "present", "extra": 1, "checkedBy": "u1"}])
        assert entries == [{"studentId": "a", "status": "present", "note": "", "checkedBy": "u1"}]


class TestCreateClass:
    def test_create_writes_schedules_around_holidays(self, school):
        school.seed("holidays/h1", {"name": "Closed", "date": "2027-01-04", "type": "national",
                                    "isSchoolClosed": True, "branches": []})

        created = get_class_service().create_class(class_payload(), created_by="admin1")

        assert created["generatedSessions"] == 6
        assert created["enrolledCount"] == 0
        assert created["status"] == "draft"
        schedules = get_class_service().get_class_schedules(created["id"])
        assert schedules[0]["sessionDate"] == "2027-01-06"
        assert [s["sessionNumber"] for s in schedules] == [1, 2, 3, 4, 5, 6]

    def test_create_validates(self, school):
        with pytest.raises(ValidationError) as exc_info:
            get_class_service().create_class(class_payload(startTime="18:00", daysOfWeek=[7], minStudents=10))
        assert {"startTime", "daysOfWeek", "minStudents"} <= set(exc_info.value.errors)

    def test_duplicate_code(self, school):
        with pytest.raises(ValidationError):
            get_class_service().create_class(class_payload(code="ROB-SAT"))


class TestUpdateAndDelete:
    def test_update_ignores_enrolled_count(self, school):
        updated = get_class_service().update_class("c1", {"enrolledCount": 99, "name": "Renamed"})
        assert updated["enrolledCount"] == 0
        assert updated["name"] == "Renamed"

    def test_update_invalid_status(self, school):
        with pytest.raises(ValidationError):
            get_class_service().update_class_status("c1", "archived")

    def test_cannot_delete_with_students(self, school):
        school.seed("classes/c1", {**school.data("classes/c1"), "enrolledCount": 1})
        with pytest.raises(ValidationError):
            get_class_service().delete_class("c1")

    def test_delete_removes_schedules(self, school):
        assert get_class_service().delete_class("c1") is True
        assert school.ids("classes/c1/schedules") == []
        assert get_class_service().delete_class("c1") is False


class TestSessions:
    def test_future_session_cannot_be_completed_without_attendance(self, school):
        school.seed("classes/c1/schedules/future", {"sessionDate": "2999-01-01", "sessionNumber": 9,
                                                    "status": "scheduled", "attendance": []})
        updated = get_class_service().update_class_schedule("c1", "future", {"status": "completed"})
        assert updated["status"] == "scheduled"

    def test_clearing_attendance_on_future_session_resets_status(self, school):
        school.seed("classes/c1/schedules/future", {"sessionDate": "2999-01-01", "status": "completed",
                                                    "attendance": [{"studentId": "st1", "status": "present"}]})
        updated = get_class_service().update_class_schedule("c1", "future", {"attendance": []})
        assert updated["status"] == "scheduled"

    def test_reschedule_keeps_original_date(self, school):
        service = get_class_service()
        service.reschedule_session("c1", "sch1", "2027-01-03", "Teacher sick")
        moved = service.reschedule_session("c1", "sch1", "2027-01-04")
        assert moved["status"] == "rescheduled"
        assert moved["sessionDate"] == "2027-01-04"
        assert moved["originalDate"] == "2027-01-02"

    def test_missing_schedule(self, school):
        with pytest.raises(NotFoundError):
            get_class_service().update_class_schedule("c1", "nope", {"note": "x"})


class TestAttendance:
    def test_record_attendance_completes_session_and_creates_makeup(self, school):
        result = get_class_service().record_attendance("c1", "sch1", [
            {"studentId": "st1", "status": "sick", "note": "fever"},
        ], checked_by="t1")

        schedule = result["schedule"]
        assert schedule["status"] == "completed"
        assert schedule["actualTeacherId"] == "t1"
        assert len(result["makeups"]["created"]) == 1

        makeup = school.data(f"makeupClasses/{result['makeups']['created'][0]}")
        assert makeup["type"] == "ad-hoc"
        assert makeup["reason"] == "Sick leave"
        assert makeup["requestedBy"] == "system"
        assert makeup["parentLineUserId"] == "U-parent"

        entry = school.data("classes/c1/schedules/sch1")["attendance"][0]
        assert entry["status"] == "sick"
        assert entry["checkedBy"] == "t1"

    def test_present_students_get_no_makeup(self, school):
        result = get_class_service().record_attendance("c1", "sch1", [{"studentId": "st1", "status": "present"}])
        assert result["makeups"] == {"created": [], "skipped": []}

    def test_invalid_status(self, school):
        with pytest.raises(ValidationError):
            get_class_service().record_attendance("c1", "sch1", [{"studentId": "st1", "status": "asleep"}])

    def test_statistics(self, school):
        service = get_class_service()
        service.record_attendance("c1", "sch1", [
            {"studentId": "st1", "status": "present"},
            {"studentId": "x", "status": "late"},
        ])
        stats = service.get_class_statistics("c1")
        assert stats["totalSessions"] == 4
        assert stats["completedSessions"] == 1
        assert stats["attendanceRate"] == 50.0


class TestRoomAvailability:
    def test_overlapping_class_conflicts(self, school):
        result = get_class_service().check_room_availability(
            "b1", "r1", [6], "11:00", "13:00", "2027-01-01", "2027-01-31"
        )
        assert result["available"] is False
        assert result["conflicts"][0]["type"] == "class"

    def test_excluded_class_and_other_days_are_free(self, school):
        service = get_class_service()
        assert service.check_room_availability("b1", "r1", [6], "10:00", "12:00", "2027-01-01", "2027-01-31",
                                               exclude_class_id="c1")["available"] is True
        assert service.check_room_availability("b1", "r1", [0], "10:00", "12:00", "2027-01-01", "2027-01-31")["available"] is True

    def test_scheduled_trial_conflicts(self, school):
        school.seed("trialSessions/tr1", {"status": "scheduled", "branchId": "b1", "roomId": "r2",
                                          "scheduledDate": "2027-01-05", "startTime": "16:30", "endTime": "17:30",
                                          "studentName": "Pim"})
        result = get_class_service().check_room_availability(
            "b1", "r2", [2], "16:00", "17:00", "2027-01-01", "2027-01-31"
        )
        assert [c["type"] for c in result["conflicts"]] == ["trial"]
