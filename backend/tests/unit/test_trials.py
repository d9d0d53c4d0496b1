"""
Tests for services/trials.py - trial leads, sessions and conversion
"""

from unittest.mock import patch

import pytest

from core.errors import ClassFullError, ConflictError, ValidationError
from services.enrollments import EnrollmentService
from services.trials import get_trial_service, validate_booking


def booking_payload(**overrides):
    data = {
        "source": "online", "parentName": "Khun Dao", "parentPhone": "089-999-8888",
        "branchId": "b1",
        "students": [{"name": "Pim", "gradeLevel": "P3", "subjectInterests": ["s1"]}],
    }
    data.update(overrides)
    return data


def session_payload(booking_id, **overrides):
    data = {
        "bookingId": booking_id, "studentName": "Pim", "subjectId": "s1",
        "scheduledDate": "2027-01-06", "startTime": "15:00", "endTime": "16:00",
        "teacherId": "t1", "branchId": "b1", "roomId": "r2",
    }
    data.update(overrides)
    return data


class TestBookingValidation:
    def test_valid(self):
        assert validate_booking(booking_payload()) == {}

    def test_student_errors_are_indexed(self):
        errors = validate_booking(booking_payload(students=[{"name": "", "subjectInterests": []}]))
        assert "students[0].name" in errors
        assert "students[0].subjectInterests" in errors

    def test_phone_and_source(self):
        errors = validate_booking(booking_payload(parentPhone="12345", source="fax"))
        assert set(errors) == {"parentPhone", "source"}


class TestBookingsAndSessions:
    def test_booking_normalizes_phone(self, school):
        booking = get_trial_service().create_trial_booking(booking_payload())
        assert booking["status"] == "new"
        assert booking["parentPhone"] == "0899998888"

    def test_scheduling_moves_booking_to_scheduled(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))

        assert session["status"] == "scheduled"
        assert session["parentPhone"] == "0899998888"
        assert service.get_trial_booking(booking["id"])["status"] == "scheduled"

    def test_room_clash_with_class(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        with pytest.raises(ConflictError):
            service.create_trial_session(session_payload(
                booking["id"], scheduledDate="2027-01-09", startTime="11:00", endTime="12:00", roomId="r1"
            ))

    def test_room_clash_with_other_trial(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        service.create_trial_session(session_payload(booking["id"]))
        with pytest.raises(ConflictError):
            service.create_trial_session(session_payload(booking["id"], startTime="15:30", endTime="16:30"))

    def test_moving_session_excludes_itself(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))
        moved = service.update_trial_session(session["id"], {"startTime": "15:30", "endTime": "16:30"})
        assert moved["startTime"] == "15:30"

    def test_attended_completes_booking(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))

        updated = service.update_trial_session(session["id"], {"status": "attended", "interestedLevel": "high"})

        assert updated["attended"] is True
        assert service.get_trial_booking(booking["id"])["status"] == "completed"

    def test_invalid_booking_status(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        with pytest.raises(ValidationError):
            service.update_booking_status(booking["id"], "lost")


class TestConversion:
    def test_convert_creates_parent_student_and_enrollment(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))

        result = service.convert_trial_to_enrollment(
            booking["id"], session["id"], "c1", {"originalPrice": 4000}, {"gender": "F"}
        )

        parent = school.data(f"parents/{result['parentId']}")
        assert parent["phone"] == "0899998888"
        student = school.data(f"parents/{result['parentId']}/students/{result['studentId']}")
        assert student["gradeLevel"] == "P3"
        assert school.data(f"enrollments/{result['enrollmentId']}")["pricing"]["finalPrice"] == 4000
        assert school.data("classes/c1")["enrolledCount"] == 1
        assert service.get_trial_session(session["id"])["converted"] is True
        assert service.get_trial_booking(booking["id"])["status"] == "converted"

    def test_convert_reuses_parent_with_same_phone(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload(parentPhone="0812345678"))
        session = service.create_trial_session(session_payload(booking["id"]))

        result = service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})

        assert result["parentId"] == "p1"

    def test_cannot_convert_twice(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))
        service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})
        with pytest.raises(ValidationError):
            service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})

    def test_full_class_leaves_session_unconverted(self, school):
        school.seed("classes/c1", {**school.data("classes/c1"), "enrolledCount": 2})
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))
        with pytest.raises(ClassFullError):
            service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})
        assert service.get_trial_session(session["id"])["converted"] is False
        assert school.ids("parents") == ["p1"]
        assert school.ids("parents/p1/students") == ["st1"]

    def test_lost_seat_removes_created_parent_and_student(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))

        with patch.object(EnrollmentService, "create_enrollment", side_effect=ClassFullError("c1")):
            with pytest.raises(ClassFullError):
                service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})

        assert school.ids("parents") == ["p1"]
        assert school.ids("parents/p1/students") == ["st1"]

    def test_lost_seat_keeps_existing_parent(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload(parentPhone="0812345678"))
        session = service.create_trial_session(session_payload(booking["id"]))

        with patch.object(EnrollmentService, "create_enrollment", side_effect=ClassFullError("c1")):
            with pytest.raises(ClassFullError):
                service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"gender": "F"})

        assert school.data("parents/p1") is not None
        assert school.ids("parents/p1/students") == ["st1"]

    def test_blank_student_name(self, school):
        service = get_trial_service()
        booking = service.create_trial_booking(booking_payload())
        session = service.create_trial_session(session_payload(booking["id"]))
        with pytest.raises(ValidationError) as exc_info:
            service.convert_trial_to_enrollment(booking["id"], session["id"], "c1", {}, {"name": "   "})
        assert exc_info.value.errors == {"name": "required"}
        assert school.ids("parents") == ["p1"]

    def test_stats_conversion_rate(self, school):
        school.seed("trialBookings/a", {"status": "converted", "createdAt": "1"})
        school.seed("trialBookings/b", {"status": "completed", "createdAt": "2"})
        school.seed("trialBookings/c", {"status": "new", "createdAt": "3"})
        stats = get_trial_service().get_trial_booking_stats()
        assert stats["byStatus"]["converted"] == 1
        assert stats["conversionRate"] == 50.0
