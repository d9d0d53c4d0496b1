"""
Tests for services/enrollments.py - seat counting, payments, cancel and transfer
"""

import pytest

from core.errors import ClassFullError, DuplicateEnrollmentError, NotFoundError, ValidationError
from services.enrollments import calculate_final_price, get_enrollment_service, payment_status_for


def enroll(student_id, class_id="c1", **extra):
    return get_enrollment_service().create_enrollment({
        "studentId": student_id, "classId": class_id, "parentId": "p1", **extra,
    })


class TestPricing:
    def test_fixed_discount(self):
        assert calculate_final_price(4000, 500) == 3500

    def test_percentage_discount(self):
        assert calculate_final_price(4000, 10, "percentage") == 3600

    def test_never_negative(self):
        assert calculate_final_price(100, 500) == 0

    def test_payment_status(self):
        assert payment_status_for(0, 3000) == "pending"
        assert payment_status_for(1000, 3000) == "partial"
        assert payment_status_for(3000, 3000) == "paid"


class TestCreateEnrollment:
    def test_enroll_increments_count_and_copies_branch(self, school):
        enrollment = enroll("st1", pricing={"originalPrice": 4000, "discount": 10, "discountType": "percentage"})

        assert enrollment["status"] == "active"
        assert enrollment["branchId"] == "b1"
        assert enrollment["pricing"]["finalPrice"] == 3600
        assert enrollment["payment"]["status"] == "pending"
        assert school.data("classes/c1")["enrolledCount"] == 1

    def test_duplicate_rejected(self, school):
        enroll("st1")
        with pytest.raises(DuplicateEnrollmentError):
            enroll("st1")

    def test_full_class_rejected(self, school):
        enroll("a")
        enroll("b")
        with pytest.raises(ClassFullError) as exc_info:
            enroll("c")
        assert exc_info.value.class_id == "c1"
        assert school.data("classes/c1")["enrolledCount"] == 2

    def test_missing_class(self, school):
        with pytest.raises(NotFoundError):
            enroll("st1", class_id="nope")

    def test_percentage_over_100(self, school):
        with pytest.raises(ValidationError):
            enroll("st1", pricing={"originalPrice": 100, "discount": 120, "discountType": "percentage"})

    def test_seats(self, school):
        enroll("st1")
        seats = get_enrollment_service().check_available_seats("c1")
        assert seats == {"available": True, "currentEnrolled": 1, "maxStudents": 2, "availableSeats": 1}


class TestPayments:
    def test_partial_then_paid(self, school):
        enrollment = enroll("st1", pricing={"originalPrice": 3000})
        service = get_enrollment_service()

        updated = service.record_payment(enrollment["id"], 1000, "transfer", receipt_number="R-1", paid_date="2027-01-02")
        assert updated["payment"]["status"] == "partial"
        assert updated["payment"]["paidDate"] == "2027-01-02"

        updated = service.record_payment(enrollment["id"], 2000)
        assert updated["payment"]["status"] == "paid"
        assert updated["payment"]["paidAmount"] == 3000
        assert updated["payment"]["receiptNumber"] == "R-1"

    def test_non_positive_amount(self, school):
        enrollment = enroll("st1")
        with pytest.raises(ValidationError):
            get_enrollment_service().record_payment(enrollment["id"], 0)

    def test_update_cannot_change_class(self, school):
        enrollment = enroll("st1")
        updated = get_enrollment_service().update_enrollment(enrollment["id"], {"classId": "other", "notes": "sibling"})
        assert updated["classId"] == "c1"
        assert updated["notes"] == "sibling"


class TestCancelAndTransfer:
    def test_cancel_frees_seat(self, school):
        enrollment = enroll("st1")
        dropped = get_enrollment_service().cancel_enrollment(enrollment["id"], "Moved away")
        assert dropped["status"] == "dropped"
        assert dropped["droppedReason"] == "Moved away"
        assert school.data("classes/c1")["enrolledCount"] == 0

    def test_cancel_twice_rejected(self, school):
        enrollment = enroll("st1")
        service = get_enrollment_service()
        service.cancel_enrollment(enrollment["id"])
        with pytest.raises(ValidationError):
            service.cancel_enrollment(enrollment["id"])

    def test_transfer_moves_counts(self, school):
        school.seed("classes/c2", {"name": "Robotics Sunday", "branchId": "b1", "maxStudents": 5,
                                   "enrolledCount": 1, "status": "published"})
        enrollment = enroll("st1")

        moved = get_enrollment_service().transfer_enrollment(enrollment["id"], "c2", "Schedule clash")

        assert moved["classId"] == "c2"
        assert moved["transferredFrom"] == "c1"
        assert moved["status"] == "transferred"
        assert moved["transferHistory"][0]["reason"] == "Schedule clash"
        assert school.data("classes/c1")["enrolledCount"] == 0
        assert school.data("classes/c2")["enrolledCount"] == 2

    def test_transfer_to_same_class(self, school):
        enrollment = enroll("st1")
        with pytest.raises(ValidationError):
            get_enrollment_service().transfer_enrollment(enrollment["id"], "c1")

    def test_transfer_to_full_class(self, school):
        school.seed("classes/c2", {"name": "Full", "branchId": "b1", "maxStudents": 1, "enrolledCount": 1})
        enrollment = enroll("st1")
        with pytest.raises(ClassFullError):
            get_enrollment_service().transfer_enrollment(enrollment["id"], "c2")
        assert school.data("classes/c1")["enrolledCount"] == 1

    def test_transferred_student_cannot_enroll_again(self, school):
        school.seed("classes/c2", {"name": "Robotics Sunday", "branchId": "b1", "maxStudents": 5,
                                   "enrolledCount": 0, "status": "published"})
        service = get_enrollment_service()
        service.transfer_enrollment(enroll("st1")["id"], "c2")

        assert service.check_duplicate_enrollment("st1", "c2") is True
        with pytest.raises(DuplicateEnrollmentError):
            enroll("st1", class_id="c2")
        assert school.data("classes/c2")["enrolledCount"] == 1
        assert [e["studentId"] for e in service.get_class_roster("c2")] == ["st1"]

    def test_transferred_enrollment_can_be_dropped(self, school):
        school.seed("classes/c2", {"name": "Robotics Sunday", "branchId": "b1", "maxStudents": 5,
                                   "enrolledCount": 0, "status": "published"})
        service = get_enrollment_service()
        moved = service.transfer_enrollment(enroll("st1")["id"], "c2")

        assert service.cancel_enrollment(moved["id"])["status"] == "dropped"
        assert school.data("classes/c2")["enrolledCount"] == 0

    def test_complete_class_enrollments(self, school):
        enroll("a")
        enroll("b")
        assert get_enrollment_service().complete_class_enrollments("c1") == 2
        assert get_enrollment_service().get_enrollments_by_class("c1", status="completed")[0]["status"] == "completed"

    def test_complete_includes_transferred_in(self, school):
        school.seed("enrollments/moved", {"studentId": "st9", "classId": "c1", "parentId": "p1",
                                          "status": "transferred", "transferredFrom": "c0"})
        enroll("a")
        assert get_enrollment_service().complete_class_enrollments("c1") == 2
        assert school.data("enrollments/moved")["status"] == "completed"


class TestStats:
    def test_revenue_and_pending(self, school):
        paid = enroll("a", pricing={"originalPrice": 3000}, payment={"paidAmount": 3000})
        enroll("b", pricing={"originalPrice": 2000})
        stats = get_enrollment_service().get_enrollment_stats()
        assert stats["total"] == 2
        assert stats["active"] == 2
        assert stats["totalRevenue"] == 3000
        assert stats["pendingPayments"] == 2000
        assert paid["payment"]["status"] == "paid"
