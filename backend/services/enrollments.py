"""
Enrollment Service

Enrollments tie a student to a class. The class document keeps a
denormalized enrolledCount; every write that changes it runs in a
Firestore transaction so the count never exceeds maxStudents.
"""

from typing import List, Dict, Any, Optional

from firebase_admin import firestore

from core.config import get_firestore_client, initialize_firebase, run_transaction
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import ClassFullError, DuplicateEnrollmentError, NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict

ENROLLMENT_STATUSES = ["active", "completed", "dropped", "transferred"]
# A transferred enrollment keeps its seat in the class it moved into
SEAT_HOLDING_STATUSES = ["active", "transferred"]
PAYMENT_METHODS = ["cash", "transfer", "credit"]
PAYMENT_STATUSES = ["pending", "partial", "paid"]
DISCOUNT_TYPES = ["percentage", "fixed"]


def calculate_final_price(original: float, discount: float = 0, discount_type: str = "fixed") -> float:
    """Price after discount, never below zero."""
    if discount_type == "percentage":
        final = original * (1 - discount / 100)
    else:
        final = original - discount
    return max(0, round(final, 2))


def payment_status_for(paid_amount: float, final_price: float) -> str:
    if paid_amount >= final_price and final_price >= 0 and paid_amount > 0:
        return "paid"
    if paid_amount > 0:
        return "partial"
    return "pending"


class EnrollmentService:
    """Service for student enrollments."""

    ENROLLMENTS_COLLECTION = "enrollments"
    CLASSES_COLLECTION = "classes"

    def __init__(self):
        self.db = get_firestore_client()

    def _query(self, **filters) -> List[Dict[str, Any]]:
        query = self.db.collection(self.ENROLLMENTS_COLLECTION)
        for field_name, value in filters.items():
            if value is not None:
                query = query.where(field_name, "==", value)
        enrollments = [doc_to_dict(doc) for doc in query.stream()]
        enrollments.sort(key=lambda e: e.get("enrolledAt", ""), reverse=True)
        return enrollments

    def get_enrollments(self, branch_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._query(branchId=branch_id, status=status)

    def get_enrollments_by_class(self, class_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._query(classId=class_id, status=status)

    def get_class_roster(self, class_id: str) -> List[Dict[str, Any]]:
        """Enrollments currently holding a seat in the class."""
        return [
            e for e in self._query(classId=class_id)
            if e.get("status") in SEAT_HOLDING_STATUSES
        ]

    def get_enrollments_by_student(self, student_id: str) -> List[Dict[str, Any]]:
        return self._query(studentId=student_id)

    def get_enrollments_by_parent(self, parent_id: str) -> List[Dict[str, Any]]:
        return self._query(parentId=parent_id)

    def get_enrollment(self, enrollment_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.ENROLLMENTS_COLLECTION).document(enrollment_id).get())

    def check_duplicate_enrollment(self, student_id: str, class_id: str) -> bool:
        """True when the student already holds a seat in the class or has completed it."""
        query = (
            self.db.collection(self.ENROLLMENTS_COLLECTION)
            .where("studentId", "==", student_id)
            .where("classId", "==", class_id)
            .where("status", "in", SEAT_HOLDING_STATUSES + ["completed"])
        )
        return any(True for _ in query.stream())

    def check_available_seats(self, class_id: str) -> Dict[str, Any]:
        doc = self.db.collection(self.CLASSES_COLLECTION).document(class_id).get()
        if not doc.exists:
            raise NotFoundError(f"Class {class_id} not found", "class")
        class_data = doc.to_dict()
        enrolled = class_data.get("enrolledCount") or 0
        max_students = class_data.get("maxStudents") or 0
        return {
            "available": enrolled < max_students,
            "currentEnrolled": enrolled,
            "maxStudents": max_students,
            "availableSeats": max(0, max_students - enrolled),
        }

    def _build_pricing(self, pricing: Dict[str, Any]) -> Dict[str, Any]:
        original = pricing.get("originalPrice", 0) or 0
        discount = pricing.get("discount", 0) or 0
        discount_type = pricing.get("discountType", "fixed")
        if original < 0 or discount < 0:
            raise ValidationError("Prices cannot be negative", {"pricing": "negative"})
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Invalid discount type: {discount_type}", {"discountType": "invalid"})
        if discount_type == "percentage" and discount > 100:
            raise ValidationError("Percentage discount cannot exceed 100", {"discount": "too_large"})
        final_price = pricing.get("finalPrice")
        if final_price is None:
            final_price = calculate_final_price(original, discount, discount_type)
        return {
            "originalPrice": original,
            "discount": discount,
            "discountType": discount_type,
            "finalPrice": final_price,
            "promotionCode": pricing.get("promotionCode"),
        }

    def _build_payment(self, payment: Dict[str, Any], final_price: float) -> Dict[str, Any]:
        method = payment.get("method", "cash")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {method}", {"method": "invalid"})
        paid_amount = payment.get("paidAmount", 0) or 0
        status = payment.get("status") or payment_status_for(paid_amount, final_price)
        if status not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}", {"status": "invalid"})
        return {
            "method": method,
            "status": status,
            "paidAmount": paid_amount,
            "paidDate": payment.get("paidDate"),
            "receiptNumber": payment.get("receiptNumber"),
        }

    def create_enrollment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Enroll a student and increment the class count atomically.

        Raises:
            ValidationError: Missing ids or bad pricing/payment
            DuplicateEnrollmentError: Student already enrolled in the class
            NotFoundError: Class does not exist
            ClassFullError: enrolledCount already reached maxStudents
        """
        for required in ("studentId", "classId", "parentId"):
            if not data.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})

        student_id = data["studentId"]
        class_id = data["classId"]
        if self.check_duplicate_enrollment(student_id, class_id):
            raise DuplicateEnrollmentError("Student is already enrolled in this class")

        pricing = self._build_pricing(data.get("pricing") or {})
        payment = self._build_payment(data.get("payment") or {}, pricing["finalPrice"])

        class_ref = self.db.collection(self.CLASSES_COLLECTION).document(class_id)
        enrollment_ref = self.db.collection(self.ENROLLMENTS_COLLECTION).document()
        enrollment_data = {
            "studentId": student_id,
            "classId": class_id,
            "parentId": data["parentId"],
            "branchId": data.get("branchId"),
            "enrolledAt": utc_timestamp(),
            "status": "active",
            "pricing": pricing,
            "payment": payment,
            "notes": data.get("notes", ""),
        }

        def enroll(transaction):
            snapshot = class_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"Class {class_id} not found", "class")
            class_data = snapshot.to_dict()
            enrolled = class_data.get("enrolledCount") or 0
            max_students = class_data.get("maxStudents") or 0
            if enrolled >= max_students:
                raise ClassFullError(class_id, available_seats=0)

            if not enrollment_data["branchId"]:
                enrollment_data["branchId"] = class_data.get("branchId")
            transaction.set(enrollment_ref, enrollment_data)
            transaction.update(class_ref, {
                "enrolledCount": firestore.Increment(1),
                "updatedAt": utc_timestamp(),
            })

        run_transaction(enroll)
        print(f"[Enrollment] {student_id} enrolled in {class_id}")

        enrollment_data["id"] = enrollment_ref.id
        return enrollment_data

    def update_enrollment(self, enrollment_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update notes/pricing/payment. Status and class changes go through cancel/transfer."""
        doc_ref = self.db.collection(self.ENROLLMENTS_COLLECTION).document(enrollment_id)
        current = doc_to_dict(doc_ref.get())
        if current is None:
            raise NotFoundError(f"Enrollment {enrollment_id} not found", "enrollment")

        update_data = clean_update(data)
        for protected in ("enrolledAt", "classId", "studentId", "status"):
            update_data.pop(protected, None)
        if "pricing" in update_data:
            update_data["pricing"] = self._build_pricing({**current.get("pricing", {}), **update_data["pricing"]})
        if "payment" in update_data:
            final_price = (update_data.get("pricing") or current.get("pricing") or {}).get("finalPrice", 0)
            update_data["payment"] = self._build_payment(
                {**current.get("payment", {}), **update_data["payment"]}, final_price
            )
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def record_payment(
        self,
        enrollment_id: str,
        amount: float,
        method: str = "cash",
        receipt_number: Optional[str] = None,
        paid_date=None
    ) -> Dict[str, Any]:
        """Add a payment; status becomes paid once the final price is covered."""
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", {"amount": "invalid"})
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {method}", {"method": "invalid"})

        doc_ref = self.db.collection(self.ENROLLMENTS_COLLECTION).document(enrollment_id)
        enrollment = doc_to_dict(doc_ref.get())
        if enrollment is None:
            raise NotFoundError(f"Enrollment {enrollment_id} not found", "enrollment")

        payment = dict(enrollment.get("payment") or {})
        final_price = (enrollment.get("pricing") or {}).get("finalPrice", 0)
        paid_amount = (payment.get("paidAmount") or 0) + amount
        payment.update({
            "method": method,
            "paidAmount": paid_amount,
            "status": payment_status_for(paid_amount, final_price),
            "paidDate": SchoolCalendar.date_key(paid_date or SchoolCalendar.today()),
            "receiptNumber": receipt_number or payment.get("receiptNumber"),
        })
        doc_ref.update({"payment": payment, "updatedAt": utc_timestamp()})
        return doc_to_dict(doc_ref.get())

    def cancel_enrollment(self, enrollment_id: str, reason: str = "") -> Dict[str, Any]:
        """
        Drop an active enrollment and free its seat.

        Raises:
            NotFoundError: Enrollment does not exist
            ValidationError: Enrollment is not active
        """
        enrollment_ref = self.db.collection(self.ENROLLMENTS_COLLECTION).document(enrollment_id)

        def drop(transaction):
            snapshot = enrollment_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"Enrollment {enrollment_id} not found", "enrollment")
            enrollment = snapshot.to_dict()
            if enrollment.get("status") not in SEAT_HOLDING_STATUSES:
                raise ValidationError("Only active enrollments can be cancelled", {"status": enrollment.get("status")})

            class_ref = self.db.collection(self.CLASSES_COLLECTION).document(enrollment["classId"])
            transaction.update(enrollment_ref, {
                "status": "dropped",
                "droppedReason": reason,
                "droppedAt": utc_timestamp(),
                "updatedAt": utc_timestamp(),
            })
            transaction.update(class_ref, {
                "enrolledCount": firestore.Increment(-1),
                "updatedAt": utc_timestamp(),
            })

        run_transaction(drop)
        print(f"[Enrollment] {enrollment_id} dropped")
        return self.get_enrollment(enrollment_id)

    def transfer_enrollment(self, enrollment_id: str, new_class_id: str, reason: str = "") -> Dict[str, Any]:
        """
        Move an enrollment to another class.

        Reads the enrollment and the target class, then writes the
        enrollment and both class counters in one transaction.

        Raises:
            NotFoundError: Enrollment or target class missing
            ValidationError: Same class, or enrollment not active
            ClassFullError: Target class has no seats
        """
        enrollment_ref = self.db.collection(self.ENROLLMENTS_COLLECTION).document(enrollment_id)
        new_class_ref = self.db.collection(self.CLASSES_COLLECTION).document(new_class_id)

        def transfer(transaction):
            enrollment_snapshot = enrollment_ref.get(transaction=transaction)
            if not enrollment_snapshot.exists:
                raise NotFoundError(f"Enrollment {enrollment_id} not found", "enrollment")
            class_snapshot = new_class_ref.get(transaction=transaction)
            if not class_snapshot.exists:
                raise NotFoundError(f"Class {new_class_id} not found", "class")

            enrollment = enrollment_snapshot.to_dict()
            old_class_id = enrollment["classId"]
            if old_class_id == new_class_id:
                raise ValidationError("Enrollment is already in this class", {"classId": "same"})
            if enrollment.get("status") not in SEAT_HOLDING_STATUSES:
                raise ValidationError("Only active enrollments can be transferred", {"status": enrollment.get("status")})

            new_class = class_snapshot.to_dict()
            enrolled = new_class.get("enrolledCount") or 0
            max_students = new_class.get("maxStudents") or 0
            if enrolled >= max_students:
                raise ClassFullError(new_class_id, available_seats=0)

            history = list(enrollment.get("transferHistory") or [])
            history.append({
                "from": old_class_id,
                "to": new_class_id,
                "reason": reason,
                "transferredAt": utc_timestamp(),
            })
            transaction.update(enrollment_ref, {
                "classId": new_class_id,
                "branchId": new_class.get("branchId", enrollment.get("branchId")),
                "transferredFrom": old_class_id,
                "status": "transferred",
                "transferHistory": history,
                "updatedAt": utc_timestamp(),
            })
            transaction.update(self.db.collection(self.CLASSES_COLLECTION).document(old_class_id), {
                "enrolledCount": firestore.Increment(-1),
                "updatedAt": utc_timestamp(),
            })
            transaction.update(new_class_ref, {
                "enrolledCount": firestore.Increment(1),
                "updatedAt": utc_timestamp(),
            })

        run_transaction(transfer)
        print(f"[Enrollment] {enrollment_id} transferred to {new_class_id}")
        return self.get_enrollment(enrollment_id)

    def complete_class_enrollments(self, class_id: str) -> int:
        """Mark every seat-holding enrollment of a finished class as completed."""
        batch = self.db.batch()
        count = 0
        query = (
            self.db.collection(self.ENROLLMENTS_COLLECTION)
            .where("classId", "==", class_id)
            .where("status", "in", SEAT_HOLDING_STATUSES)
        )
        for doc in query.stream():
            batch.update(doc.reference, {"status": "completed", "completedAt": utc_timestamp()})
            count += 1
        if count:
            batch.commit()
        return count

    def get_enrollment_stats(self, branch_id: Optional[str] = None) -> Dict[str, Any]:
        enrollments = self.get_enrollments(branch_id=branch_id)
        stats = {
            "total": len(enrollments),
            "active": 0,
            "completed": 0,
            "dropped": 0,
            "transferred": 0,
            "totalRevenue": 0,
            "pendingPayments": 0,
        }
        for enrollment in enrollments:
            status = enrollment.get("status")
            if status in stats:
                stats[status] += 1
            payment = enrollment.get("payment") or {}
            if payment.get("status") == "paid":
                stats["totalRevenue"] += payment.get("paidAmount") or 0
            elif payment.get("status") == "pending":
                stats["pendingPayments"] += (enrollment.get("pricing") or {}).get("finalPrice") or 0
        return stats


_enrollment_service: Optional[EnrollmentService] = None


def get_enrollment_service() -> EnrollmentService:
    """Get singleton instance of EnrollmentService."""
    global _enrollment_service
    if _enrollment_service is None:
        initialize_firebase()
        _enrollment_service = EnrollmentService()
    return _enrollment_service
