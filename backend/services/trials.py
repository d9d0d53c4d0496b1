"""
Trial Booking Service

A trial booking is a lead: one parent asking for trial classes for one or
more children. Staff contact the parent, schedule trial sessions per
child, and convert attendees into real enrollments.

Booking lifecycle: new -> contacted -> scheduled -> completed -> converted
(or cancelled at any point).
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import ClassFullError, ConflictError, NotFoundError, ValidationError
from core.parsers import (
    clean_update,
    doc_to_dict,
    is_valid_email,
    is_valid_thai_phone,
    is_valid_time_range,
    normalize_phone,
    times_overlap,
)
from services.classes import get_class_service
from services.enrollments import get_enrollment_service
from services.parents import get_parent_service

BOOKING_STATUSES = ["new", "contacted", "scheduled", "completed", "converted", "cancelled"]
BOOKING_SOURCES = ["online", "walkin", "phone"]
SESSION_STATUSES = ["scheduled", "attended", "absent", "cancelled"]


def validate_booking(data: Dict[str, Any]) -> Dict[str, str]:
    """Field errors for a trial booking; empty when valid."""
    errors = {}
    if not (data.get("parentName") or "").strip():
        errors["parentName"] = "Parent name is required"
    if not data.get("parentPhone"):
        errors["parentPhone"] = "Phone number is required"
    elif not is_valid_thai_phone(data["parentPhone"]):
        errors["parentPhone"] = "Phone must be 9-10 digits starting with 0"
    if data.get("parentEmail") and not is_valid_email(data["parentEmail"]):
        errors["parentEmail"] = "Invalid email address"
    if data.get("source") and data["source"] not in BOOKING_SOURCES:
        errors["source"] = f"Source must be one of {', '.join(BOOKING_SOURCES)}"

    students = data.get("students") or []
    if not students:
        errors["students"] = "At least one student is required"
    for index, student in enumerate(students):
        if not (student.get("name") or "").strip():
            errors[f"students[{index}].name"] = "Student name is required"
        if not student.get("subjectInterests"):
            errors[f"students[{index}].subjectInterests"] = "Select at least one subject"
    return errors


class TrialService:
    """Service for trial bookings and trial sessions."""

    BOOKINGS_COLLECTION = "trialBookings"
    SESSIONS_COLLECTION = "trialSessions"

    def __init__(self):
        self.db = get_firestore_client()

    # --- Bookings ---

    def get_trial_bookings(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.collection(self.BOOKINGS_COLLECTION)
        if branch_id:
            query = query.where("branchId", "==", branch_id)
        bookings = [doc_to_dict(doc) for doc in query.stream()]
        bookings.sort(key=lambda b: b.get("createdAt", ""), reverse=True)
        return bookings

    def get_trial_bookings_by_status(self, status: str) -> List[Dict[str, Any]]:
        query = self.db.collection(self.BOOKINGS_COLLECTION).where("status", "==", status)
        bookings = [doc_to_dict(doc) for doc in query.stream()]
        bookings.sort(key=lambda b: b.get("createdAt", ""), reverse=True)
        return bookings

    def get_trial_booking(self, booking_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.BOOKINGS_COLLECTION).document(booking_id).get())

    def create_trial_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record a new trial lead.

        Raises:
            ValidationError: With per-field errors
        """
        errors = validate_booking(data)
        if errors:
            raise ValidationError("Invalid trial booking", errors)

        doc_ref = self.db.collection(self.BOOKINGS_COLLECTION).document()
        booking_data = {
            "source": data.get("source", "online"),
            "parentName": data["parentName"].strip(),
            "parentPhone": normalize_phone(data["parentPhone"]),
            "parentEmail": data.get("parentEmail") or None,
            "parentLineId": data.get("parentLineId"),
            "branchId": data.get("branchId"),
            "students": [
                {
                    "name": s["name"].strip(),
                    "schoolName": s.get("schoolName"),
                    "gradeLevel": s.get("gradeLevel"),
                    "birthdate": s.get("birthdate"),
                    "subjectInterests": s["subjectInterests"],
                }
                for s in data["students"]
            ],
            "status": "new",
            "contactNote": data.get("contactNote", ""),
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }
        doc_ref.set(booking_data)
        booking_data["id"] = doc_ref.id
        return booking_data

    def update_trial_booking(self, booking_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.BOOKINGS_COLLECTION).document(booking_id)
        current = doc_to_dict(doc_ref.get())
        if current is None:
            raise NotFoundError(f"Trial booking {booking_id} not found", "trialBooking")

        update_data = clean_update(data)
        update_data.pop("status", None)
        errors = validate_booking({**current, **update_data})
        if errors:
            raise ValidationError("Invalid trial booking", errors)
        if "parentPhone" in update_data:
            update_data["parentPhone"] = normalize_phone(update_data["parentPhone"])
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def update_booking_status(self, booking_id: str, status: str, note: Optional[str] = None) -> Dict[str, Any]:
        if status not in BOOKING_STATUSES:
            raise ValidationError(f"Invalid booking status: {status}", {"status": "invalid"})
        doc_ref = self.db.collection(self.BOOKINGS_COLLECTION).document(booking_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Trial booking {booking_id} not found", "trialBooking")

        update_data = {"status": status, "updatedAt": utc_timestamp()}
        if status == "contacted":
            update_data["contactedAt"] = utc_timestamp()
        if note:
            update_data["contactNote"] = note
        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def delete_trial_booking(self, booking_id: str) -> bool:
        doc_ref = self.db.collection(self.BOOKINGS_COLLECTION).document(booking_id)
        if not doc_ref.get().exists:
            return False
        batch = self.db.batch()
        for session in self.get_trial_sessions_by_booking(booking_id):
            batch.delete(self.db.collection(self.SESSIONS_COLLECTION).document(session["id"]))
        batch.delete(doc_ref)
        batch.commit()
        return True

    # --- Sessions ---

    def get_trial_sessions(self, branch_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.collection(self.SESSIONS_COLLECTION)
        if branch_id:
            query = query.where("branchId", "==", branch_id)
        if status:
            query = query.where("status", "==", status)
        sessions = [doc_to_dict(doc) for doc in query.stream()]
        sessions.sort(key=lambda s: (s.get("scheduledDate", ""), s.get("startTime", "")))
        return sessions

    def get_trial_sessions_by_booking(self, booking_id: str) -> List[Dict[str, Any]]:
        query = self.db.collection(self.SESSIONS_COLLECTION).where("bookingId", "==", booking_id)
        sessions = [doc_to_dict(doc) for doc in query.stream()]
        sessions.sort(key=lambda s: (s.get("scheduledDate", ""), s.get("startTime", "")))
        return sessions

    def get_trial_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.SESSIONS_COLLECTION).document(session_id).get())

    def check_trial_room_availability(
        self,
        branch_id: str,
        room_id: str,
        date,
        start_time: str,
        end_time: str,
        exclude_session_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Room check against classes (and their makeups) plus other trials that day."""
        date_key = SchoolCalendar.date_key(date)
        weekday = SchoolCalendar.day_of_week(date_key)
        result = get_class_service().check_room_availability(
            branch_id, room_id, [weekday], start_time, end_time, date_key, date_key
        )
        conflicts = [c for c in result["conflicts"] if not (c["type"] == "trial" and c["id"] == exclude_session_id)]

        query = (
            self.db.collection(self.SESSIONS_COLLECTION)
            .where("branchId", "==", branch_id)
            .where("scheduledDate", "==", date_key)
        )
        seen = {c["id"] for c in conflicts if c["type"] == "trial"}
        for doc in query.stream():
            if doc.id == exclude_session_id or doc.id in seen:
                continue
            session = doc.to_dict()
            if session.get("roomId") != room_id or session.get("status") == "cancelled":
                continue
            if times_overlap(start_time, end_time, session["startTime"], session["endTime"]):
                conflicts.append({
                    "type": "trial",
                    "id": doc.id,
                    "name": f"Trial: {session.get('studentName', '')}",
                    "date": date_key,
                    "startTime": session["startTime"],
                    "endTime": session["endTime"],
                })

        return {"available": not conflicts, "conflicts": conflicts}

    def create_trial_session(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Schedule a trial session for a child in a booking.

        Raises:
            ValidationError: Missing fields or bad time range
            NotFoundError: Booking missing
            ConflictError: Room already used in that slot
        """
        for required in ("bookingId", "studentName", "subjectId", "scheduledDate",
                         "startTime", "endTime", "teacherId", "branchId", "roomId"):
            if not data.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})
        if not is_valid_time_range(data["startTime"], data["endTime"]):
            raise ValidationError("Start time must be before end time", {"startTime": "invalid"})

        booking = self.get_trial_booking(data["bookingId"])
        if booking is None:
            raise NotFoundError(f"Trial booking {data['bookingId']} not found", "trialBooking")

        date_key = SchoolCalendar.date_key(data["scheduledDate"])
        check = self.check_trial_room_availability(
            data["branchId"], data["roomId"], date_key, data["startTime"], data["endTime"]
        )
        if not check["available"]:
            raise ConflictError("The room is not available at that time", check["conflicts"])

        doc_ref = self.db.collection(self.SESSIONS_COLLECTION).document()
        session_data = {
            "bookingId": data["bookingId"],
            "studentName": data["studentName"].strip(),
            "subjectId": data["subjectId"],
            "scheduledDate": date_key,
            "startTime": data["startTime"],
            "endTime": data["endTime"],
            "teacherId": data["teacherId"],
            "branchId": data["branchId"],
            "roomId": data["roomId"],
            "roomName": data.get("roomName"),
            "parentPhone": booking.get("parentPhone"),
            "status": "scheduled",
            "attended": None,
            "feedback": None,
            "interestedLevel": None,
            "converted": False,
            "createdAt": utc_timestamp(),
        }
        doc_ref.set(session_data)

        if booking.get("status") in ("new", "contacted"):
            self.db.collection(self.BOOKINGS_COLLECTION).document(booking["id"]).update({
                "status": "scheduled",
                "updatedAt": utc_timestamp(),
            })

        session_data["id"] = doc_ref.id
        return session_data

    def update_trial_session(self, session_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.SESSIONS_COLLECTION).document(session_id)
        current = doc_to_dict(doc_ref.get())
        if current is None:
            raise NotFoundError(f"Trial session {session_id} not found", "trialSession")

        update_data = clean_update(data)
        status = update_data.get("status")
        if status is not None and status not in SESSION_STATUSES:
            raise ValidationError(f"Invalid session status: {status}", {"status": "invalid"})
        if "scheduledDate" in update_data:
            update_data["scheduledDate"] = SchoolCalendar.date_key(update_data["scheduledDate"])

        moved = any(k in update_data for k in ("scheduledDate", "startTime", "endTime", "roomId"))
        if moved:
            merged = {**current, **update_data}
            check = self.check_trial_room_availability(
                merged["branchId"], merged["roomId"], merged["scheduledDate"],
                merged["startTime"], merged["endTime"], exclude_session_id=session_id
            )
            if not check["available"]:
                raise ConflictError("The room is not available at that time", check["conflicts"])

        if status in ("attended", "absent"):
            update_data["attended"] = status == "attended"
            update_data["completedAt"] = utc_timestamp()
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        if status == "attended":
            self._maybe_complete_booking(current["bookingId"])
        return doc_to_dict(doc_ref.get())

    def _maybe_complete_booking(self, booking_id: str):
        booking = self.get_trial_booking(booking_id)
        if booking and booking.get("status") == "scheduled":
            self.update_booking_status(booking_id, "completed")

    def cancel_trial_session(self, session_id: str, reason: str = "") -> Dict[str, Any]:
        doc_ref = self.db.collection(self.SESSIONS_COLLECTION).document(session_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Trial session {session_id} not found", "trialSession")
        doc_ref.update({
            "status": "cancelled",
            "feedback": reason,
            "updatedAt": utc_timestamp(),
        })
        return doc_to_dict(doc_ref.get())

    def delete_trial_session(self, session_id: str) -> bool:
        doc_ref = self.db.collection(self.SESSIONS_COLLECTION).document(session_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True

    def convert_trial_to_enrollment(
        self,
        booking_id: str,
        session_id: str,
        class_id: str,
        pricing: Dict[str, Any],
        student_info: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Turn a trial attendee into an enrolled student.

        Reuses the parent matching the booking phone or creates one, creates
        the student, enrolls them (capacity enforced), and marks the session
        converted. The booking becomes converted once every session is
        converted or cancelled.

        Returns:
            Dict with parentId, studentId and enrollmentId

        Raises:
            NotFoundError: Booking, session or class missing
            ValidationError: Session already converted
            ClassFullError: The class has no seats
        """
        booking = self.get_trial_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Trial booking {booking_id} not found", "trialBooking")
        session = self.get_trial_session(session_id)
        if session is None or session.get("bookingId") != booking_id:
            raise NotFoundError(f"Trial session {session_id} not found", "trialSession")
        if session.get("converted"):
            raise ValidationError("This trial session has already been converted", {"sessionId": "converted"})
        class_data = get_class_service().get_class(class_id)
        if class_data is None:
            raise NotFoundError(f"Class {class_id} not found", "class")

        student_info = student_info or {}
        booking_student = next(
            (s for s in booking.get("students", []) if s.get("name") == session.get("studentName")),
            {"name": session.get("studentName", "")},
        )
        student_name = (student_info.get("name") or booking_student.get("name") or "").strip()
        if not student_name:
            raise ValidationError("Student name is required", {"name": "required"})

        enrollments = get_enrollment_service()
        seats = enrollments.check_available_seats(class_id)
        if not seats["available"]:
            raise ClassFullError(class_id, available_seats=0)

        parents = get_parent_service()
        parent = parents.get_parent_by_phone(booking["parentPhone"])
        created_parent = parent is None
        if created_parent:
            parent = parents.create_parent({
                "displayName": booking["parentName"],
                "phone": booking["parentPhone"],
                "email": booking.get("parentEmail"),
                "lineUserId": booking.get("parentLineId"),
                "preferredBranchId": booking.get("branchId") or class_data.get("branchId"),
            })

        student = parents.create_student(parent["id"], {
            "name": student_name,
            "nickname": student_info.get("nickname") or student_name.split()[0],
            "birthdate": student_info.get("birthdate") or booking_student.get("birthdate"),
            "gender": student_info.get("gender", "M"),
            "schoolName": student_info.get("schoolName") or booking_student.get("schoolName"),
            "gradeLevel": student_info.get("gradeLevel") or booking_student.get("gradeLevel"),
            "allergies": student_info.get("allergies"),
            "specialNeeds": student_info.get("specialNeeds"),
        })

        try:
            enrollment = enrollments.create_enrollment({
                "studentId": student["id"],
                "classId": class_id,
                "parentId": parent["id"],
                "branchId": class_data.get("branchId"),
                "pricing": pricing,
                "payment": {"method": "cash", "status": "pending", "paidAmount": 0},
                "notes": f"Converted from trial booking {booking_id}",
            })
        except Exception:
            # Undo the parent and student written above
            print(f"[Trials] Conversion of booking {booking_id} failed, removing student {student['id']}")
            parents.delete_student(parent["id"], student["id"])
            if created_parent:
                parents.delete_parent(parent["id"])
            raise

        self.db.collection(self.SESSIONS_COLLECTION).document(session_id).update({
            "converted": True,
            "convertedToClassId": class_id,
            "conversionNote": f"Enrolled in {class_data.get('name', class_id)}",
            "updatedAt": utc_timestamp(),
        })

        sessions = self.get_trial_sessions_by_booking(booking_id)
        if all(s.get("converted") or s.get("status") == "cancelled" for s in sessions):
            self.update_booking_status(booking_id, "converted")

        print(f"[Trials] Converted {student_name} from booking {booking_id} into {class_id}")
        return {"parentId": parent["id"], "studentId": student["id"], "enrollmentId": enrollment["id"]}

    def get_upcoming_trial_sessions(self, start=None, end=None, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        start_key = SchoolCalendar.date_key(start or SchoolCalendar.today())
        end_key = SchoolCalendar.date_key(end) if end else None
        return [
            s for s in self.get_trial_sessions(branch_id=branch_id, status="scheduled")
            if s.get("scheduledDate", "") >= start_key and (end_key is None or s["scheduledDate"] <= end_key)
        ]

    def get_trial_booking_stats(self, branch_id: Optional[str] = None) -> Dict[str, Any]:
        bookings = self.get_trial_bookings(branch_id)
        by_status = {status: 0 for status in BOOKING_STATUSES}
        by_source = {source: 0 for source in BOOKING_SOURCES}
        for booking in bookings:
            by_status[booking.get("status", "new")] = by_status.get(booking.get("status", "new"), 0) + 1
            source = booking.get("source", "online")
            by_source[source] = by_source.get(source, 0) + 1

        finished = by_status["completed"] + by_status["converted"]
        conversion_rate = round(by_status["converted"] / finished * 100, 1) if finished else 0
        return {
            "total": len(bookings),
            "byStatus": by_status,
            "bySource": by_source,
            "conversionRate": conversion_rate,
        }


_trial_service: Optional[TrialService] = None


def get_trial_service() -> TrialService:
    """Get singleton instance of TrialService."""
    global _trial_service
    if _trial_service is None:
        initialize_firebase()
        _trial_service = TrialService()
    return _trial_service
