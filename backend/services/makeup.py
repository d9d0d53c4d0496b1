"""
Makeup Class Service

A makeup class replaces a session a student missed. Requests start as
pending, become scheduled once staff pick a slot, and end as completed
(attendance recorded) or cancelled.

Makeup documents carry denormalized copies of student, parent, class and
subject fields so list views and notifications need no extra reads.
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import ConflictError, MakeupLimitReachedError, NotFoundError, ValidationError
from core.parsers import doc_to_dict, is_valid_time_range
from services.availability import get_availability_service
from services.parents import get_parent_service
from services.settings import get_settings_service

MAKEUP_STATUSES = ["pending", "scheduled", "completed", "cancelled"]
MAKEUP_TYPES = ["scheduled", "ad-hoc"]

AUTO_REASONS = {
    "sick": "Sick leave",
    "leave": "Personal leave",
    "absent": "Absent",
}


class MakeupService:
    """Service for makeup class requests."""

    MAKEUP_COLLECTION = "makeupClasses"
    CLASSES_COLLECTION = "classes"
    SCHEDULES_COLLECTION = "schedules"
    SUBJECTS_COLLECTION = "subjects"

    def __init__(self):
        self.db = get_firestore_client()

    def _query(self, **filters) -> List[Dict[str, Any]]:
        query = self.db.collection(self.MAKEUP_COLLECTION)
        for field_name, value in filters.items():
            if value is not None:
                query = query.where(field_name, "==", value)
        makeups = [doc_to_dict(doc) for doc in query.stream()]
        makeups.sort(key=lambda m: m.get("requestDate", ""), reverse=True)
        return makeups

    def get_makeup_classes(self, branch_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._query(branchId=branch_id, status=status)

    def get_makeup_classes_by_student(self, student_id: str) -> List[Dict[str, Any]]:
        return self._query(studentId=student_id)

    def get_makeup_classes_by_class(self, class_id: str) -> List[Dict[str, Any]]:
        return self._query(originalClassId=class_id)

    def get_makeup_class(self, makeup_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.MAKEUP_COLLECTION).document(makeup_id).get())

    def get_makeup_count(self, student_id: str, class_id: str) -> int:
        """Makeups used by a student in one class, cancelled ones excluded."""
        query = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("studentId", "==", student_id)
            .where("originalClassId", "==", class_id)
        )
        return sum(1 for doc in query.stream() if doc.to_dict().get("status") != "cancelled")

    def check_makeup_exists(self, student_id: str, class_id: str, schedule_id: str) -> Optional[Dict[str, Any]]:
        """The live makeup for one missed session, if any."""
        query = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("studentId", "==", student_id)
            .where("originalClassId", "==", class_id)
            .where("originalScheduleId", "==", schedule_id)
        )
        for doc in query.stream():
            makeup = doc_to_dict(doc)
            if makeup.get("status") != "cancelled":
                return makeup
        return None

    def _set_attendance(self, class_id: str, schedule_id: str, student_id: str,
                        entry: Optional[Dict[str, Any]]) -> None:
        """Replace (or with entry=None, remove) a student's attendance on a session."""
        ref = (
            self.db.collection(self.CLASSES_COLLECTION).document(class_id)
            .collection(self.SCHEDULES_COLLECTION).document(schedule_id)
        )
        snapshot = ref.get()
        if not snapshot.exists:
            return
        attendance = []
        previous = {}
        for existing in snapshot.to_dict().get("attendance") or []:
            if existing.get("studentId") == student_id:
                previous = existing
            else:
                attendance.append(existing)
        if entry is not None:
            attendance.append({**previous, **entry})
        ref.update({"attendance": attendance})

    def create_makeup_request(self, data: Dict[str, Any], bypass_limit: bool = False) -> Dict[str, Any]:
        """
        Create a pending makeup request for a missed session.

        Args:
            data: studentId, originalClassId, originalScheduleId, reason,
                type and requestedBy; parentId optional
            bypass_limit: Admin override of makeupLimitPerCourse

        Raises:
            ValidationError: Missing ids or a makeup already exists for the session
            NotFoundError: Class, session or student missing
            MakeupLimitReachedError: The student used up the makeup allowance
        """
        for required in ("studentId", "originalClassId", "originalScheduleId"):
            if not data.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})

        student_id = data["studentId"]
        class_id = data["originalClassId"]
        schedule_id = data["originalScheduleId"]

        settings = get_settings_service().get_makeup_settings()
        limit = settings.get("makeupLimitPerCourse") or 0
        if limit > 0 and not bypass_limit:
            count = self.get_makeup_count(student_id, class_id)
            if count >= limit:
                raise MakeupLimitReachedError(
                    f"Makeup limit reached ({count}/{limit}) for this class", count, limit
                )

        if self.check_makeup_exists(student_id, class_id, schedule_id):
            raise ValidationError("A makeup already exists for this session", {"originalScheduleId": "duplicate"})

        class_data = doc_to_dict(self.db.collection(self.CLASSES_COLLECTION).document(class_id).get())
        if class_data is None:
            raise NotFoundError(f"Class {class_id} not found", "class")
        schedule = doc_to_dict(
            self.db.collection(self.CLASSES_COLLECTION).document(class_id)
            .collection(self.SCHEDULES_COLLECTION).document(schedule_id).get()
        )
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found", "schedule")
        student = get_parent_service().get_student_with_parent(student_id, data.get("parentId"))
        if student is None:
            raise NotFoundError(f"Student {student_id} not found", "student")
        subject = doc_to_dict(
            self.db.collection(self.SUBJECTS_COLLECTION).document(class_data.get("subjectId", "-")).get()
        ) or {}

        makeup_type = data.get("type", "scheduled")
        if makeup_type not in MAKEUP_TYPES:
            raise ValidationError(f"Invalid makeup type: {makeup_type}", {"type": "invalid"})
        reason = data.get("reason", "")

        doc_ref = self.db.collection(self.MAKEUP_COLLECTION).document()
        makeup_data = {
            "type": makeup_type,
            "originalClassId": class_id,
            "originalScheduleId": schedule_id,
            "originalSessionNumber": schedule.get("sessionNumber"),
            "originalSessionDate": schedule.get("sessionDate"),
            "className": class_data.get("name", ""),
            "classCode": class_data.get("code", ""),
            "subjectId": class_data.get("subjectId"),
            "subjectName": subject.get("name", ""),
            "branchId": class_data.get("branchId"),
            "studentId": student_id,
            "studentName": student.get("name", ""),
            "studentNickname": student.get("nickname", ""),
            "parentId": student["parentId"],
            "parentName": student.get("parentName", ""),
            "parentPhone": student.get("parentPhone", ""),
            "parentLineUserId": student.get("parentLineUserId"),
            "requestDate": utc_timestamp(),
            "requestedBy": data.get("requestedBy", "admin"),
            "reason": reason,
            "status": "pending",
            "notes": data.get("notes", ""),
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }
        doc_ref.set(makeup_data)

        self._set_attendance(class_id, schedule_id, student_id, {
            "studentId": student_id,
            "status": data.get("attendanceStatus", "absent"),
            "note": f"Makeup requested: {reason}",
        })

        print(f"[Makeup] Created {makeup_type} request for {student_id} in {class_id}")
        makeup_data["id"] = doc_ref.id
        return makeup_data

    def schedule_makeup_class(self, makeup_id: str, schedule: Dict[str, Any],
                              confirmed_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Assign a date, time, teacher and room to a makeup.

        Raises:
            NotFoundError: Makeup missing
            ValidationError: Makeup already completed/cancelled or bad times
            ConflictError: Holiday, room or teacher clash
        """
        makeup = self.get_makeup_class(makeup_id)
        if makeup is None:
            raise NotFoundError(f"Makeup {makeup_id} not found", "makeup")
        if makeup.get("status") not in ("pending", "scheduled"):
            raise ValidationError(f"Cannot schedule a {makeup.get('status')} makeup", {"status": makeup.get("status")})
        for required in ("date", "startTime", "endTime", "teacherId", "branchId", "roomId"):
            if not schedule.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})
        if not is_valid_time_range(schedule["startTime"], schedule["endTime"]):
            raise ValidationError("Start time must be before end time", {"startTime": "invalid"})

        date_key = SchoolCalendar.date_key(schedule["date"])
        check = get_availability_service().check_availability(
            date_key, schedule["startTime"], schedule["endTime"], schedule["branchId"],
            room_id=schedule["roomId"], teacher_id=schedule["teacherId"],
            exclude_id=makeup_id, exclude_type="makeup",
        )
        if not check["available"]:
            raise ConflictError("The selected slot is not available", check["reasons"])

        doc_ref = self.db.collection(self.MAKEUP_COLLECTION).document(makeup_id)
        doc_ref.update({
            "status": "scheduled",
            "makeupSchedule": {
                "date": date_key,
                "startTime": schedule["startTime"],
                "endTime": schedule["endTime"],
                "teacherId": schedule["teacherId"],
                "branchId": schedule["branchId"],
                "roomId": schedule["roomId"],
                "confirmedBy": confirmed_by,
                "confirmedAt": utc_timestamp(),
            },
            "updatedAt": utc_timestamp(),
        })
        return doc_to_dict(doc_ref.get())

    def should_notify_parent(self) -> bool:
        return bool(get_settings_service().get_makeup_settings().get("sendLineNotification"))

    def record_makeup_attendance(self, makeup_id: str, status: str, checked_by: Optional[str] = None,
                                 note: str = "") -> Dict[str, Any]:
        if status not in ("present", "absent"):
            raise ValidationError("Attendance must be present or absent", {"status": "invalid"})
        makeup = self.get_makeup_class(makeup_id)
        if makeup is None:
            raise NotFoundError(f"Makeup {makeup_id} not found", "makeup")
        if makeup.get("status") != "scheduled":
            raise ValidationError("Only scheduled makeups can record attendance", {"status": makeup.get("status")})

        doc_ref = self.db.collection(self.MAKEUP_COLLECTION).document(makeup_id)
        doc_ref.update({
            "status": "completed",
            "attendance": {
                "status": status,
                "checkedBy": checked_by,
                "checkedAt": utc_timestamp(),
                "note": note,
            },
            "updatedAt": utc_timestamp(),
        })
        return doc_to_dict(doc_ref.get())

    def cancel_makeup_class(self, makeup_id: str, reason: str = "", cancelled_by: Optional[str] = None) -> Dict[str, Any]:
        makeup = self.get_makeup_class(makeup_id)
        if makeup is None:
            raise NotFoundError(f"Makeup {makeup_id} not found", "makeup")
        if makeup.get("status") == "completed":
            raise ValidationError("Completed makeups cannot be cancelled", {"status": "completed"})

        doc_ref = self.db.collection(self.MAKEUP_COLLECTION).document(makeup_id)
        doc_ref.update({
            "status": "cancelled",
            "notes": reason,
            "cancelledBy": cancelled_by,
            "cancelledAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        })
        return doc_to_dict(doc_ref.get())

    def delete_makeup_request(self, makeup_id: str, restore_attendance: bool = True) -> bool:
        """Remove a request entirely, clearing the absence it recorded."""
        makeup = self.get_makeup_class(makeup_id)
        if makeup is None:
            return False
        self.db.collection(self.MAKEUP_COLLECTION).document(makeup_id).delete()
        if restore_attendance:
            self._set_attendance(makeup["originalClassId"], makeup["originalScheduleId"], makeup["studentId"], None)
        return True

    def get_upcoming_makeup_classes(self, branch_id: Optional[str] = None, start=None, end=None) -> List[Dict[str, Any]]:
        """Scheduled makeups between start and end (default: today onwards)."""
        start_key = SchoolCalendar.date_key(start or SchoolCalendar.today())
        end_key = SchoolCalendar.date_key(end) if end else None

        results = []
        for makeup in self._query(status="scheduled"):
            slot = makeup.get("makeupSchedule") or {}
            slot_date = slot.get("date", "")
            if slot_date < start_key or (end_key and slot_date > end_key):
                continue
            if branch_id and slot.get("branchId") != branch_id:
                continue
            results.append(makeup)
        results.sort(key=lambda m: (m["makeupSchedule"]["date"], m["makeupSchedule"].get("startTime", "")))
        return results

    def auto_create_makeups(self, class_id: str, schedule_id: str,
                            attendance: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Create ad-hoc makeup requests from a saved attendance sheet.

        Students are skipped when their status is not eligible, when they
        already hold a makeup for the session, or when the course limit is
        used up.

        Returns:
            Dict with created makeup ids and skipped {studentId, reason} entries
        """
        settings = get_settings_service().get_makeup_settings()
        result = {"created": [], "skipped": []}
        if not settings.get("autoCreateMakeup"):
            return result

        eligible = set(settings.get("allowMakeupForStatuses") or [])
        limit = settings.get("makeupLimitPerCourse") or 0

        schedule = doc_to_dict(
            self.db.collection(self.CLASSES_COLLECTION).document(class_id)
            .collection(self.SCHEDULES_COLLECTION).document(schedule_id).get()
        ) or {}

        for entry in attendance:
            student_id = entry.get("studentId")
            status = entry.get("status")
            if status not in eligible:
                continue
            if self.check_makeup_exists(student_id, class_id, schedule_id):
                result["skipped"].append({"studentId": student_id, "reason": "exists"})
                continue
            if limit > 0 and self.get_makeup_count(student_id, class_id) >= limit:
                result["skipped"].append({"studentId": student_id, "reason": "limit"})
                continue

            try:
                makeup = self.create_makeup_request({
                    "type": "ad-hoc",
                    "studentId": student_id,
                    "originalClassId": class_id,
                    "originalScheduleId": schedule_id,
                    "reason": AUTO_REASONS.get(status, "Absent"),
                    "requestedBy": "system",
                    "attendanceStatus": status,
                    "notes": f"Auto-created from attendance (session {schedule.get('sessionNumber', '?')})",
                }, bypass_limit=True)
                result["created"].append(makeup["id"])
            except (NotFoundError, ValidationError) as e:
                print(f"[Makeup] Auto-create skipped for {student_id}: {e}")
                result["skipped"].append({"studentId": student_id, "reason": str(e)})

        if result["created"]:
            print(f"[Makeup] Auto-created {len(result['created'])} makeups for {class_id}/{schedule_id}")
        return result


_makeup_service: Optional[MakeupService] = None


def get_makeup_service() -> MakeupService:
    """Get singleton instance of MakeupService."""
    global _makeup_service
    if _makeup_service is None:
        initialize_firebase()
        _makeup_service = MakeupService()
    return _makeup_service
