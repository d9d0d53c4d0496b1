"""
LIFF Service

Operations behind the parent-facing LINE mini app. Every call is scoped
to the LINE user id of the caller, and ownership of students, sessions
and makeups is checked before anything is changed.
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import doc_to_dict, is_valid_thai_phone, normalize_phone
from services.branches import get_branch_service
from services.classes import get_class_service
from services.enrollments import SEAT_HOLDING_STATUSES, get_enrollment_service
from services.events import get_event_service, is_registration_open
from services.makeup import get_makeup_service
from services.parents import get_parent_service
from services.trials import get_trial_service

LEAVE_TYPES = ["sick", "leave"]


class LiffService:
    """Parent self-service operations."""

    TRIAL_SESSIONS_COLLECTION = "trialSessions"

    def __init__(self):
        self.db = get_firestore_client()

    def _require_parent(self, line_user_id: str) -> Dict[str, Any]:
        parent = get_parent_service().get_parent_by_line_id(line_user_id)
        if parent is None:
            raise NotFoundError("This LINE account is not linked to a parent", "parent")
        return parent

    def _require_student(self, parent: Dict[str, Any], student_id: str) -> Dict[str, Any]:
        student = get_parent_service().get_student(parent["id"], student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found", "student")
        return student

    def get_parent_profile(self, line_user_id: str) -> Dict[str, Any]:
        parent = self._require_parent(line_user_id)
        parent["students"] = get_parent_service().get_students_by_parent(parent["id"], active_only=True)
        return parent

    # --- Schedule ---

    def _student_sessions(self, student: Dict[str, Any], start_key: str, end_key: str) -> List[Dict[str, Any]]:
        classes = get_class_service()
        makeups = get_makeup_service()
        events = []

        for enrollment in get_enrollment_service().get_enrollments_by_student(student["id"]):
            if enrollment.get("status") not in SEAT_HOLDING_STATUSES:
                continue
            class_data = classes.get_class(enrollment["classId"])
            if class_data is None:
                continue
            requested = {
                m["originalScheduleId"]: m
                for m in makeups.get_makeup_classes_by_student(student["id"])
                if m.get("originalClassId") == class_data["id"]
            }

            for schedule in classes.get_class_schedules(class_data["id"]):
                session_date = schedule.get("sessionDate", "")
                if not start_key <= session_date <= end_key:
                    continue
                attendance = next(
                    (a for a in schedule.get("attendance") or [] if a.get("studentId") == student["id"]),
                    None,
                )
                makeup = requested.get(schedule["id"])
                events.append({
                    "id": f"{class_data['id']}-{schedule['id']}-{student['id']}",
                    "type": "class",
                    "classId": class_data["id"],
                    "scheduleId": schedule["id"],
                    "title": class_data.get("name", ""),
                    "date": session_date,
                    "startTime": class_data.get("startTime"),
                    "endTime": class_data.get("endTime"),
                    "branchId": class_data.get("branchId"),
                    "roomId": class_data.get("roomId"),
                    "teacherId": schedule.get("actualTeacherId") or class_data.get("teacherId"),
                    "sessionNumber": schedule.get("sessionNumber"),
                    "status": schedule.get("status"),
                    "attendanceStatus": attendance.get("status") if attendance else None,
                    "hasMakeupRequest": makeup is not None,
                    "makeupId": makeup["id"] if makeup else None,
                    "makeupStatus": makeup.get("status") if makeup else None,
                    "studentId": student["id"],
                    "studentName": student.get("nickname") or student.get("name"),
                })

        for makeup in makeups.get_makeup_classes_by_student(student["id"]):
            slot = makeup.get("makeupSchedule") or {}
            if makeup.get("status") not in ("scheduled", "completed") or not slot.get("date"):
                continue
            if not start_key <= slot["date"] <= end_key:
                continue
            events.append({
                "id": f"makeup-{makeup['id']}",
                "type": "makeup",
                "makeupId": makeup["id"],
                "classId": makeup.get("originalClassId"),
                "title": f"Makeup: {makeup.get('className', '')}",
                "date": slot["date"],
                "startTime": slot.get("startTime"),
                "endTime": slot.get("endTime"),
                "branchId": slot.get("branchId"),
                "roomId": slot.get("roomId"),
                "teacherId": slot.get("teacherId"),
                "status": makeup.get("status"),
                "attendanceStatus": (makeup.get("attendance") or {}).get("status"),
                "studentId": student["id"],
                "studentName": student.get("nickname") or student.get("name"),
            })
        return events

    def get_parent_schedule(self, line_user_id: str, start=None, end=None) -> Dict[str, Any]:
        """Classes, makeups and trials for every child of the caller, ordered by date."""
        parent = self._require_parent(line_user_id)
        start_key = SchoolCalendar.date_key(start or SchoolCalendar.days_from_today(-30))
        end_key = SchoolCalendar.date_key(end or SchoolCalendar.days_from_today(90))

        students = get_parent_service().get_students_by_parent(parent["id"], active_only=True)
        events = []
        for student in students:
            events.extend(self._student_sessions(student, start_key, end_key))

        query = self.db.collection(self.TRIAL_SESSIONS_COLLECTION).where("parentPhone", "==", parent.get("phone"))
        for doc in query.stream():
            trial = doc_to_dict(doc)
            if trial.get("status") == "cancelled":
                continue
            if not start_key <= trial.get("scheduledDate", "") <= end_key:
                continue
            events.append({
                "id": f"trial-{trial['id']}",
                "type": "trial",
                "title": f"Trial: {trial.get('studentName', '')}",
                "date": trial["scheduledDate"],
                "startTime": trial.get("startTime"),
                "endTime": trial.get("endTime"),
                "branchId": trial.get("branchId"),
                "roomId": trial.get("roomId"),
                "teacherId": trial.get("teacherId"),
                "status": trial.get("status"),
                "studentName": trial.get("studentName"),
            })

        events.sort(key=lambda e: (e["date"], e.get("startTime") or ""))
        return {
            "parent": {"id": parent["id"], "displayName": parent.get("displayName")},
            "students": students,
            "events": events,
            "stats": {s["id"]: self.get_student_schedule_stats(s["id"], events) for s in students},
        }

    def get_student_schedule_stats(self, student_id: str, events: List[Dict[str, Any]]) -> Dict[str, int]:
        today = SchoolCalendar.today().isoformat()
        classes = [e for e in events if e.get("studentId") == student_id and e["type"] == "class"]
        return {
            "total": len(classes),
            "completed": len([e for e in classes if e.get("status") == "completed"]),
            "upcoming": len([
                e for e in classes
                if e["date"] >= today and e.get("status") in ("scheduled", "rescheduled")
            ]),
            "absent": len([e for e in classes if e.get("attendanceStatus") in ("absent", "sick", "leave")]),
            "makeup": len([e for e in events if e.get("studentId") == student_id and e["type"] == "makeup"]),
        }

    # --- Leave requests ---

    def submit_leave_request(
        self,
        line_user_id: str,
        student_id: str,
        class_id: str,
        schedule_id: str,
        reason: str,
        leave_type: str = "leave"
    ) -> Dict[str, Any]:
        """
        Parent-initiated leave for an upcoming session, recorded as a makeup request.

        Raises:
            NotFoundError: Parent, student or session missing
            ValidationError: Leave already requested, or the session is past
        """
        if leave_type not in LEAVE_TYPES:
            raise ValidationError(f"Leave type must be one of {', '.join(LEAVE_TYPES)}", {"type": "invalid"})
        parent = self._require_parent(line_user_id)
        self._require_student(parent, student_id)

        schedule = get_class_service().get_class_schedule(class_id, schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found", "schedule")
        if schedule["sessionDate"] < SchoolCalendar.today().isoformat():
            raise ValidationError("Cannot request leave for a past session", {"scheduleId": "past"})

        makeups = get_makeup_service()
        if makeups.check_makeup_exists(student_id, class_id, schedule_id):
            raise ValidationError("Leave already requested for this session", {"scheduleId": "duplicate"})

        return makeups.create_makeup_request({
            "type": "scheduled",
            "studentId": student_id,
            "parentId": parent["id"],
            "originalClassId": class_id,
            "originalScheduleId": schedule_id,
            "reason": reason or ("Sick leave" if leave_type == "sick" else "Personal leave"),
            "requestedBy": "parent-liff",
            "attendanceStatus": leave_type,
        })

    def cancel_leave_request(
        self,
        line_user_id: str,
        makeup_id: str,
        student_id: str,
        class_id: str,
        schedule_id: str
    ) -> bool:
        parent = self._require_parent(line_user_id)
        self._require_student(parent, student_id)

        makeups = get_makeup_service()
        makeup = makeups.get_makeup_class(makeup_id)
        if makeup is None or makeup.get("studentId") != student_id:
            raise NotFoundError(f"Leave request {makeup_id} not found", "makeup")
        if makeup.get("originalClassId") != class_id or makeup.get("originalScheduleId") != schedule_id:
            raise ValidationError("Leave request does not match this session", {"scheduleId": "mismatch"})
        if makeup.get("status") != "pending":
            raise ValidationError("Only pending leave requests can be cancelled", {"status": makeup.get("status")})

        original_date = makeup.get("originalSessionDate")
        if original_date and original_date < SchoolCalendar.today().isoformat():
            raise ValidationError("The session has already passed", {"scheduleId": "past"})

        return makeups.delete_makeup_request(makeup_id, restore_attendance=True)

    # --- Account linking ---

    def link_account(self, token: str, phone: str, line_user_id: str,
                     display_name: Optional[str] = None, picture_url: Optional[str] = None) -> Dict[str, Any]:
        parents = get_parent_service()
        result = parents.verify_link_token(token, phone)
        if not result["valid"]:
            raise ValidationError(result["reason"], {"token": "invalid"})

        existing = parents.get_parent_by_line_id(line_user_id)
        if existing and existing["id"] != result["parent"]["id"]:
            raise ValidationError("This LINE account is already linked to another parent", {"lineUserId": "duplicate"})

        update = {
            "lineUserId": line_user_id,
            "lineFollowing": True,
            "lastLoginAt": utc_timestamp(),
        }
        if display_name:
            update["lineDisplayName"] = display_name
        if picture_url:
            update["pictureUrl"] = picture_url
        parent = parents.update_parent(result["parent"]["id"], update)
        parents.mark_token_used(result["tokenId"], line_user_id)
        print(f"[LIFF] Linked parent {parent['id']} to LINE account")
        return parent

    # --- Public trial booking ---

    def create_public_trial_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        branch_id = data.get("branchId")
        branch = get_branch_service().get_branch(branch_id) if branch_id else None
        if branch is None or not branch.get("isActive", True):
            raise ValidationError("Please choose an open branch", {"branchId": "invalid"})

        phone = normalize_phone(data.get("parentPhone"))
        if not is_valid_thai_phone(phone):
            raise ValidationError("Phone must be 9-10 digits starting with 0", {"parentPhone": "invalid"})

        return get_trial_service().create_trial_booking({**data, "parentPhone": phone, "source": "online"})

    # --- Events ---

    def get_open_events(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return get_event_service().get_published_events(branch_id)

    def register_for_event(self, line_user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register the caller for an event schedule.

        Linked parents are filled in from their record; guests supply name
        and phone themselves.
        """
        events = get_event_service()
        event = events.get_event(data.get("eventId") or "")
        if event is None:
            raise NotFoundError(f"Event {data.get('eventId')} not found", "event")
        if not is_registration_open(event):
            raise ValidationError("Registration for this event is closed", {"eventId": "closed"})

        parent = get_parent_service().get_parent_by_line_id(line_user_id)
        registration = {**data, "lineUserId": line_user_id, "registeredFrom": "liff"}
        if parent:
            registration.setdefault("parentId", parent["id"])
            registration["parentName"] = data.get("parentName") or parent.get("displayName", "")
            registration["parentPhone"] = data.get("parentPhone") or parent.get("phone", "")
        if not registration.get("parentName") or not is_valid_thai_phone(registration.get("parentPhone")):
            raise ValidationError("Name and a valid phone number are required", {"parentPhone": "invalid"})
        registration["parentPhone"] = normalize_phone(registration["parentPhone"])

        return events.create_event_registration(registration, event)

    def get_my_event_registrations(self, line_user_id: str) -> List[Dict[str, Any]]:
        return get_event_service().get_user_registrations(line_user_id=line_user_id)

    def cancel_my_event_registration(self, line_user_id: str, registration_id: str) -> Dict[str, Any]:
        """Parents may cancel only registrations made from their own LINE account."""
        events = get_event_service()
        registration = events.get_registration(registration_id)
        if registration is None or registration.get("lineUserId") != line_user_id:
            raise NotFoundError(f"Registration {registration_id} not found", "eventRegistration")
        return events.cancel_event_registration(registration_id, "Cancelled by parent", cancelled_by=line_user_id)


_liff_service: Optional[LiffService] = None


def get_liff_service() -> LiffService:
    """Get singleton instance of LiffService."""
    global _liff_service
    if _liff_service is None:
        initialize_firebase()
        _liff_service = LiffService()
    return _liff_service
