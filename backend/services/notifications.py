"""
LINE Notification Service

Builds parent-facing messages from the templates in settings/line and
pushes them through the LINE Messaging API. Firestore lookups are
synchronous; only the LINE calls are awaited.
"""

from typing import Dict, Any, List, Optional

from api.client import LineApiError, LineMessagingClient, flex_message, text_message
from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar
from core.parsers import doc_to_dict, render_template
from services.parents import get_parent_service
from services.settings import get_settings_service


def format_date_display(value) -> str:
    """e.g. 'Saturday 18 October 2026'"""
    d = SchoolCalendar.to_date(value)
    return f"{SchoolCalendar.day_name(SchoolCalendar.day_of_week(d))} {d.day} {d.strftime('%B %Y')}"


class NotificationService:
    """Service for outbound LINE notifications."""

    CLASSES_COLLECTION = "classes"
    SUBJECTS_COLLECTION = "subjects"
    BRANCHES_COLLECTION = "branches"
    TEACHERS_COLLECTION = "teachers"
    MAKEUP_COLLECTION = "makeupClasses"
    TRIAL_SESSIONS_COLLECTION = "trialSessions"
    TRIAL_BOOKINGS_COLLECTION = "trialBookings"
    ENROLLMENTS_COLLECTION = "enrollments"

    def __init__(self):
        self.db = get_firestore_client()

    def _get(self, collection: str, doc_id: Optional[str]) -> Dict[str, Any]:
        if not doc_id:
            return {}
        return doc_to_dict(self.db.collection(collection).document(doc_id).get()) or {}

    def _location(self, branch_id: Optional[str], room_id: Optional[str]) -> str:
        branch = self._get(self.BRANCHES_COLLECTION, branch_id)
        location = branch.get("name", "")
        if branch_id and room_id:
            room = doc_to_dict(
                self.db.collection(self.BRANCHES_COLLECTION).document(branch_id)
                .collection("rooms").document(room_id).get()
            ) or {}
            if room.get("name"):
                location = f"{location} {room['name']}".strip()
        return location

    # --- Sending ---

    async def _push(self, user_id: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        settings = get_settings_service().get_line_settings()
        if not settings.get("enableNotifications", True):
            return {"success": False, "error": "LINE notifications are disabled"}
        token = settings.get("messagingChannelAccessToken")
        if not token:
            return {"success": False, "error": "LINE channel access token is not configured"}

        try:
            async with LineMessagingClient(token) as client:
                await client.push_messages(user_id, messages)
            return {"success": True, "error": None}
        except LineApiError as e:
            print(f"[LINE] Push to {user_id} failed: {e}")
            return {"success": False, "error": str(e), "status": e.status_code}

    async def send_line_message(self, user_id: str, text: str) -> Dict[str, Any]:
        return await self._push(user_id, [text_message(text)])

    async def send_flex_message(self, user_id: str, alt_text: str, contents: Dict[str, Any]) -> Dict[str, Any]:
        return await self._push(user_id, [flex_message(alt_text, contents)])

    # --- Message builders ---

    def _templates(self) -> Dict[str, str]:
        return get_settings_service().get_line_settings().get("notificationTemplates", {})

    def build_class_reminder(self, student_name: str, subject_name: str, date, time: str, location: str) -> str:
        return render_template(self._templates().get("classReminder", ""), {
            "studentName": student_name,
            "subjectName": subject_name,
            "date": format_date_display(date),
            "time": time,
            "location": location,
        })

    def build_makeup_message(
        self,
        kind: str,
        student_name: str,
        subject_name: str,
        date,
        time: str,
        teacher_name: str,
        location: str
    ) -> str:
        """
        Makeup message for a confirmation ("scheduled") or the day-before
        reminder ("reminder").
        """
        body = render_template(self._templates().get("makeupConfirmation", ""), {
            "studentName": student_name,
            "subjectName": subject_name,
            "date": format_date_display(date),
            "time": time,
            "teacherName": teacher_name,
            "location": location,
        })
        if kind == "reminder":
            return f"[Makeup class tomorrow]\n{body}"
        return f"[Makeup class confirmed]\n{body}\n\nIf you cannot attend, please contact our staff."

    def build_trial_confirmation(self, student_name: str, subject_name: str, date, time: str,
                                 location: str, contact_phone: str) -> str:
        return render_template(self._templates().get("trialConfirmation", ""), {
            "studentName": student_name,
            "subjectName": subject_name,
            "date": format_date_display(date),
            "time": time,
            "location": location,
            "contactPhone": contact_phone,
        })

    def build_payment_reminder(self, student_name: str, course_name: str, amount: float,
                               due_date, payment_info: str = "") -> str:
        return render_template(self._templates().get("paymentReminder", ""), {
            "studentName": student_name,
            "courseName": course_name,
            "amount": f"{amount:,.0f}",
            "dueDate": format_date_display(due_date),
            "paymentInfo": payment_info,
        })

    # --- High level notifications ---

    async def send_class_reminder(self, student_id: str, class_id: str, session_date,
                                  parent_id: Optional[str] = None) -> bool:
        """Remind a parent about tomorrow's class; False when the parent has no LINE account."""
        student = get_parent_service().get_student_with_parent(student_id, parent_id)
        if not student or not student.get("parentLineUserId"):
            return False

        class_data = self._get(self.CLASSES_COLLECTION, class_id)
        if not class_data:
            return False
        subject = self._get(self.SUBJECTS_COLLECTION, class_data.get("subjectId"))

        text = self.build_class_reminder(
            student.get("nickname") or student.get("name", ""),
            subject.get("name") or class_data.get("name", ""),
            session_date,
            f"{class_data.get('startTime', '')}-{class_data.get('endTime', '')}",
            self._location(class_data.get("branchId"), class_data.get("roomId")),
        )
        result = await self.send_line_message(student["parentLineUserId"], text)
        return result["success"]

    async def send_makeup_notification(self, makeup_id: str, kind: str = "scheduled") -> bool:
        makeup = self._get(self.MAKEUP_COLLECTION, makeup_id)
        slot = makeup.get("makeupSchedule") or {}
        if not makeup or not slot.get("date"):
            return False

        line_user_id = makeup.get("parentLineUserId")
        if not line_user_id:
            student = get_parent_service().get_student_with_parent(makeup.get("studentId"), makeup.get("parentId"))
            line_user_id = (student or {}).get("parentLineUserId")
        if not line_user_id:
            return False

        teacher = self._get(self.TEACHERS_COLLECTION, slot.get("teacherId"))
        text = self.build_makeup_message(
            kind,
            makeup.get("studentNickname") or makeup.get("studentName", ""),
            makeup.get("subjectName") or makeup.get("className", ""),
            slot["date"],
            f"{slot.get('startTime', '')}-{slot.get('endTime', '')}",
            teacher.get("nickname") or teacher.get("name", ""),
            self._location(slot.get("branchId"), slot.get("roomId")),
        )
        result = await self.send_line_message(line_user_id, text)
        return result["success"]

    async def send_trial_confirmation(self, session_id: str) -> bool:
        session = self._get(self.TRIAL_SESSIONS_COLLECTION, session_id)
        if not session:
            return False
        booking = self._get(self.TRIAL_BOOKINGS_COLLECTION, session.get("bookingId"))
        if not booking.get("parentLineId"):
            return False

        subject = self._get(self.SUBJECTS_COLLECTION, session.get("subjectId"))
        branch = self._get(self.BRANCHES_COLLECTION, session.get("branchId"))
        text = self.build_trial_confirmation(
            session.get("studentName", ""),
            subject.get("name", ""),
            session["scheduledDate"],
            f"{session.get('startTime', '')}-{session.get('endTime', '')}",
            self._location(session.get("branchId"), session.get("roomId")),
            branch.get("phone", ""),
        )
        result = await self.send_line_message(booking["parentLineId"], text)
        return result["success"]

    async def send_payment_reminder(self, enrollment_id: str, due_date, payment_info: str = "") -> bool:
        enrollment = self._get(self.ENROLLMENTS_COLLECTION, enrollment_id)
        if not enrollment:
            return False
        student = get_parent_service().get_student_with_parent(enrollment["studentId"], enrollment.get("parentId"))
        if not student or not student.get("parentLineUserId"):
            return False

        class_data = self._get(self.CLASSES_COLLECTION, enrollment.get("classId"))
        pricing = enrollment.get("pricing") or {}
        payment = enrollment.get("payment") or {}
        outstanding = max(0, (pricing.get("finalPrice") or 0) - (payment.get("paidAmount") or 0))
        text = self.build_payment_reminder(
            student.get("nickname") or student.get("name", ""),
            class_data.get("name", ""),
            outstanding,
            due_date,
            payment_info,
        )
        result = await self.send_line_message(student["parentLineUserId"], text)
        return result["success"]

    async def send_event_reminder(self, registration: Dict[str, Any], event: Dict[str, Any]) -> bool:
        line_user_id = registration.get("lineUserId")
        if not line_user_id:
            return False
        text = (
            f"[Event reminder]\n"
            f"{event.get('name', '')}\n"
            f"Date: {format_date_display(registration['scheduleDate'])}\n"
            f"Time: {registration.get('scheduleTime', '')}\n"
            f"Location: {event.get('location', '')}\n"
            f"Attendees: {registration.get('attendeeCount', 1)}"
        )
        result = await self.send_line_message(line_user_id, text)
        return result["success"]


_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get singleton instance of NotificationService."""
    global _notification_service
    if _notification_service is None:
        initialize_firebase()
        _notification_service = NotificationService()
    return _notification_service
