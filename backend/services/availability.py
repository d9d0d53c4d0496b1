"""
Availability Service

Single-slot checks used when scheduling makeups and trials: is the school
open that day, is the room free, and is the teacher free?

Busy slots come from three sources:
- class sessions (only when the class really meets on that date)
- scheduled makeup classes
- scheduled trial sessions
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar
from core.parsers import times_overlap
from services.classes import ACTIVE_CLASS_STATUSES
from services.holidays import get_holiday_service


class AvailabilityService:
    """Service for room and teacher availability checks."""

    CLASSES_COLLECTION = "classes"
    SCHEDULES_COLLECTION = "schedules"
    MAKEUP_COLLECTION = "makeupClasses"
    TRIAL_SESSIONS_COLLECTION = "trialSessions"

    def __init__(self):
        self.db = get_firestore_client()

    def _class_meets_on(self, class_id: str, date_key: str) -> bool:
        query = (
            self.db.collection(self.CLASSES_COLLECTION).document(class_id)
            .collection(self.SCHEDULES_COLLECTION)
            .where("sessionDate", "==", date_key)
        )
        return any(doc.to_dict().get("status") != "cancelled" for doc in query.stream())

    def _busy_slots(self, date_key: str, branch_id: str) -> List[Dict[str, Any]]:
        """Every occupied slot in a branch on a date."""
        weekday = SchoolCalendar.day_of_week(date_key)
        slots = []

        classes = (
            self.db.collection(self.CLASSES_COLLECTION)
            .where("branchId", "==", branch_id)
            .where("status", "in", ACTIVE_CLASS_STATUSES)
        )
        for doc in classes.stream():
            class_data = doc.to_dict()
            if weekday not in (class_data.get("daysOfWeek") or []):
                continue
            if not (class_data.get("startDate", "") <= date_key <= class_data.get("endDate", "")):
                continue
            if not self._class_meets_on(doc.id, date_key):
                continue
            slots.append({
                "id": doc.id,
                "type": "class",
                "name": class_data.get("name", ""),
                "startTime": class_data["startTime"],
                "endTime": class_data["endTime"],
                "roomId": class_data.get("roomId"),
                "teacherId": class_data.get("teacherId"),
            })

        makeups = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("status", "==", "scheduled")
            .where("makeupSchedule.date", "==", date_key)
        )
        for doc in makeups.stream():
            makeup = doc.to_dict()
            slot = makeup.get("makeupSchedule") or {}
            if slot.get("branchId") != branch_id:
                continue
            slots.append({
                "id": doc.id,
                "type": "makeup",
                "name": f"Makeup: {makeup.get('studentNickname') or makeup.get('studentName', '')}",
                "startTime": slot["startTime"],
                "endTime": slot["endTime"],
                "roomId": slot.get("roomId"),
                "teacherId": slot.get("teacherId"),
            })

        trials = (
            self.db.collection(self.TRIAL_SESSIONS_COLLECTION)
            .where("status", "==", "scheduled")
            .where("scheduledDate", "==", date_key)
        )
        for doc in trials.stream():
            trial = doc.to_dict()
            if trial.get("branchId") != branch_id:
                continue
            slots.append({
                "id": doc.id,
                "type": "trial",
                "name": f"Trial: {trial.get('studentName', '')}",
                "startTime": trial["startTime"],
                "endTime": trial["endTime"],
                "roomId": trial.get("roomId"),
                "teacherId": trial.get("teacherId"),
            })

        return slots

    def _teacher_slots(self, date_key: str, teacher_id: str) -> List[Dict[str, Any]]:
        """Slots the teacher already has anywhere, across all branches."""
        weekday = SchoolCalendar.day_of_week(date_key)
        slots = []

        classes = (
            self.db.collection(self.CLASSES_COLLECTION)
            .where("teacherId", "==", teacher_id)
            .where("status", "in", ACTIVE_CLASS_STATUSES)
        )
        for doc in classes.stream():
            class_data = doc.to_dict()
            if weekday not in (class_data.get("daysOfWeek") or []):
                continue
            if not (class_data.get("startDate", "") <= date_key <= class_data.get("endDate", "")):
                continue
            if not self._class_meets_on(doc.id, date_key):
                continue
            slots.append({
                "id": doc.id, "type": "class", "name": class_data.get("name", ""),
                "startTime": class_data["startTime"], "endTime": class_data["endTime"],
            })

        makeups = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("status", "==", "scheduled")
            .where("makeupSchedule.teacherId", "==", teacher_id)
        )
        for doc in makeups.stream():
            makeup = doc.to_dict()
            slot = makeup.get("makeupSchedule") or {}
            if slot.get("date") != date_key:
                continue
            slots.append({
                "id": doc.id, "type": "makeup",
                "name": f"Makeup: {makeup.get('studentName', '')}",
                "startTime": slot["startTime"], "endTime": slot["endTime"],
            })

        trials = (
            self.db.collection(self.TRIAL_SESSIONS_COLLECTION)
            .where("status", "==", "scheduled")
            .where("teacherId", "==", teacher_id)
        )
        for doc in trials.stream():
            trial = doc.to_dict()
            if trial.get("scheduledDate") != date_key:
                continue
            slots.append({
                "id": doc.id, "type": "trial",
                "name": f"Trial: {trial.get('studentName', '')}",
                "startTime": trial["startTime"], "endTime": trial["endTime"],
            })

        return slots

    def check_availability(
        self,
        date,
        start_time: str,
        end_time: str,
        branch_id: str,
        room_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
        exclude_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Check a single slot on a single date.

        Args:
            exclude_id / exclude_type: Skip the record being edited so it
                does not conflict with itself

        Returns:
            Dict with available and a list of reasons, each carrying type
            (holiday | room_conflict | teacher_conflict), message and details
        """
        date_key = SchoolCalendar.date_key(date)
        reasons = []

        holiday = get_holiday_service().is_holiday(date_key, branch_id)
        if holiday:
            reasons.append({
                "type": "holiday",
                "message": f"{date_key} is a holiday: {holiday.get('name', '')}",
                "details": {"holidayName": holiday.get("name", "")},
            })

        def excluded(slot):
            if not exclude_id or slot["id"] != exclude_id:
                return False
            return exclude_type is None or slot["type"] == exclude_type

        if room_id:
            for slot in self._busy_slots(date_key, branch_id):
                if slot.get("roomId") != room_id or excluded(slot):
                    continue
                if times_overlap(start_time, end_time, slot["startTime"], slot["endTime"]):
                    reasons.append({
                        "type": "room_conflict",
                        "message": f"Room is booked by {slot['name']} ({slot['startTime']}-{slot['endTime']})",
                        "details": {
                            "conflictType": slot["type"],
                            "conflictName": slot["name"],
                            "conflictTime": f"{slot['startTime']}-{slot['endTime']}",
                        },
                    })

        if teacher_id:
            for slot in self._teacher_slots(date_key, teacher_id):
                if excluded(slot):
                    continue
                if times_overlap(start_time, end_time, slot["startTime"], slot["endTime"]):
                    reasons.append({
                        "type": "teacher_conflict",
                        "message": f"Teacher is teaching {slot['name']} ({slot['startTime']}-{slot['endTime']})",
                        "details": {
                            "conflictType": slot["type"],
                            "conflictName": slot["name"],
                            "conflictTime": f"{slot['startTime']}-{slot['endTime']}",
                        },
                    })

        return {"available": not reasons, "reasons": reasons}

    def is_time_slot_available(self, date, start_time: str, end_time: str, branch_id: str,
                               room_id: Optional[str] = None, teacher_id: Optional[str] = None) -> bool:
        return self.check_availability(date, start_time, end_time, branch_id, room_id, teacher_id)["available"]

    def check_teacher_availability(
        self,
        teacher_id: str,
        date,
        start_time: str,
        end_time: str,
        exclude_makeup_id: Optional[str] = None
    ) -> bool:
        date_key = SchoolCalendar.date_key(date)
        for slot in self._teacher_slots(date_key, teacher_id):
            if slot["type"] == "makeup" and slot["id"] == exclude_makeup_id:
                continue
            if times_overlap(start_time, end_time, slot["startTime"], slot["endTime"]):
                return False
        return True

    def get_day_conflicts(self, date, branch_id: str) -> Dict[str, Any]:
        """Holiday flag and the busy slots of a branch on one day, sorted by start time."""
        date_key = SchoolCalendar.date_key(date)
        holiday = get_holiday_service().is_holiday(date_key, branch_id)
        slots = sorted(self._busy_slots(date_key, branch_id), key=lambda s: s["startTime"])
        return {
            "date": date_key,
            "isHoliday": holiday is not None,
            "holidayName": holiday.get("name") if holiday else None,
            "busySlots": slots,
        }


_availability_service: Optional[AvailabilityService] = None


def get_availability_service() -> AvailabilityService:
    """Get singleton instance of AvailabilityService."""
    global _availability_service
    if _availability_service is None:
        initialize_firebase()
        _availability_service = AvailabilityService()
    return _availability_service
