"""
Holiday Reschedule Service

When a school-closed holiday is added after classes were generated, the
sessions falling on it are moved to the next free teaching day of the
same class. Removing the holiday can move them back.
"""

from datetime import timedelta
from typing import List, Dict, Any, Optional, Set, Tuple

from firebase_admin import firestore

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.parsers import doc_to_dict
from services.classes import ACTIVE_CLASS_STATUSES
from services.holidays import get_holiday_service, holiday_applies_to_branch

EXTENSION_WINDOW_DAYS = 30


class RescheduleService:
    """Moves class sessions around closed holidays."""

    CLASSES_COLLECTION = "classes"
    SCHEDULES_COLLECTION = "schedules"

    def __init__(self):
        self.db = get_firestore_client()

    def _schedules(self, class_id: str):
        return self.db.collection(self.CLASSES_COLLECTION).document(class_id).collection(self.SCHEDULES_COLLECTION)

    def _active_classes(self) -> List[Dict[str, Any]]:
        query = self.db.collection(self.CLASSES_COLLECTION).where("status", "in", ACTIVE_CLASS_STATUSES)
        return [doc_to_dict(doc) for doc in query.stream()]

    def _class_covers(self, class_data: Dict[str, Any], holiday: Dict[str, Any]) -> bool:
        """Branch, weekday and date range all line up with the holiday."""
        holiday_date = holiday["date"]
        if not holiday_applies_to_branch(holiday, class_data.get("branchId")):
            return False
        if SchoolCalendar.day_of_week(holiday_date) not in (class_data.get("daysOfWeek") or []):
            return False
        return class_data.get("startDate", "") <= holiday_date <= class_data.get("endDate", "")

    def _closed_dates(self, branch_id: Optional[str], start, end, ignore_holiday_id: Optional[str] = None) -> Set[str]:
        return {
            h["date"] for h in get_holiday_service().get_holidays_in_range(start, end)
            if h.get("isSchoolClosed")
            and holiday_applies_to_branch(h, branch_id)
            and h.get("id") != ignore_holiday_id
        }

    def _taken_dates(self, class_id: str, exclude_schedule_id: Optional[str] = None) -> Set[str]:
        return {
            doc.to_dict().get("sessionDate")
            for doc in self._schedules(class_id).stream()
            if doc.id != exclude_schedule_id and doc.to_dict().get("status") != "cancelled"
        }

    def get_affected_classes(self, holiday: Dict[str, Any]) -> List[Tuple[Dict[str, Any], List[Dict[str, Any]]]]:
        """
        Active classes with a scheduled session on the holiday.

        Returns:
            List of (class, schedules) pairs; empty for holidays that do not close the school
        """
        if not holiday.get("isSchoolClosed"):
            return []

        affected = []
        for class_data in self._active_classes():
            if not self._class_covers(class_data, holiday):
                continue
            query = self._schedules(class_data["id"]).where("sessionDate", "==", holiday["date"])
            schedules = [
                doc_to_dict(doc) for doc in query.stream()
                if doc.to_dict().get("status") == "scheduled"
            ]
            if schedules:
                affected.append((class_data, schedules))
        return affected

    def find_next_available_date(self, class_data: Dict[str, Any], from_date,
                                 exclude_schedule_id: Optional[str] = None) -> Optional[str]:
        """
        First date after from_date, up to the class end date, that is a
        class weekday, not a closed holiday and free of other sessions.
        """
        start = SchoolCalendar.to_date(from_date) + timedelta(days=1)
        end = SchoolCalendar.to_date(class_data["endDate"])
        if start > end:
            return None

        days = set(class_data.get("daysOfWeek") or [])
        closed = self._closed_dates(class_data.get("branchId"), start, end)
        taken = self._taken_dates(class_data["id"], exclude_schedule_id)

        for current in SchoolCalendar.iter_dates(start, end):
            key = current.isoformat()
            if SchoolCalendar.day_of_week(current) in days and key not in closed and key not in taken:
                return key
        return None

    def extend_class_end_date(self, class_data: Dict[str, Any]) -> Optional[str]:
        """
        Find a teaching day within 30 days past the end date and move the
        class end date to it. Returns the new date, or None if none fits.
        """
        start = SchoolCalendar.to_date(class_data["endDate"]) + timedelta(days=1)
        end = start + timedelta(days=EXTENSION_WINDOW_DAYS - 1)
        days = set(class_data.get("daysOfWeek") or [])
        closed = self._closed_dates(class_data.get("branchId"), start, end)

        for current in SchoolCalendar.iter_dates(start, end):
            key = current.isoformat()
            if SchoolCalendar.day_of_week(current) in days and key not in closed:
                self.db.collection(self.CLASSES_COLLECTION).document(class_data["id"]).update({
                    "endDate": key,
                    "updatedAt": utc_timestamp(),
                })
                class_data["endDate"] = key
                print(f"[Reschedule] Extended {class_data['id']} end date to {key}")
                return key
        return None

    def reschedule_classes_for_holiday(self, holiday: Dict[str, Any], user_id: Optional[str] = None) -> int:
        """
        Move every affected session off the holiday.

        Returns:
            Number of sessions moved
        """
        moved = 0
        for class_data, schedules in self.get_affected_classes(holiday):
            for schedule in schedules:
                new_date = self.find_next_available_date(class_data, schedule["sessionDate"], schedule["id"])
                if new_date is None:
                    new_date = self.extend_class_end_date(class_data)
                if new_date is None:
                    print(f"[Reschedule] No free date for {class_data['id']}/{schedule['id']}")
                    continue

                self._schedules(class_data["id"]).document(schedule["id"]).update({
                    "sessionDate": new_date,
                    "status": "rescheduled",
                    "originalDate": schedule["sessionDate"],
                    "rescheduledAt": utc_timestamp(),
                    "rescheduledBy": user_id,
                    "note": f"Rescheduled due to holiday: {holiday.get('name', '')}",
                })
                moved += 1

        print(f"[Reschedule] Moved {moved} sessions for holiday {holiday.get('date')}")
        return moved

    def revert_reschedule_for_deleted_holiday(self, holiday: Dict[str, Any]) -> int:
        """
        Move sessions back to the date of a removed holiday.

        A session is restored only when its original date is now free: no
        other closed holiday and no other active session on that day.
        """
        holiday_date = holiday["date"]
        restored = 0

        for class_data in self._active_classes():
            if not self._class_covers(class_data, holiday):
                continue
            closed = self._closed_dates(class_data.get("branchId"), holiday_date, holiday_date,
                                        ignore_holiday_id=holiday.get("id"))
            if holiday_date in closed:
                continue

            query = self._schedules(class_data["id"]).where("originalDate", "==", holiday_date)
            for doc in query.stream():
                schedule = doc.to_dict()
                if schedule.get("status") != "rescheduled":
                    continue
                if holiday_date in self._taken_dates(class_data["id"], exclude_schedule_id=doc.id):
                    continue

                self._schedules(class_data["id"]).document(doc.id).update({
                    "sessionDate": holiday_date,
                    "status": "scheduled",
                    "originalDate": firestore.DELETE_FIELD,
                    "rescheduledAt": firestore.DELETE_FIELD,
                    "rescheduledBy": firestore.DELETE_FIELD,
                    "note": f"Restored after holiday removed: {holiday.get('name', '')}",
                })
                restored += 1

        print(f"[Reschedule] Restored {restored} sessions to {holiday_date}")
        return restored

    def get_reschedule_history(self, class_id: str) -> List[Dict[str, Any]]:
        history = [
            doc_to_dict(doc) for doc in self._schedules(class_id).stream()
            if doc.to_dict().get("status") == "rescheduled" and doc.to_dict().get("originalDate")
        ]
        history.sort(key=lambda s: s.get("rescheduledAt") or "", reverse=True)
        return history


_reschedule_service: Optional[RescheduleService] = None


def get_reschedule_service() -> RescheduleService:
    """Get singleton instance of RescheduleService."""
    global _reschedule_service
    if _reschedule_service is None:
        initialize_firebase()
        _reschedule_service = RescheduleService()
    return _reschedule_service
