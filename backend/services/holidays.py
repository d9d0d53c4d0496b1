"""
Holiday Service

Holidays are either national (apply to every branch) or scoped to a list
of branches. Only holidays with isSchoolClosed block teaching days.
"""

from typing import List, Dict, Any, Optional, Set

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict
from services.cache import get_cache

HOLIDAY_TYPES = ["national", "branch", "special"]


def holiday_applies_to_branch(holiday: Dict[str, Any], branch_id: Optional[str]) -> bool:
    """National holidays cover every branch; others only the listed ones."""
    if holiday.get("type") == "national":
        return True
    if not branch_id:
        return True
    return branch_id in (holiday.get("branches") or [])


class HolidayService:
    """Service for managing school holidays."""

    HOLIDAYS_COLLECTION = "holidays"

    def __init__(self):
        self.db = get_firestore_client()

    def _query_range(self, start: str, end: str) -> List[Dict[str, Any]]:
        query = (
            self.db.collection(self.HOLIDAYS_COLLECTION)
            .where("date", ">=", start)
            .where("date", "<=", end)
        )
        holidays = [doc_to_dict(doc) for doc in query.stream()]
        holidays.sort(key=lambda h: h.get("date", ""))
        return holidays

    def get_holidays(self, year: int) -> List[Dict[str, Any]]:
        """All holidays in a calendar year, ordered by date."""
        cache = get_cache()
        cached = cache.get_holidays(year)
        if cached is not None:
            return cached

        start, end = SchoolCalendar.year_bounds(year)
        holidays = self._query_range(start, end)
        cache.set_holidays(year, holidays)
        return holidays

    def get_all_holidays(self) -> List[Dict[str, Any]]:
        holidays = [doc_to_dict(doc) for doc in self.db.collection(self.HOLIDAYS_COLLECTION).stream()]
        holidays.sort(key=lambda h: h.get("date", ""))
        return holidays

    def get_holidays_in_range(self, start, end) -> List[Dict[str, Any]]:
        return self._query_range(SchoolCalendar.date_key(start), SchoolCalendar.date_key(end))

    def get_holidays_for_branch(self, branch_id: str, start, end) -> List[Dict[str, Any]]:
        return [
            h for h in self.get_holidays_in_range(start, end)
            if holiday_applies_to_branch(h, branch_id)
        ]

    def get_holidays_for_calendar(self, year: int, month: int, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        start, end = SchoolCalendar.month_bounds(year, month)
        holidays = self._query_range(start, end)
        if branch_id:
            holidays = [h for h in holidays if holiday_applies_to_branch(h, branch_id)]
        return holidays

    def get_holiday(self, holiday_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.HOLIDAYS_COLLECTION).document(holiday_id).get())

    def get_closed_dates(self, branch_id: Optional[str], start, end) -> Set[str]:
        """Date keys on which the branch is closed, for schedule generation."""
        return {
            h["date"] for h in self.get_holidays_in_range(start, end)
            if h.get("isSchoolClosed") and holiday_applies_to_branch(h, branch_id)
        }

    def is_holiday(self, date, branch_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """The closing holiday on a date for a branch, or None."""
        key = SchoolCalendar.date_key(date)
        for holiday in self._query_range(key, key):
            if holiday.get("isSchoolClosed") and holiday_applies_to_branch(holiday, branch_id):
                return holiday
        return None

    def check_holiday_exists(
        self,
        date,
        name: str,
        branch_id: Optional[str] = None,
        exclude_id: Optional[str] = None
    ) -> bool:
        """A holiday with the same date and name already covers the branch."""
        key = SchoolCalendar.date_key(date)
        wanted = name.strip().lower()
        for holiday in self._query_range(key, key):
            if holiday["id"] == exclude_id:
                continue
            if holiday.get("name", "").strip().lower() != wanted:
                continue
            if holiday_applies_to_branch(holiday, branch_id):
                return True
        return False

    def _validate(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        if not partial or "name" in data:
            if not (data.get("name") or "").strip():
                errors["name"] = "Holiday name is required"
        if not partial or "date" in data:
            try:
                SchoolCalendar.to_date(data.get("date"))
            except (TypeError, ValueError):
                errors["date"] = "A valid date is required"
        if "type" in data and data["type"] not in HOLIDAY_TYPES:
            errors["type"] = f"Type must be one of {', '.join(HOLIDAY_TYPES)}"
        if data.get("type") in ("branch", "special") and "branches" in data and not data.get("branches"):
            errors["branches"] = "Select at least one branch"
        if errors:
            raise ValidationError("Invalid holiday data", errors)

    def add_holiday(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add a holiday.

        Raises:
            ValidationError: Invalid data or a duplicate name on the same date
        """
        data = {"type": "national", **data}
        self._validate(data)
        date_key = SchoolCalendar.date_key(data["date"])
        branches = data.get("branches") or []
        scope = None if data["type"] == "national" else (branches[0] if branches else None)
        if self.check_holiday_exists(date_key, data["name"], scope):
            raise ValidationError("A holiday with this name already exists on that date", {"name": "duplicate"})

        doc_ref = self.db.collection(self.HOLIDAYS_COLLECTION).document()
        holiday_data = {
            "name": data["name"].strip(),
            "date": date_key,
            "type": data["type"],
            "isSchoolClosed": data.get("isSchoolClosed", True),
            "branches": [] if data["type"] == "national" else branches,
            "description": data.get("description", ""),
            "createdAt": utc_timestamp(),
        }
        doc_ref.set(holiday_data)
        get_cache().invalidate_holidays()

        holiday_data["id"] = doc_ref.id
        return holiday_data

    def update_holiday(self, holiday_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.HOLIDAYS_COLLECTION).document(holiday_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Holiday {holiday_id} not found", "holiday")

        self._validate(data, partial=True)
        update_data = clean_update(data)
        if "date" in update_data:
            update_data["date"] = SchoolCalendar.date_key(update_data["date"])
        if update_data.get("type") == "national":
            update_data["branches"] = []

        doc_ref.update(update_data)
        get_cache().invalidate_holidays()
        return doc_to_dict(doc_ref.get())

    def delete_holiday(self, holiday_id: str) -> Optional[Dict[str, Any]]:
        """Delete a holiday and return what was deleted (for reschedule reverts)."""
        doc_ref = self.db.collection(self.HOLIDAYS_COLLECTION).document(holiday_id)
        holiday = doc_to_dict(doc_ref.get())
        if holiday is None:
            return None
        doc_ref.delete()
        get_cache().invalidate_holidays()
        return holiday

    def delete_all_holidays(self, year: int) -> int:
        """Delete every holiday in a year; returns how many were removed."""
        start, end = SchoolCalendar.year_bounds(year)
        holidays = self._query_range(start, end)

        count = 0
        batch = self.db.batch()
        for holiday in holidays:
            batch.delete(self.db.collection(self.HOLIDAYS_COLLECTION).document(holiday["id"]))
            count += 1
            if count % 500 == 0:
                batch.commit()
                batch = self.db.batch()
        if count % 500:
            batch.commit()

        get_cache().invalidate_holidays()
        print(f"[Holidays] Deleted {count} holidays for {year}")
        return count


_holiday_service: Optional[HolidayService] = None


def get_holiday_service() -> HolidayService:
    """Get singleton instance of HolidayService."""
    global _holiday_service
    if _holiday_service is None:
        initialize_firebase()
        _holiday_service = HolidayService()
    return _holiday_service
