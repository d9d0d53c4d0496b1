"""
Class Service

Handles classes and their generated session schedules.

A class runs on a fixed set of weekdays between startDate and endDate.
When it is created, one schedule document per teaching day is written to
classes/{id}/schedules, skipping the branch's closed holidays, until the
requested number of sessions is reached.
"""

from datetime import date
from typing import Iterable, List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict, is_valid_time_range, times_overlap
from services.holidays import get_holiday_service

CLASS_STATUSES = ["draft", "published", "started", "completed", "cancelled"]
ACTIVE_CLASS_STATUSES = ["published", "started"]
SCHEDULE_STATUSES = ["scheduled", "completed", "cancelled", "rescheduled"]
ATTENDANCE_STATUSES = ["present", "absent", "late", "sick", "leave"]


def generate_schedules(
    start_date,
    end_date,
    days_of_week: Iterable[int],
    total_sessions: int,
    holiday_dates: Optional[Iterable[str]] = None
) -> List[date]:
    """
    Enumerate teaching dates for a class.

    Walks forward from start_date through end_date (inclusive) and keeps each
    date whose weekday is in days_of_week and which is not a holiday, until
    total_sessions dates are collected.

    Args:
        start_date: First possible session date
        end_date: Last possible session date
        days_of_week: Weekdays with 0 = Sunday
        total_sessions: Target number of sessions
        holiday_dates: Date keys (YYYY-MM-DD) to skip

    Returns:
        Session dates in order; fewer than total_sessions if the range is too short
    """
    days = set(days_of_week)
    skip = set(holiday_dates or [])
    sessions = []

    if total_sessions <= 0 or not days:
        return sessions

    for current in SchoolCalendar.iter_dates(start_date, end_date):
        if len(sessions) >= total_sessions:
            break
        if SchoolCalendar.day_of_week(current) in days and current.isoformat() not in skip:
            sessions.append(current)

    return sessions


def normalize_attendance(entries: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Keep only the stored attendance fields."""
    normalized = []
    for entry in entries or []:
        record = {
            "studentId": entry.get("studentId"),
            "status": entry.get("status"),
            "note": entry.get("note") or "",
        }
        for extra in ("checkedBy", "checkedAt"):
            if entry.get(extra):
                record[extra] = entry[extra]
        normalized.append(record)
    return normalized


class ClassService:
    """Service for classes and their schedules."""

    CLASSES_COLLECTION = "classes"
    SCHEDULES_COLLECTION = "schedules"
    MAKEUP_COLLECTION = "makeupClasses"
    TRIAL_SESSIONS_COLLECTION = "trialSessions"

    def __init__(self):
        self.db = get_firestore_client()

    def _class_ref(self, class_id: str):
        return self.db.collection(self.CLASSES_COLLECTION).document(class_id)

    def _schedules(self, class_id: str):
        return self._class_ref(class_id).collection(self.SCHEDULES_COLLECTION)

    # --- Classes ---

    def get_classes(
        self,
        branch_id: Optional[str] = None,
        status: Optional[str] = None,
        teacher_id: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Classes filtered by any combination of branch, status, teacher and subject."""
        query = self.db.collection(self.CLASSES_COLLECTION)
        if branch_id:
            query = query.where("branchId", "==", branch_id)
        if status:
            query = query.where("status", "==", status)
        if teacher_id:
            query = query.where("teacherId", "==", teacher_id)
        if subject_id:
            query = query.where("subjectId", "==", subject_id)

        classes = [doc_to_dict(doc) for doc in query.stream()]
        classes.sort(key=lambda c: c.get("startDate", ""), reverse=True)
        return classes

    def get_class(self, class_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self._class_ref(class_id).get())

    def get_classes_by_subject(self, subject_id: str) -> List[Dict[str, Any]]:
        return self.get_classes(subject_id=subject_id)

    def get_classes_by_teacher(self, teacher_id: str) -> List[Dict[str, Any]]:
        return self.get_classes(teacher_id=teacher_id)

    def get_classes_by_branch(self, branch_id: str) -> List[Dict[str, Any]]:
        return self.get_classes(branch_id=branch_id)

    def get_active_classes(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Published or started classes."""
        query = self.db.collection(self.CLASSES_COLLECTION).where("status", "in", ACTIVE_CLASS_STATUSES)
        if branch_id:
            query = query.where("branchId", "==", branch_id)
        return [doc_to_dict(doc) for doc in query.stream()]

    def check_class_code_exists(self, code: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.collection(self.CLASSES_COLLECTION).where("code", "==", code)
        return any(doc.id != exclude_id for doc in query.stream())

    def _validate(self, data: Dict[str, Any]):
        errors = {}
        for required in ("subjectId", "teacherId", "branchId", "roomId", "name", "code"):
            if not data.get(required):
                errors[required] = f"{required} is required"
        if not is_valid_time_range(data.get("startTime", ""), data.get("endTime", "")):
            errors["startTime"] = "Start time must be before end time"
        days = data.get("daysOfWeek") or []
        if not days or any(d not in range(7) for d in days):
            errors["daysOfWeek"] = "Select at least one day between 0 (Sunday) and 6 (Saturday)"
        if (data.get("totalSessions") or 0) < 1:
            errors["totalSessions"] = "At least one session is required"
        if (data.get("maxStudents") or 0) < 1:
            errors["maxStudents"] = "Maximum students must be at least 1"
        if (data.get("minStudents") or 0) > (data.get("maxStudents") or 0):
            errors["minStudents"] = "Minimum students cannot exceed maximum"
        try:
            if SchoolCalendar.to_date(data.get("startDate")) > SchoolCalendar.to_date(data.get("endDate")):
                errors["endDate"] = "End date must be on or after start date"
        except (TypeError, ValueError):
            errors["startDate"] = "Valid start and end dates are required"
        if errors:
            raise ValidationError("Invalid class data", errors)

    def create_class(self, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a class and batch-write its generated schedules.

        Raises:
            ValidationError: Invalid data or duplicate class code
        """
        self._validate(data)
        if self.check_class_code_exists(data["code"]):
            raise ValidationError(f"Class code {data['code']} already exists", {"code": "duplicate"})

        start_key = SchoolCalendar.date_key(data["startDate"])
        end_key = SchoolCalendar.date_key(data["endDate"])
        closed = get_holiday_service().get_closed_dates(data["branchId"], start_key, end_key)
        session_dates = generate_schedules(
            start_key, end_key, data["daysOfWeek"], data["totalSessions"], closed
        )
        if len(session_dates) < data["totalSessions"]:
            print(f"[Classes] Only {len(session_dates)} of {data['totalSessions']} sessions fit "
                  f"between {start_key} and {end_key} for {data['code']}")

        pricing = data.get("pricing") or {}
        class_ref = self.db.collection(self.CLASSES_COLLECTION).document()
        class_data = {
            "subjectId": data["subjectId"],
            "teacherId": data["teacherId"],
            "branchId": data["branchId"],
            "roomId": data["roomId"],
            "name": data["name"],
            "code": data["code"],
            "description": data.get("description", ""),
            "startDate": start_key,
            "endDate": end_key,
            "totalSessions": data["totalSessions"],
            "daysOfWeek": sorted(data["daysOfWeek"]),
            "startTime": data["startTime"],
            "endTime": data["endTime"],
            "maxStudents": data["maxStudents"],
            "minStudents": data.get("minStudents", 1),
            "enrolledCount": 0,
            "pricing": {
                "pricePerSession": pricing.get("pricePerSession", 0),
                "totalPrice": pricing.get("totalPrice", 0),
                "materialFee": pricing.get("materialFee", 0),
                "registrationFee": pricing.get("registrationFee", 0),
            },
            "status": data.get("status", "draft"),
            "createdBy": created_by,
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }

        batch = self.db.batch()
        batch.set(class_ref, class_data)
        for index, session_date in enumerate(session_dates):
            batch.set(class_ref.collection(self.SCHEDULES_COLLECTION).document(), {
                "sessionDate": session_date.isoformat(),
                "sessionNumber": index + 1,
                "status": "scheduled",
                "attendance": [],
            })
        batch.commit()

        class_data["id"] = class_ref.id
        class_data["generatedSessions"] = len(session_dates)
        return class_data

    def update_class(self, class_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update class fields. enrolledCount is only changed by enrollments."""
        doc_ref = self._class_ref(class_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Class {class_id} not found", "class")

        update_data = clean_update(data)
        update_data.pop("enrolledCount", None)
        if "code" in update_data and self.check_class_code_exists(update_data["code"], exclude_id=class_id):
            raise ValidationError(f"Class code {update_data['code']} already exists", {"code": "duplicate"})
        if "status" in update_data and update_data["status"] not in CLASS_STATUSES:
            raise ValidationError(f"Invalid class status: {update_data['status']}", {"status": "invalid"})
        for key in ("startDate", "endDate"):
            if key in update_data:
                update_data[key] = SchoolCalendar.date_key(update_data[key])
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def update_class_status(self, class_id: str, status: str) -> Dict[str, Any]:
        if status not in CLASS_STATUSES:
            raise ValidationError(f"Invalid class status: {status}", {"status": "invalid"})
        return self.update_class(class_id, {"status": status})

    def delete_class(self, class_id: str) -> bool:
        """
        Delete a class and all of its schedules.

        Raises:
            ValidationError: If students are still enrolled
        """
        class_data = self.get_class(class_id)
        if class_data is None:
            return False
        if (class_data.get("enrolledCount") or 0) > 0:
            raise ValidationError("Cannot delete class with enrolled students", {"enrolledCount": "non_zero"})

        batch = self.db.batch()
        for doc in self._schedules(class_id).stream():
            batch.delete(doc.reference)
        batch.delete(self._class_ref(class_id))
        batch.commit()
        return True

    # --- Schedules ---

    def get_class_schedules(self, class_id: str) -> List[Dict[str, Any]]:
        """All sessions of a class ordered by date."""
        query = self._schedules(class_id).order_by("sessionDate")
        schedules = []
        for doc in query.stream():
            schedule = doc_to_dict(doc)
            schedule["classId"] = class_id
            schedules.append(schedule)
        return schedules

    def get_class_schedule(self, class_id: str, schedule_id: str) -> Optional[Dict[str, Any]]:
        schedule = doc_to_dict(self._schedules(class_id).document(schedule_id).get())
        if schedule:
            schedule["classId"] = class_id
        return schedule

    def get_schedules_on_date(self, class_id: str, session_date) -> List[Dict[str, Any]]:
        key = SchoolCalendar.date_key(session_date)
        query = self._schedules(class_id).where("sessionDate", "==", key)
        return [doc_to_dict(doc) for doc in query.stream()]

    def get_upcoming_sessions(self, class_id: str, from_date=None) -> List[Dict[str, Any]]:
        """Non-cancelled sessions on or after from_date (default today)."""
        start = SchoolCalendar.date_key(from_date or SchoolCalendar.today())
        return [
            s for s in self.get_class_schedules(class_id)
            if s.get("sessionDate", "") >= start and s.get("status") != "cancelled"
        ]

    def _session_has_ended(self, class_data: Dict[str, Any], schedule: Dict[str, Any]) -> bool:
        return SchoolCalendar.is_past(schedule["sessionDate"], class_data.get("endTime", "23:59"))

    def update_class_schedule(self, class_id: str, schedule_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update one session.

        A session cannot be marked completed before it has ended unless
        attendance is supplied with the update, and clearing attendance on a
        session that has not ended puts it back to scheduled.
        """
        class_data = self.get_class(class_id)
        if class_data is None:
            raise NotFoundError(f"Class {class_id} not found", "class")
        doc_ref = self._schedules(class_id).document(schedule_id)
        schedule = doc_to_dict(doc_ref.get())
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found", "schedule")

        update_data = clean_update(data)
        if "sessionDate" in update_data:
            update_data["sessionDate"] = SchoolCalendar.date_key(update_data["sessionDate"])
        ended = self._session_has_ended(class_data, {**schedule, **update_data})

        if "attendance" in update_data:
            update_data["attendance"] = normalize_attendance(update_data["attendance"])
            if not update_data["attendance"] and not ended:
                update_data["status"] = "scheduled"

        if update_data.get("status") == "completed" and not ended and not update_data.get("attendance"):
            update_data.pop("status")

        if "status" in update_data and update_data["status"] not in SCHEDULE_STATUSES:
            raise ValidationError(f"Invalid session status: {update_data['status']}", {"status": "invalid"})

        if update_data:
            doc_ref.update(update_data)
        result = doc_to_dict(doc_ref.get())
        result["classId"] = class_id
        return result

    def record_attendance(
        self,
        class_id: str,
        schedule_id: str,
        attendance: List[Dict[str, Any]],
        checked_by: Optional[str] = None,
        actual_teacher_id: Optional[str] = None,
        note: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Save session attendance and auto-create makeups for absences.

        Returns:
            Dict with the updated schedule and makeup {created, skipped} counts
        """
        class_data = self.get_class(class_id)
        if class_data is None:
            raise NotFoundError(f"Class {class_id} not found", "class")
        doc_ref = self._schedules(class_id).document(schedule_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Schedule {schedule_id} not found", "schedule")

        invalid = [a for a in attendance if a.get("status") not in ATTENDANCE_STATUSES]
        if invalid:
            raise ValidationError("Invalid attendance status", {"attendance": invalid[0].get("status")})

        now = utc_timestamp()
        entries = normalize_attendance([
            {**entry, "checkedBy": checked_by, "checkedAt": now} for entry in attendance
        ])
        update_data = {
            "attendance": entries,
            "actualTeacherId": actual_teacher_id or class_data.get("teacherId"),
        }
        if note is not None:
            update_data["note"] = note
        if entries:
            update_data["status"] = "completed"
            update_data["attendanceCompletedAt"] = now
            update_data["attendanceCompletedBy"] = checked_by

        doc_ref.update(update_data)

        from services.makeup import get_makeup_service
        makeups = get_makeup_service().auto_create_makeups(class_id, schedule_id, entries)

        schedule = doc_to_dict(doc_ref.get())
        schedule["classId"] = class_id
        return {"schedule": schedule, "makeups": makeups}

    def reschedule_session(
        self,
        class_id: str,
        schedule_id: str,
        new_date,
        reason: str = "",
        rescheduled_by: Optional[str] = None
    ) -> Dict[str, Any]:
        doc_ref = self._schedules(class_id).document(schedule_id)
        schedule = doc_to_dict(doc_ref.get())
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found", "schedule")

        doc_ref.update({
            "sessionDate": SchoolCalendar.date_key(new_date),
            "status": "rescheduled",
            "originalDate": schedule.get("originalDate") or schedule["sessionDate"],
            "rescheduledAt": utc_timestamp(),
            "rescheduledBy": rescheduled_by,
            "note": reason,
        })
        result = doc_to_dict(doc_ref.get())
        result["classId"] = class_id
        return result

    def batch_update_schedules(self, class_id: str, updates: List[Dict[str, Any]]) -> int:
        """Apply {id, ...fields} updates to several sessions in one batch."""
        batch = self.db.batch()
        count = 0
        for update in updates:
            schedule_id = update.get("id")
            if not schedule_id:
                continue
            fields = clean_update(update)
            if "sessionDate" in fields:
                fields["sessionDate"] = SchoolCalendar.date_key(fields["sessionDate"])
            batch.update(self._schedules(class_id).document(schedule_id), fields)
            count += 1
        if count:
            batch.commit()
        return count

    def get_class_statistics(self, class_id: str) -> Dict[str, Any]:
        """Session counts and the attendance rate of a class."""
        schedules = self.get_class_schedules(class_id)
        today = SchoolCalendar.today().isoformat()

        completed = [s for s in schedules if s.get("status") == "completed"]
        cancelled = [s for s in schedules if s.get("status") == "cancelled"]
        upcoming = [
            s for s in schedules
            if s.get("status") in ("scheduled", "rescheduled") and s.get("sessionDate", "") >= today
        ]

        total_entries = 0
        present = 0
        for schedule in schedules:
            for entry in schedule.get("attendance") or []:
                total_entries += 1
                if entry.get("status") == "present":
                    present += 1

        return {
            "totalSessions": len(schedules),
            "completedSessions": len(completed),
            "upcomingSessions": len(upcoming),
            "cancelledSessions": len(cancelled),
            "attendanceRate": round(present / total_entries * 100, 1) if total_entries else 0,
        }

    # --- Room availability over a date range ---

    def check_room_availability(
        self,
        branch_id: str,
        room_id: str,
        days_of_week: Iterable[int],
        start_time: str,
        end_time: str,
        start_date,
        end_date,
        exclude_class_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Check whether a room is free for a recurring weekly slot.

        Conflicts come from other running classes, scheduled makeups and
        scheduled trials in the same room that fall on one of the weekdays
        inside the date range with overlapping times.

        Returns:
            Dict with available and a list of typed conflicts
        """
        days = set(days_of_week)
        start_key = SchoolCalendar.date_key(start_date)
        end_key = SchoolCalendar.date_key(end_date)
        conflicts = []

        query = (
            self.db.collection(self.CLASSES_COLLECTION)
            .where("branchId", "==", branch_id)
            .where("roomId", "==", room_id)
        )
        for doc in query.stream():
            if doc.id == exclude_class_id:
                continue
            other = doc.to_dict()
            if other.get("status") in ("cancelled", "completed"):
                continue
            if not days.intersection(other.get("daysOfWeek") or []):
                continue
            if not (start_key <= other.get("endDate", "") and end_key >= other.get("startDate", "")):
                continue
            if not times_overlap(start_time, end_time, other["startTime"], other["endTime"]):
                continue
            conflicts.append({
                "type": "class",
                "id": doc.id,
                "name": other.get("name", ""),
                "code": other.get("code", ""),
                "daysOfWeek": other.get("daysOfWeek", []),
                "startTime": other["startTime"],
                "endTime": other["endTime"],
                "startDate": other.get("startDate"),
                "endDate": other.get("endDate"),
            })

        makeups = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("status", "==", "scheduled")
            .where("makeupSchedule.branchId", "==", branch_id)
            .where("makeupSchedule.roomId", "==", room_id)
        )
        for doc in makeups.stream():
            makeup = doc.to_dict()
            slot = makeup.get("makeupSchedule") or {}
            slot_date = slot.get("date", "")
            if not (start_key <= slot_date <= end_key):
                continue
            if SchoolCalendar.day_of_week(slot_date) not in days:
                continue
            if not times_overlap(start_time, end_time, slot["startTime"], slot["endTime"]):
                continue
            conflicts.append({
                "type": "makeup",
                "id": doc.id,
                "name": f"Makeup: {makeup.get('studentName', '')}",
                "date": slot_date,
                "startTime": slot["startTime"],
                "endTime": slot["endTime"],
            })

        trials = (
            self.db.collection(self.TRIAL_SESSIONS_COLLECTION)
            .where("status", "==", "scheduled")
            .where("branchId", "==", branch_id)
            .where("roomId", "==", room_id)
        )
        for doc in trials.stream():
            trial = doc.to_dict()
            trial_date = trial.get("scheduledDate", "")
            if not (start_key <= trial_date <= end_key):
                continue
            if SchoolCalendar.day_of_week(trial_date) not in days:
                continue
            if not times_overlap(start_time, end_time, trial["startTime"], trial["endTime"]):
                continue
            conflicts.append({
                "type": "trial",
                "id": doc.id,
                "name": f"Trial: {trial.get('studentName', '')}",
                "date": trial_date,
                "startTime": trial["startTime"],
                "endTime": trial["endTime"],
            })

        return {"available": not conflicts, "conflicts": conflicts}


_class_service: Optional[ClassService] = None


def get_class_service() -> ClassService:
    """Get singleton instance of ClassService."""
    global _class_service
    if _class_service is None:
        initialize_firebase()
        _class_service = ClassService()
    return _class_service
