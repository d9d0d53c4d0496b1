"""
Event Service

Open-house days, workshops and similar events. Each event has one or more
schedules (date plus time slot) with a seat cap shared across branches.
Parents register through LIFF; the seat count per branch lives on the
schedule document and is changed inside a transaction.
"""

from datetime import datetime
from typing import List, Dict, Any, Optional

from firebase_admin import firestore

from core.config import get_firestore_client, initialize_firebase, run_transaction
from core.calendar import SchoolCalendar, utc_timestamp
from core.errors import EventFullError, NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict, is_valid_time_range

EVENT_STATUSES = ["draft", "published", "completed", "cancelled"]
COUNTING_METHODS = ["students", "parents", "registrations"]
SCHEDULE_STATUSES = ["available", "full", "cancelled"]
REGISTRATION_STATUSES = ["confirmed", "cancelled", "attended", "no-show"]


def count_attendees(counting_method: str, data: Dict[str, Any]) -> int:
    """Seats one registration takes under the event's counting method."""
    if counting_method == "students":
        return len(data.get("students") or [])
    if counting_method == "parents":
        return len(data.get("parents") or [])
    return 1


def _as_datetime(value, end_of_day: bool = False) -> datetime:
    """Registration window bounds may be plain dates or full timestamps."""
    if isinstance(value, str) and len(value.strip()) == 10:
        return SchoolCalendar.combine(value, "23:59" if end_of_day else "00:00")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=SchoolCalendar.TZ)
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=SchoolCalendar.TZ)
    return parsed


def is_registration_open(event: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if event.get("status") != "published":
        return False
    if not event.get("registrationStartDate") or not event.get("registrationEndDate"):
        return False
    now = now or SchoolCalendar.now()
    start = _as_datetime(event["registrationStartDate"])
    end = _as_datetime(event["registrationEndDate"], end_of_day=True)
    return start <= now <= end


class EventService:
    """Service for events, their schedules and registrations."""

    EVENTS_COLLECTION = "events"
    SCHEDULES_COLLECTION = "eventSchedules"
    REGISTRATIONS_COLLECTION = "eventRegistrations"

    def __init__(self):
        self.db = get_firestore_client()

    # --- Events ---

    def get_events(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.collection(self.EVENTS_COLLECTION)
        if branch_id:
            query = query.where("branchIds", "array_contains", branch_id)
        events = [doc_to_dict(doc) for doc in query.stream()]
        events.sort(key=lambda e: e.get("createdAt", ""), reverse=True)
        return events

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.EVENTS_COLLECTION).document(event_id).get())

    def _validate_event(self, data: Dict[str, Any]):
        errors = {}
        if not (data.get("name") or "").strip():
            errors["name"] = "Event name is required"
        if data.get("countingMethod", "registrations") not in COUNTING_METHODS:
            errors["countingMethod"] = f"Must be one of {', '.join(COUNTING_METHODS)}"
        if data.get("status", "draft") not in EVENT_STATUSES:
            errors["status"] = f"Must be one of {', '.join(EVENT_STATUSES)}"
        start, end = data.get("registrationStartDate"), data.get("registrationEndDate")
        if start and end and _as_datetime(start) > _as_datetime(end, end_of_day=True):
            errors["registrationEndDate"] = "Registration must end after it starts"
        if errors:
            raise ValidationError("Invalid event", errors)

    def create_event(self, data: Dict[str, Any], created_by: Optional[str] = None) -> Dict[str, Any]:
        self._validate_event(data)
        doc_ref = self.db.collection(self.EVENTS_COLLECTION).document()
        event_data = {
            "name": data["name"].strip(),
            "description": data.get("description", ""),
            "location": data.get("location", ""),
            "branchIds": data.get("branchIds") or [],
            "eventType": data.get("eventType", "open-house"),
            "registrationStartDate": data.get("registrationStartDate"),
            "registrationEndDate": data.get("registrationEndDate"),
            "countingMethod": data.get("countingMethod", "registrations"),
            "enableReminder": data.get("enableReminder", True),
            "reminderDaysBefore": data.get("reminderDaysBefore") or 1,
            "status": data.get("status", "draft"),
            "isActive": data.get("isActive", True),
            "createdAt": utc_timestamp(),
            "createdBy": created_by,
        }
        doc_ref.set(event_data)
        event_data["id"] = doc_ref.id
        return event_data

    def update_event(self, event_id: str, data: Dict[str, Any], updated_by: Optional[str] = None) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.EVENTS_COLLECTION).document(event_id)
        current = doc_to_dict(doc_ref.get())
        if current is None:
            raise NotFoundError(f"Event {event_id} not found", "event")

        update_data = clean_update(data)
        self._validate_event({**current, **update_data})
        update_data["updatedAt"] = utc_timestamp()
        update_data["updatedBy"] = updated_by
        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def delete_event(self, event_id: str) -> bool:
        """Delete an event and its schedules; refused while registrations are confirmed."""
        doc_ref = self.db.collection(self.EVENTS_COLLECTION).document(event_id)
        if not doc_ref.get().exists:
            return False
        if self.get_event_registrations(event_id, status="confirmed"):
            raise ValidationError(
                "Cannot delete an event with active registrations",
                {"eventId": "has_registrations"},
            )

        batch = self.db.batch()
        for schedule in self.get_event_schedules(event_id):
            batch.delete(self.db.collection(self.SCHEDULES_COLLECTION).document(schedule["id"]))
        batch.delete(doc_ref)
        batch.commit()
        return True

    # --- Schedules ---

    def get_event_schedules(self, event_id: str) -> List[Dict[str, Any]]:
        query = self.db.collection(self.SCHEDULES_COLLECTION).where("eventId", "==", event_id)
        schedules = [doc_to_dict(doc) for doc in query.stream()]
        schedules.sort(key=lambda s: (s.get("date", ""), s.get("startTime", "")))
        return schedules

    def get_event_schedule(self, schedule_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.SCHEDULES_COLLECTION).document(schedule_id).get())

    def create_event_schedule(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for required in ("eventId", "date", "startTime", "endTime"):
            if not data.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})
        if not is_valid_time_range(data["startTime"], data["endTime"]):
            raise ValidationError("Start time must be before end time", {"startTime": "invalid"})
        if (data.get("maxAttendees") or 0) < 1:
            raise ValidationError("maxAttendees must be at least 1", {"maxAttendees": "invalid"})
        if self.get_event(data["eventId"]) is None:
            raise NotFoundError(f"Event {data['eventId']} not found", "event")

        doc_ref = self.db.collection(self.SCHEDULES_COLLECTION).document()
        schedule_data = {
            "eventId": data["eventId"],
            "date": SchoolCalendar.date_key(data["date"]),
            "startTime": data["startTime"],
            "endTime": data["endTime"],
            "maxAttendees": data["maxAttendees"],
            "attendeesByBranch": {},
            "status": "available",
        }
        doc_ref.set(schedule_data)
        schedule_data["id"] = doc_ref.id
        return schedule_data

    def update_event_schedule(self, schedule_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.SCHEDULES_COLLECTION).document(schedule_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Event schedule {schedule_id} not found", "eventSchedule")
        update_data = clean_update(data)
        update_data.pop("attendeesByBranch", None)
        if "date" in update_data:
            update_data["date"] = SchoolCalendar.date_key(update_data["date"])
        if "status" in update_data and update_data["status"] not in SCHEDULE_STATUSES:
            raise ValidationError(f"Invalid schedule status: {update_data['status']}", {"status": "invalid"})
        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def delete_event_schedule(self, schedule_id: str) -> bool:
        doc_ref = self.db.collection(self.SCHEDULES_COLLECTION).document(schedule_id)
        if not doc_ref.get().exists:
            return False
        active = [r for r in self.get_schedule_registrations(schedule_id) if r.get("status") == "confirmed"]
        if active:
            raise ValidationError(
                "Cannot delete a schedule with active registrations",
                {"scheduleId": "has_registrations"},
            )
        doc_ref.delete()
        return True

    # --- Registrations ---

    def get_event_registrations(
        self,
        event_id: str,
        status: Optional[str] = None,
        schedule_id: Optional[str] = None,
        branch_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query = self.db.collection(self.REGISTRATIONS_COLLECTION).where("eventId", "==", event_id)
        if schedule_id:
            query = query.where("scheduleId", "==", schedule_id)
        if branch_id:
            query = query.where("branchId", "==", branch_id)
        if status:
            query = query.where("status", "==", status)
        registrations = [doc_to_dict(doc) for doc in query.stream()]
        registrations.sort(key=lambda r: r.get("registeredAt", ""), reverse=True)
        return registrations

    def get_schedule_registrations(self, schedule_id: str) -> List[Dict[str, Any]]:
        query = self.db.collection(self.REGISTRATIONS_COLLECTION).where("scheduleId", "==", schedule_id)
        registrations = [doc_to_dict(doc) for doc in query.stream()]
        registrations.sort(key=lambda r: r.get("registeredAt", ""))
        return registrations

    def get_user_registrations(self, line_user_id: Optional[str] = None,
                               parent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if line_user_id:
            query = self.db.collection(self.REGISTRATIONS_COLLECTION).where("lineUserId", "==", line_user_id)
        elif parent_id:
            query = self.db.collection(self.REGISTRATIONS_COLLECTION).where("parentId", "==", parent_id)
        else:
            return []
        registrations = [doc_to_dict(doc) for doc in query.stream()]
        registrations.sort(key=lambda r: r.get("scheduleDate", ""), reverse=True)
        return registrations

    def get_registration(self, registration_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.REGISTRATIONS_COLLECTION).document(registration_id).get())

    def create_event_registration(self, data: Dict[str, Any], event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register for an event schedule, reserving seats atomically.

        Raises:
            ValidationError: Missing schedule or branch, a session of another event,
                a cancelled session or a branch the event is not offered at
            NotFoundError: Schedule missing
            EventFullError: Not enough seats left
        """
        for required in ("scheduleId", "branchId"):
            if not data.get(required):
                raise ValidationError(f"{required} is required", {required: "required"})

        attendee_count = count_attendees(event.get("countingMethod", "registrations"), data)
        if attendee_count < 1:
            raise ValidationError("At least one attendee is required", {"attendees": "required"})

        branch_id = data["branchId"]
        event_branches = event.get("branchIds") or []
        if event_branches and branch_id not in event_branches:
            raise ValidationError("This event is not offered at the selected branch", {"branchId": "invalid"})

        schedule_ref =self.db.collection(self.SCHEDULES_COLLECTION).document(data["scheduleId"])
        registration_ref = self.db.collection(self.REGISTRATIONS_COLLECTION).document()
        registration = {
            "eventId": event["id"],
            "eventName": event.get("name", ""),
            "scheduleId": data["scheduleId"],
            "branchId": branch_id,
            "lineUserId": data.get("lineUserId"),
            "lineDisplayName": data.get("lineDisplayName"),
            "parentId": data.get("parentId"),
            "parentName": data.get("parentName", ""),
            "parentPhone": data.get("parentPhone", ""),
            "parents": data.get("parents") or [],
            "students": data.get("students") or [],
            "attendeeCount": attendee_count,
            "specialRequest": data.get("specialRequest"),
            "status": "confirmed",
            "registeredAt": utc_timestamp(),
            "registeredFrom": data.get("registeredFrom", "liff"),
        }

        def register(transaction):
            snapshot = schedule_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"Event schedule {data['scheduleId']} not found", "eventSchedule")
            schedule = snapshot.to_dict()
            if schedule.get("eventId") != event["id"]:
                raise ValidationError("This session belongs to a different event", {"scheduleId": "mismatch"})
            if schedule.get("status") == "cancelled":
                raise ValidationError("This session has been cancelled", {"scheduleId": "cancelled"})
            max_attendees = schedule.get("maxAttendees") or 0
            current = sum((schedule.get("attendeesByBranch") or {}).values())

            if current >= max_attendees:
                raise EventFullError("This session is full", 0)
            if current + attendee_count > max_attendees:
                remaining = max_attendees - current
                raise EventFullError(f"Only {remaining} seats left in this session", remaining)

            registration["scheduleDate"] = schedule.get("date")
            registration["scheduleTime"] = f"{schedule.get('startTime', '')}-{schedule.get('endTime', '')}"
            transaction.set(registration_ref, registration)
            transaction.update(schedule_ref, {
                f"attendeesByBranch.{branch_id}": firestore.Increment(attendee_count),
                "status": "full" if current + attendee_count >= max_attendees else "available",
            })

        run_transaction(register)
        print(f"[Events] Registration for {event['id']} schedule {data['scheduleId']} ({attendee_count} seats)")

        registration["id"] = registration_ref.id
        return registration

    def cancel_event_registration(self, registration_id: str, reason: str = "",
                                  cancelled_by: Optional[str] = None) -> Dict[str, Any]:
        registration_ref = self.db.collection(self.REGISTRATIONS_COLLECTION).document(registration_id)

        def cancel(transaction):
            snapshot = registration_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise NotFoundError(f"Registration {registration_id} not found", "eventRegistration")
            registration = snapshot.to_dict()
            if registration.get("status") == "cancelled":
                raise ValidationError("This registration is already cancelled", {"status": "cancelled"})

            schedule_ref = self.db.collection(self.SCHEDULES_COLLECTION).document(registration["scheduleId"])
            schedule_snapshot = schedule_ref.get(transaction=transaction)
            branch_id = registration.get("branchId")

            transaction.update(registration_ref, {
                "status": "cancelled",
                "cancelledAt": utc_timestamp(),
                "cancelledBy": cancelled_by,
                "cancellationReason": reason,
            })
            if schedule_snapshot.exists:
                counts = schedule_snapshot.to_dict().get("attendeesByBranch") or {}
                new_count = max(0, (counts.get(branch_id) or 0) - (registration.get("attendeeCount") or 1))
                transaction.update(schedule_ref, {
                    f"attendeesByBranch.{branch_id}": new_count,
                    "status": "available",
                })

        run_transaction(cancel)
        return self.get_registration(registration_id)

    def update_event_attendance(self, items: List[Dict[str, Any]], checked_by: Optional[str] = None) -> int:
        """Mark registrations attended or no-show from [{registrationId, attended, note}]."""
        batch = self.db.batch()
        count = 0
        for item in items:
            registration_id = item.get("registrationId")
            if not registration_id:
                continue
            attended = bool(item.get("attended"))
            batch.update(self.db.collection(self.REGISTRATIONS_COLLECTION).document(registration_id), {
                "status": "attended" if attended else "no-show",
                "attended": attended,
                "attendanceCheckedAt": utc_timestamp(),
                "attendanceCheckedBy": checked_by,
                "attendanceNote": item.get("note", ""),
            })
            count += 1
        if count:
            batch.commit()
        return count

    def get_available_schedules(self, event_id: str) -> List[Dict[str, Any]]:
        now = SchoolCalendar.now()
        return [
            s for s in self.get_event_schedules(event_id)
            if s.get("status") == "available" and SchoolCalendar.combine(s["date"], s["startTime"]) > now
        ]

    def get_published_events(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Events a parent may currently register for, with their open schedules."""
        events = []
        for event in self.get_events(branch_id):
            if not event.get("isActive", True) or not is_registration_open(event):
                continue
            event["schedules"] = self.get_available_schedules(event["id"])
            events.append(event)
        return events

    def get_event_statistics(self, event_id: str) -> Dict[str, Any]:
        event = self.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", "event")
        schedules = self.get_event_schedules(event_id)
        registrations = self.get_event_registrations(event_id)
        active = [r for r in registrations if r.get("status") != "cancelled"]
        attended = [r for r in registrations if r.get("status") == "attended"]

        by_branch: Dict[str, int] = {}
        for registration in active:
            branch = registration.get("branchId")
            by_branch[branch] = by_branch.get(branch, 0) + (registration.get("attendeeCount") or 1)

        by_schedule = []
        for schedule in schedules:
            schedule_regs = [r for r in active if r.get("scheduleId") == schedule["id"]]
            by_schedule.append({
                "scheduleId": schedule["id"],
                "date": schedule.get("date"),
                "startTime": schedule.get("startTime"),
                "maxAttendees": schedule.get("maxAttendees", 0),
                "registered": sum(r.get("attendeeCount") or 1 for r in schedule_regs),
                "attended": len([r for r in schedule_regs if r.get("status") == "attended"]),
            })

        return {
            "totalCapacity": sum(s.get("maxAttendees", 0) for s in schedules),
            "totalRegistered": len(active),
            "totalAttended": len(attended),
            "totalCancelled": len(registrations) - len(active),
            "attendanceRate": round(len(attended) / len(active) * 100, 1) if active else 0,
            "byBranch": by_branch,
            "bySchedule": by_schedule,
        }

    def get_events_for_reminder(self) -> List[Dict[str, Any]]:
        """
        Events with a schedule reminderDaysBefore days from today.

        Returns:
            List of {event, registrations} with confirmed registrations that have a LINE id
        """
        query = (
            self.db.collection(self.EVENTS_COLLECTION)
            .where("status", "==", "published")
            .where("enableReminder", "==", True)
            .where("isActive", "==", True)
        )
        results = []
        for doc in query.stream():
            event = doc_to_dict(doc)
            target = SchoolCalendar.days_from_today(event.get("reminderDaysBefore") or 1).isoformat()
            registrations = []
            for schedule in self.get_event_schedules(event["id"]):
                if schedule.get("date") != target:
                    continue
                registrations.extend(
                    r for r in self.get_schedule_registrations(schedule["id"])
                    if r.get("status") == "confirmed" and r.get("lineUserId")
                )
            if registrations:
                results.append({"event": event, "registrations": registrations})
        return results


_event_service: Optional[EventService] = None


def get_event_service() -> EventService:
    """Get singleton instance of EventService."""
    global _event_service
    if _event_service is None:
        initialize_firebase()
        _event_service = EventService()
    return _event_service
