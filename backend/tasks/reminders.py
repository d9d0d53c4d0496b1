"""
Daily Jobs: Reminders and Class Status

These run from the scheduler (tasks.scheduler) and from the cron HTTP
endpoints. Every job processes items one by one, records per-item
failures in its summary and keeps going.

Usage:
    python -m tasks.scheduler --once reminders
    python -m tasks.scheduler --once class-status
    python -m tasks.scheduler --once event-reminders
"""

from datetime import datetime
from typing import Dict, Any

from api.client import DeliveryReport
from core.calendar import SchoolCalendar, utc_timestamp
from services.cache import get_cache
from services.classes import ACTIVE_CLASS_STATUSES, get_class_service
from services.enrollments import get_enrollment_service
from services.events import get_event_service
from services.makeup import get_makeup_service
from services.notifications import get_notification_service
from services.trials import get_trial_service


def _record(report: DeliveryReport, sent: bool):
    if sent:
        report.add_success()
    else:
        report.add_skipped()


async def send_reminders() -> Dict[str, Any]:
    """
    Remind parents about tomorrow's classes, makeups and trials.

    Returns:
        Dict with per-kind sent counts, errors and the total sentCount
    """
    tomorrow = SchoolCalendar.tomorrow().isoformat()
    print(f"\n[Cron] Sending reminders for {tomorrow} ({datetime.now()})")

    notifications = get_notification_service()
    classes = get_class_service()
    enrollments = get_enrollment_service()

    class_report = DeliveryReport(job="class-reminders")
    for class_data in classes.get_classes(status="started"):
        try:
            sessions = [
                s for s in classes.get_schedules_on_date(class_data["id"], tomorrow)
                if s.get("status") in ("scheduled", "rescheduled")
            ]
            if not sessions:
                continue
            for enrollment in enrollments.get_class_roster(class_data["id"]):
                try:
                    sent = await notifications.send_class_reminder(
                        enrollment["studentId"], class_data["id"], tomorrow, enrollment.get("parentId")
                    )
                    _record(class_report, sent)
                except Exception as e:
                    class_report.add_failure(enrollment["studentId"], str(e))
        except Exception as e:
            class_report.add_failure(class_data["id"], str(e))

    makeup_report = DeliveryReport(job="makeup-reminders")
    for makeup in get_makeup_service().get_upcoming_makeup_classes(start=tomorrow, end=tomorrow):
        try:
            _record(makeup_report, await notifications.send_makeup_notification(makeup["id"], "reminder"))
        except Exception as e:
            makeup_report.add_failure(makeup["id"], str(e))

    trial_report = DeliveryReport(job="trial-reminders")
    for session in get_trial_service().get_upcoming_trial_sessions(tomorrow, tomorrow):
        try:
            _record(trial_report, await notifications.send_trial_confirmation(session["id"]))
        except Exception as e:
            trial_report.add_failure(session["id"], str(e))

    errors = class_report.errors + makeup_report.errors + trial_report.errors
    result = {
        "date": tomorrow,
        "classReminders": class_report.sent,
        "makeupReminders": makeup_report.sent,
        "trialReminders": trial_report.sent,
        "skipped": class_report.skipped + makeup_report.skipped + trial_report.skipped,
        "errors": errors,
        "sentCount": class_report.sent + makeup_report.sent + trial_report.sent,
    }
    print(f"[Cron] Reminders sent: {result['sentCount']} "
          f"(classes {result['classReminders']}, makeups {result['makeupReminders']}, "
          f"trials {result['trialReminders']}), errors: {len(errors)}")
    return result


def update_class_statuses() -> Dict[str, Any]:
    """
    Move published classes to started and finished classes to completed.

    A class is finished once its end date has passed and no non-cancelled
    session remains in the future. Completing a class completes its active
    enrollments.
    """
    today = SchoolCalendar.today().isoformat()
    print(f"\n[Cron] Updating class statuses for {today}")

    classes = get_class_service()
    enrollments = get_enrollment_service()
    result = {"started": 0, "completed": 0, "enrollmentsCompleted": 0, "errors": []}

    for status in ACTIVE_CLASS_STATUSES:
        for class_data in classes.get_classes(status=status):
            class_id = class_data["id"]
            try:
                ended = class_data.get("endDate", "") < today
                remaining = [
                    s for s in classes.get_class_schedules(class_id)
                    if s.get("sessionDate", "") >= today and s.get("status") != "cancelled"
                ]
                if ended and not remaining:
                    classes.update_class(class_id, {
                        "status": "completed",
                        "completedAt": utc_timestamp(),
                        "completedBy": "system-cron",
                    })
                    result["completed"] += 1
                    result["enrollmentsCompleted"] += enrollments.complete_class_enrollments(class_id)
                elif status == "published" and class_data.get("startDate", "") <= today:
                    classes.update_class(class_id, {
                        "status": "started",
                        "startedAt": utc_timestamp(),
                        "startedBy": "system-cron",
                    })
                    result["started"] += 1
            except Exception as e:
                print(f"[ERROR] Status update failed for class {class_id}: {e}")
                result["errors"].append({"classId": class_id, "error": str(e)})

    if result["started"] or result["completed"]:
        get_cache().invalidate_dashboard()
    print(f"[Cron] Classes started: {result['started']}, completed: {result['completed']}, "
          f"errors: {len(result['errors'])}")
    return result


async def send_event_reminders() -> Dict[str, Any]:
    """Remind registrants of events happening reminderDaysBefore days from now."""
    print(f"\n[Cron] Sending event reminders ({datetime.now()})")
    notifications = get_notification_service()
    report = DeliveryReport(job="event-reminders")
    events_processed = 0

    for item in get_event_service().get_events_for_reminder():
        event = item["event"]
        events_processed += 1
        for registration in item["registrations"]:
            try:
                _record(report, await notifications.send_event_reminder(registration, event))
            except Exception as e:
                report.add_failure(registration["id"], str(e))

    result = {
        "eventsProcessed": events_processed,
        "sentCount": report.sent,
        "skipped": report.skipped,
        "errors": report.errors,
    }
    print(report.summary())
    return result
