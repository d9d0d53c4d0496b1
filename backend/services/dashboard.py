"""
Dashboard Service

Aggregate counts for the admin home page and the combined calendar feed.
Stats are cached briefly in Redis because every admin page load asks for
them.
"""

from typing import List, Dict, Any, Optional

from core.config import initialize_firebase
from core.calendar import SchoolCalendar
from services.cache import get_cache
from services.classes import get_class_service
from services.holidays import get_holiday_service, holiday_applies_to_branch
from services.makeup import get_makeup_service
from services.trials import get_trial_service


class DashboardService:
    """Read-only aggregates across classes, makeups, trials and holidays."""

    def get_dashboard_stats(self, branch_id: Optional[str] = None) -> Dict[str, Any]:
        cache = get_cache()
        cached = cache.get_dashboard(branch_id)
        if cached is not None:
            return cached

        classes = get_class_service()
        today = SchoolCalendar.today().isoformat()

        all_classes = classes.get_classes(branch_id=branch_id)
        active = [c for c in all_classes if c.get("status") in ("published", "started")]
        today_classes = 0
        for class_data in active:
            if any(s.get("status") != "cancelled" for s in classes.get_schedules_on_date(class_data["id"], today)):
                today_classes += 1

        makeups = get_makeup_service()
        stats = {
            "totalStudents": sum(c.get("enrolledCount") or 0 for c in active),
            "totalClasses": len(all_classes),
            "activeClasses": len(active),
            "todayClasses": today_classes,
            "upcomingMakeups": len(makeups.get_upcoming_makeup_classes(branch_id=branch_id)),
            "pendingMakeups": len(makeups.get_makeup_classes(branch_id=branch_id, status="pending")),
            "upcomingTrials": len(get_trial_service().get_upcoming_trial_sessions(branch_id=branch_id)),
            "generatedAt": SchoolCalendar.now().isoformat(),
        }
        cache.set_dashboard(branch_id, stats)
        return stats

    def get_calendar_events(self, start, end, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Everything happening between start and end in one flat list."""
        start_key = SchoolCalendar.date_key(start)
        end_key = SchoolCalendar.date_key(end)
        events = []

        classes = get_class_service()
        for class_data in classes.get_classes(branch_id=branch_id):
            if class_data.get("status") in ("draft", "cancelled"):
                continue
            if class_data.get("endDate", "") < start_key or class_data.get("startDate", "") > end_key:
                continue
            for schedule in classes.get_class_schedules(class_data["id"]):
                if not start_key <= schedule.get("sessionDate", "") <= end_key:
                    continue
                events.append({
                    "id": f"class-{class_data['id']}-{schedule['id']}",
                    "title": class_data.get("name", ""),
                    "date": schedule["sessionDate"],
                    "startTime": class_data.get("startTime"),
                    "endTime": class_data.get("endTime"),
                    "type": "class",
                    "branchId": class_data.get("branchId"),
                    "roomId": class_data.get("roomId"),
                    "teacherId": schedule.get("actualTeacherId") or class_data.get("teacherId"),
                    "status": schedule.get("status"),
                })

        for makeup in get_makeup_service().get_upcoming_makeup_classes(branch_id, start_key, end_key):
            slot = makeup["makeupSchedule"]
            events.append({
                "id": f"makeup-{makeup['id']}",
                "title": f"Makeup: {makeup.get('studentNickname') or makeup.get('studentName', '')}",
                "date": slot["date"],
                "startTime": slot.get("startTime"),
                "endTime": slot.get("endTime"),
                "type": "makeup",
                "branchId": slot.get("branchId"),
                "roomId": slot.get("roomId"),
                "teacherId": slot.get("teacherId"),
                "status": makeup.get("status"),
            })

        for trial in get_trial_service().get_trial_sessions(branch_id=branch_id):
            if trial.get("status") == "cancelled":
                continue
            if not start_key <= trial.get("scheduledDate", "") <= end_key:
                continue
            events.append({
                "id": f"trial-{trial['id']}",
                "title": f"Trial: {trial.get('studentName', '')}",
                "date": trial["scheduledDate"],
                "startTime": trial.get("startTime"),
                "endTime": trial.get("endTime"),
                "type": "trial",
                "branchId": trial.get("branchId"),
                "roomId": trial.get("roomId"),
                "teacherId": trial.get("teacherId"),
                "status": trial.get("status"),
            })

        for holiday in get_holiday_service().get_holidays_in_range(start_key, end_key):
            if branch_id and not holiday_applies_to_branch(holiday, branch_id):
                continue
            events.append({
                "id": f"holiday-{holiday['id']}",
                "title": holiday.get("name", ""),
                "date": holiday["date"],
                "startTime": None,
                "endTime": None,
                "type": "holiday",
                "branchId": branch_id,
                "roomId": None,
                "teacherId": None,
                "status": "closed" if holiday.get("isSchoolClosed") else "open",
            })

        events.sort(key=lambda e: (e["date"], e.get("startTime") or ""))
        return events


_dashboard_service: Optional[DashboardService] = None


def get_dashboard_service() -> DashboardService:
    """Get singleton instance of DashboardService."""
    global _dashboard_service
    if _dashboard_service is None:
        initialize_firebase()
        _dashboard_service = DashboardService()
    return _dashboard_service
