"""
Background Task Scheduler for Daily School Jobs

SCHEDULE (school timezone):
- Class Status Update: Daily at 00:05
- Parent Reminders (classes, makeups, trials): Daily at 18:00
- Event Reminders: Daily at 09:00

Usage:
    python -m tasks.scheduler                         # Run scheduler (foreground)
    python -m tasks.scheduler --once reminders        # Send tomorrow's reminders once
    python -m tasks.scheduler --once class-status     # Update class statuses once
    python -m tasks.scheduler --once event-reminders  # Send event reminders once
"""

import asyncio
import argparse
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.calendar import SchoolCalendar
from core.config import SCHOOL_TIMEZONE
from tasks.reminders import send_event_reminders, send_reminders, update_class_statuses

JOBS = ["reminders", "class-status", "event-reminders"]


class TaskScheduler:
    """Manages the daily background jobs"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=SCHOOL_TIMEZONE)

    async def start(self):
        """Start the scheduler with configured tasks"""
        print("=" * 60)
        print("[Scheduler] Tutoring School Daily Jobs")
        print("=" * 60)
        print(f"Started: {datetime.now()}")
        print(f"School date: {SchoolCalendar.today().isoformat()} ({SCHOOL_TIMEZONE})")
        print("=" * 60)

        self.scheduler.add_job(
            self.update_class_status,
            CronTrigger(hour=0, minute=5, timezone=SCHOOL_TIMEZONE),
            id='update_class_status',
            name='Update Class Status',
            replace_existing=True,
            max_instances=1
        )

        self.scheduler.add_job(
            self.send_daily_reminders,
            CronTrigger(hour=18, minute=0, timezone=SCHOOL_TIMEZONE),
            id='send_reminders',
            name='Send Parent Reminders',
            replace_existing=True,
            max_instances=1
        )

        self.scheduler.add_job(
            self.send_event_reminders,
            CronTrigger(hour=9, minute=0, timezone=SCHOOL_TIMEZONE),
            id='send_event_reminders',
            name='Send Event Reminders',
            replace_existing=True,
            max_instances=1
        )

        self.scheduler.start()
        print("\n[Scheduler] Started with the following jobs:")
        for job in self.scheduler.get_jobs():
            print(f"  - {job.name}: {job.trigger}")

    def shutdown(self):
        """Shutdown the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            print("[Scheduler] Stopped")

    # CLASS STATUS (00:05)

    async def update_class_status(self):
        try:
            # Firestore calls are blocking; keep them off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, update_class_statuses)
        except Exception as e:
            print(f"[ERROR] Class status update failed: {e}")
            import traceback
            traceback.print_exc()

    # REMINDERS (18:00)

    async def send_daily_reminders(self):
        try:
            await send_reminders()
        except Exception as e:
            print(f"[ERROR] Reminder job failed: {e}")
            import traceback
            traceback.print_exc()

    # EVENT REMINDERS (09:00)

    async def send_event_reminders(self):
        try:
            await send_event_reminders()
        except Exception as e:
            print(f"[ERROR] Event reminder job failed: {e}")
            import traceback
            traceback.print_exc()


async def run_scheduler():
    """Run the scheduler indefinitely"""
    scheduler = TaskScheduler()
    await scheduler.start()

    try:
        # Keep running until interrupted
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        scheduler.shutdown()


async def run_once(job: str):
    """Run a single job once and return its summary"""
    if job == "reminders":
        result = await send_reminders()
    elif job == "class-status":
        result = update_class_statuses()
    elif job == "event-reminders":
        result = await send_event_reminders()
    else:
        print(f"Unknown job: {job}")
        return None

    print(f"Result: {result}")
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Tutoring School Daily Job Scheduler"
    )
    parser.add_argument(
        "--once",
        type=str,
        choices=JOBS,
        help="Run a single job once and exit"
    )

    args = parser.parse_args()

    if args.once:
        asyncio.run(run_once(args.once))
    else:
        asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
