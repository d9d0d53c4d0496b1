"""
Cron endpoints.

External schedulers (Cloud Scheduler, Vercel cron) call these with the
shared CRON_SECRET when the in-process APScheduler is not running.
"""

import asyncio

from fastapi import APIRouter, Depends

from core.auth import verify_cron_secret
from tasks.reminders import send_event_reminders, send_reminders, update_class_statuses

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/send-reminders")
@router.get("/send-reminders")
async def cron_send_reminders():
    result = await send_reminders()
    return {"success": True, **result}


@router.post("/update-class-status")
@router.get("/update-class-status")
async def cron_update_class_status():
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(None, update_class_statuses)
    return {"success": True, **result}


@router.post("/event-reminders")
@router.get("/event-reminders")
async def cron_event_reminders():
    result = await send_event_reminders()
    return {"success": True, **result}
