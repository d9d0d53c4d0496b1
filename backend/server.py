"""
FastAPI Server for the Tutoring School Admin API

Serves the admin panel, the parent LIFF app and the LINE webhook.
Runs the daily jobs scheduler in the background.

Usage:
    python server.py                    # Run server on port 8000
    python server.py --port 3001        # Custom port
    python server.py --no-scheduler     # Disable background jobs (use /api/cron instead)
"""

import asyncio
import argparse
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from core.auth import AuthenticatedUser, get_super_admin
from core.config import CORS_ORIGINS, SCHOOL_TIMEZONE, get_firestore_client, initialize_firebase
from core.calendar import SchoolCalendar
from routes import ROUTERS
from services.cache import get_cache


class HealthResponse(BaseModel):
    status: str
    school_date: str
    timezone: str
    firebase: str
    redis: str


class CacheStatsResponse(BaseModel):
    connected: bool
    hits: int = 0
    misses: int = 0
    memory_used: str = "unknown"
    settings_keys: int = 0
    dashboard_keys: int = 0
    list_keys: int = 0
    total_keys: int = 0


# Background Scheduler

scheduler_task = None


async def run_background_scheduler():
    """Run the scheduler in the background"""
    from tasks.scheduler import TaskScheduler

    scheduler = TaskScheduler()
    await scheduler.start()

    # Keep running
    try:
        while True:
            await asyncio.sleep(60)
    except asyncio.CancelledError:
        scheduler.shutdown()


# App Lifespan (startup/shutdown)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown"""
    global scheduler_task

    print("[Server] Initializing Firebase...")
    initialize_firebase()

    if app.state.enable_scheduler:
        print("[Server] Starting background scheduler...")
        scheduler_task = asyncio.create_task(run_background_scheduler())

    print("[Server] Ready!")

    yield

    if scheduler_task:
        print("[Server] Stopping scheduler...")
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass

    print("[Server] Shutdown complete")


# FastAPI App

app = FastAPI(
    title="Tutoring School Admin API",
    description="Branches, classes, enrollments, makeups, trials, events and LINE messaging",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Default: enable scheduler
app.state.enable_scheduler = True

for router in ROUTERS:
    app.include_router(router)


# Health and cache

@app.get("/", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    firebase_status = "connected"
    try:
        db = get_firestore_client()
        db.collection("settings").document("general").get()
    except Exception as e:
        firebase_status = f"error: {str(e)[:50]}"

    redis_status = "connected" if get_cache().is_connected else "unavailable"

    return HealthResponse(
        status="ok" if firebase_status == "connected" else "degraded",
        school_date=SchoolCalendar.today().isoformat(),
        timezone=SCHOOL_TIMEZONE,
        firebase=firebase_status,
        redis=redis_status
    )


@app.get("/api/health", response_model=HealthResponse)
async def api_health():
    """API health check"""
    return await health_check()


@app.get("/api/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats():
    stats = get_cache().get_stats()
    stats.pop("error", None)
    return CacheStatsResponse(**stats)


@app.post("/api/cache/clear")
async def clear_cache(user: AuthenticatedUser = Depends(get_super_admin)):
    """
    Clear all cached data.
    """
    success = get_cache().clear_all()
    return {"success": success, "message": "Cache cleared" if success else "Cache not available"}


# Main

def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Tutoring School Admin API Server")
    parser.add_argument("--port", type=int, default=8000, help="Port to run on")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--no-scheduler", action="store_true", help="Disable background scheduler")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    args = parser.parse_args()

    app.state.enable_scheduler = not args.no_scheduler

    print(f"[Server] Starting on http://{args.host}:{args.port}")
    print(f"[Server] Scheduler: {'enabled' if app.state.enable_scheduler else 'disabled'}")

    uvicorn.run(
        "server:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload
    )


if __name__ == "__main__":
    main()
