"""API routers, included by server.py in this order."""

from routes import (
    availability,
    branches,
    classes,
    cron,
    dashboard,
    enrollments,
    events,
    holidays,
    liff,
    line,
    makeup,
    parents,
    settings,
    subjects,
    teachers,
    trials,
)

ROUTERS = [
    branches.router,
    subjects.router,
    teachers.router,
    classes.router,
    availability.router,
    enrollments.router,
    parents.router,
    holidays.router,
    makeup.router,
    trials.router,
    events.router,
    settings.router,
    dashboard.router,
    line.router,
    cron.router,
    liff.router,
]
