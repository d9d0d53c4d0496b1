"""
E2E test fixtures and configuration

These tests drive the real FastAPI app through TestClient:
- Routing, request validation and HTTP error mapping
- Admin auth and branch scoping (Firebase token checks overridden)
- LIFF endpoints (LINE login overridden)
- Services running against the in-memory Firestore from tests/conftest.py

Run e2e tests with: pytest tests/e2e -m e2e
"""

import time
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from core.auth import AuthenticatedUser, LineUser, UserRole, get_current_user, get_line_user


class Timer:
    """Simple timer for measuring execution time"""

    def __init__(self):
        self.start_time = None
        self.end_time = None
        self.elapsed_ms = None

    def start(self):
        self.start_time = time.perf_counter()
        return self

    def stop(self):
        self.end_time = time.perf_counter()
        self.elapsed_ms = (self.end_time - self.start_time) * 1000
        return self.elapsed_ms

    @contextmanager
    def measure(self, label: str = ""):
        """Context manager for timing a block of code"""
        self.start()
        yield self
        elapsed = self.stop()
        if label:
            print(f"\n  [{label}] {elapsed:.2f}ms")


@pytest.fixture
def timer():
    """Provide a timer instance for tests"""
    return Timer()


@pytest.fixture
def timed_request(timer):
    """Factory for making timed HTTP requests"""
    def _timed_request(client, method: str, url: str, **kwargs):
        timer.start()
        response = client.request(method.upper(), url, **kwargs)
        elapsed = timer.stop()
        print(f"\n  [{method.upper()} {url}] {elapsed:.2f}ms - Status: {response.status_code}")
        return response, elapsed
    return _timed_request


class Session:
    """Who the overridden auth dependencies say is calling."""

    def __init__(self):
        self.user = AuthenticatedUser(uid="admin1", email="boss@school.test", role=UserRole.SUPER_ADMIN)
        self.line_user_id = "U-parent"

    def login(self, role: UserRole, branch_ids=None, uid: str = "staff1"):
        self.user = AuthenticatedUser(uid=uid, email=f"{uid}@school.test", role=role, branch_ids=branch_ids or [])


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def client(school, session):
    """
    TestClient for the real app with the seeded school.

    The client is not used as a context manager, so the lifespan hook
    (Firebase init and the background scheduler) does not run.
    """
    from server import app

    async def current_user():
        return session.user

    def line_user():
        return LineUser(user_id=session.line_user_id, display_name="Nok")

    app.dependency_overrides[get_current_user] = current_user
    app.dependency_overrides[get_line_user] = line_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
