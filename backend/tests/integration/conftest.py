"""
Integration test fixtures and configuration

These tests run the services against a real Firestore, which must be the
local emulator (FIRESTORE_EMULATOR_HOST) so nothing touches a live
school's data. They exercise the code paths the in-memory store only
approximates: transactions, Increment, DELETE_FIELD and composite queries.

Start the emulator:  firebase emulators:start --only firestore
Run:                 FIRESTORE_EMULATOR_HOST=localhost:8080 pytest tests/integration -m integration
Skip:                pytest -m "not integration"
"""

import os
import uuid

import pytest


def emulator_configured() -> bool:
    return bool(os.getenv("FIRESTORE_EMULATOR_HOST"))


@pytest.fixture
def firestore_db(monkeypatch):
    """Real Firestore client pointed at the emulator."""
    if not emulator_configured():
        pytest.skip("FIRESTORE_EMULATOR_HOST not set")

    import core.config

    if not core.config.FIREBASE_CONFIG.get("projectId"):
        monkeypatch.setitem(core.config.FIREBASE_CONFIG, "projectId", "demo-school")
    return core.config.initialize_firebase()


@pytest.fixture
def run_id():
    """Unique suffix so parallel runs never share documents."""
    return uuid.uuid4().hex[:8]


def delete_tree(doc_ref):
    for collection in doc_ref.collections():
        for doc in collection.stream():
            delete_tree(doc.reference)
    doc_ref.delete()


@pytest.fixture
def emulator_school(firestore_db, run_id):
    """
    Branch, parent, student and a Saturday class with two sessions,
    all suffixed with run_id and deleted after the test.
    """
    ids = {
        "branch": f"b-{run_id}",
        "parent": f"p-{run_id}",
        "student": f"st-{run_id}",
        "class": f"c-{run_id}",
    }
    created = []

    def put(path, data):
        ref = firestore_db.document(path)
        ref.set(data)
        created.append(ref)
        return ref

    put(f"branches/{ids['branch']}", {"name": "Emulator", "code": f"EM{run_id}".upper(), "isActive": True})
    put(f"branches/{ids['branch']}/rooms/r1", {"name": "Room A", "capacity": 8, "isActive": True})
    put(f"parents/{ids['parent']}", {"displayName": "Khun Test", "phone": f"08{run_id[:8]}"})
    put(f"parents/{ids['parent']}/students/{ids['student']}", {"parentId": ids["parent"], "name": "Test Kid"})
    put(f"classes/{ids['class']}", {
        "name": "Emulator Class", "code": f"EMU-{run_id}", "branchId": ids["branch"], "roomId": "r1",
        "teacherId": "t-none", "subjectId": "s-none", "daysOfWeek": [6], "startTime": "10:00",
        "endTime": "12:00", "startDate": "2027-01-02", "endDate": "2027-01-30", "totalSessions": 2,
        "maxStudents": 1, "enrolledCount": 0, "status": "published",
    })
    put(f"classes/{ids['class']}/schedules/s1", {"sessionDate": "2027-01-02", "sessionNumber": 1,
                                                 "status": "scheduled", "attendance": []})
    put(f"classes/{ids['class']}/schedules/s2", {"sessionDate": "2027-01-09", "sessionNumber": 2,
                                                 "status": "scheduled", "attendance": []})

    ids["track"] = created.append
    yield ids

    for ref in created:
        delete_tree(ref)
