"""
Shared test fixtures

Provides an in-memory Firestore stand-in so service tests exercise real
query, update, batch and transaction code paths without a Firebase
project. Only the client surface the services use is implemented.
"""

import copy
import sys
import uuid
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore
from google.api_core.exceptions import NotFound

# Add backend to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))


# In-memory Firestore

def _get_field(data, field_path):
    value = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _set_field(data, field_path, value):
    parts = field_path.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    leaf = parts[-1]
    if value is firestore.DELETE_FIELD:
        target.pop(leaf, None)
    elif isinstance(value, firestore.Increment):
        target[leaf] = (target.get(leaf) or 0) + value.value
    else:
        target[leaf] = copy.deepcopy(value)


def _deep_merge(target, source):
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            _set_field(target, key, value)


def _matches(data, field, op, expected):
    value = _get_field(data, field)
    if op == "==":
        return value == expected
    if op == "!=":
        return value is not None and value != expected
    if op == "in":
        return value in expected
    if op == "not-in":
        return value is not None and value not in expected
    if op == "array_contains":
        return isinstance(value, list) and expected in value
    if op == "array_contains_any":
        return isinstance(value, list) and any(item in value for item in expected)
    if value is None:
        return False
    if op == "<":
        return value < expected
    if op == "<=":
        return value <= expected
    if op == ">":
        return value > expected
    if op == ">=":
        return value >= expected
    raise ValueError(f"Unsupported operator: {op}")


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field_path):
        return _get_field(self._data or {}, field_path)


class FakeDocumentReference:
    def __init__(self, store, path):
        self._store = store
        self._path = path

    @property
    def id(self):
        return self._path[-1]

    @property
    def path(self):
        return "/".join(self._path)

    @property
    def parent(self):
        return FakeCollectionReference(self._store, self._path[:-1])

    def collection(self, name):
        return FakeCollectionReference(self._store, self._path + (name,))

    def get(self, transaction=None):
        return FakeSnapshot(self, self._store.docs.get(self._path))

    def set(self, data, merge=False):
        if merge and self._path in self._store.docs:
            _deep_merge(self._store.docs[self._path], data)
        else:
            document = {}
            _deep_merge(document, data)
            self._store.docs[self._path] = document

    def update(self, data):
        if self._path not in self._store.docs:
            raise NotFound(f"No document to update: {self.path}")
        document = self._store.docs[self._path]
        for key, value in data.items():
            _set_field(document, key, value)

    def delete(self):
        self._store.docs.pop(self._path, None)


class FakeQuery:
    def __init__(self, store, path, filters=None, orders=None, limit_count=None, group=False):
        self._store = store
        self._path = path
        self._filters = filters or []
        self._orders = orders or []
        self._limit = limit_count
        self._group = group

    def _copy(self, **changes):
        state = {
            "filters": list(self._filters),
            "orders": list(self._orders),
            "limit_count": self._limit,
            "group": self._group,
        }
        state.update(changes)
        return FakeQuery(self._store, self._path, **state)

    def where(self, field, op, value):
        return self._copy(filters=self._filters + [(field, op, value)])

    def order_by(self, field, direction="ASCENDING"):
        return self._copy(orders=self._orders + [(field, direction)])

    def limit(self, count):
        return self._copy(limit_count=count)

    def _candidates(self):
        for path, data in list(self._store.docs.items()):
            if self._group:
                if len(path) % 2 == 0 and path[-2] == self._path[-1]:
                    yield path, data
            elif len(path) == len(self._path) + 1 and path[:-1] == self._path:
                yield path, data

    def stream(self, transaction=None):
        results = [
            (path, data) for path, data in self._candidates()
            if all(_matches(data, f, op, v) for f, op, v in self._filters)
        ]
        for field, direction in reversed(self._orders):
            results.sort(
                key=lambda item: (_get_field(item[1], field) is None, _get_field(item[1], field) or ""),
                reverse=direction == "DESCENDING",
            )
        if self._limit is not None:
            results = results[:self._limit]
        for path, data in results:
            yield FakeSnapshot(FakeDocumentReference(self._store, path), data)

    def get(self, transaction=None):
        return list(self.stream())


class FakeCollectionReference(FakeQuery):
    def __init__(self, store, path):
        super().__init__(store, path)

    @property
    def id(self):
        return self._path[-1]

    @property
    def parent(self):
        if len(self._path) < 2:
            return None
        return FakeDocumentReference(self._store, self._path[:-1])

    def document(self, document_id=None):
        return FakeDocumentReference(self._store, self._path + (document_id or uuid.uuid4().hex[:20],))

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeWriteBatch:
    def __init__(self):
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self._ops = []


class FakeTransaction(FakeWriteBatch):
    """Writes are applied immediately; reads go straight to the store."""

    def set(self, ref, data, merge=False):
        ref.set(data, merge=merge)

    def update(self, ref, data):
        ref.update(data)

    def delete(self, ref):
        ref.delete()


class FakeFirestore:
    def __init__(self):
        self.docs = {}

    def collection(self, name):
        return FakeCollectionReference(self, (name,))

    def collection_group(self, name):
        return FakeQuery(self, (name,), group=True)

    def batch(self):
        return FakeWriteBatch()

    def transaction(self):
        return FakeTransaction()

    # Test helpers

    def seed(self, path, data):
        """Store a document at 'collection/id[/sub/id...]'."""
        self.docs[tuple(path.split("/"))] = copy.deepcopy(data)

    def data(self, path):
        return copy.deepcopy(self.docs.get(tuple(path.split("/"))))

    def ids(self, collection_path):
        prefix = tuple(collection_path.split("/"))
        return sorted(p[-1] for p in self.docs if len(p) == len(prefix) + 1 and p[:-1] == prefix)


SERVICE_SINGLETONS = [
    ("services.settings", "_settings_service"),
    ("services.branches", "_branch_service"),
    ("services.subjects", "_subject_service"),
    ("services.holidays", "_holiday_service"),
    ("services.classes", "_class_service"),
    ("services.availability", "_availability_service"),
    ("services.enrollments", "_enrollment_service"),
    ("services.parents", "_parent_service"),
    ("services.makeup", "_makeup_service"),
    ("services.teachers", "_teacher_service"),
    ("services.trials", "_trial_service"),
    ("services.reschedule", "_reschedule_service"),
    ("services.events", "_event_service"),
    ("services.notifications", "_notification_service"),
    ("services.liff", "_liff_service"),
    ("services.dashboard", "_dashboard_service"),
]


def make_cache_mock():
    """Cache that always misses, so every read reaches Firestore."""
    cache = MagicMock()
    cache.is_connected = False
    for method in ("get", "get_settings", "get_dashboard", "get_list", "get_holidays"):
        getattr(cache, method).return_value = None
    return cache


@pytest.fixture
def fake_db(monkeypatch):
    """
    In-memory Firestore wired into every service.

    Service singletons are reset so each test builds fresh services
    against this store.
    """
    import importlib

    import core.config
    import services.cache
    import services.webhook

    fake = FakeFirestore()
    monkeypatch.setattr(core.config, "_db", fake)

    def run_in_fake_transaction(callback, *args, **kwargs):
        return callback(fake.transaction(), *args, **kwargs)

    for module_name, attr in SERVICE_SINGLETONS:
        module = importlib.import_module(module_name)
        monkeypatch.setattr(module, attr, None)
        if hasattr(module, "run_transaction"):
            monkeypatch.setattr(module, "run_transaction", run_in_fake_transaction)

    monkeypatch.setattr(services.cache, "_cache_instance", make_cache_mock())
    services.webhook.get_webhook_log().clear()
    return fake


@pytest.fixture
def seed_branch(fake_db):
    """One active branch with two rooms."""
    fake_db.seed("branches/b1", {
        "name": "Central", "code": "CTR", "phone": "021234567", "isActive": True,
        "openTime": "09:00", "closeTime": "18:00", "openDays": [0, 1, 2, 3, 4, 5, 6],
    })
    fake_db.seed("branches/b1/rooms/r1", {"name": "Room A", "capacity": 8, "isActive": True})
    fake_db.seed("branches/b1/rooms/r2", {"name": "Room B", "capacity": 6, "isActive": True})
    return "b1"


@pytest.fixture
def school(fake_db, seed_branch):
    """
    A small school: one subject, teacher, parent with a linked LINE account,
    one student and a Saturday class with four generated sessions.
    """
    fake_db.seed("subjects/s1", {"name": "Robotics", "code": "ROB", "category": "Robotics", "isActive": True})
    fake_db.seed("teachers/t1", {"name": "Kru Ann", "nickname": "Ann", "phone": "0811111111",
                                 "email": "ann@school.test", "availableBranches": ["b1"],
                                 "specialties": ["s1"], "isActive": True})
    fake_db.seed("parents/p1", {"displayName": "Khun Nok", "phone": "0812345678",
                                "email": "nok@example.com", "lineUserId": "U-parent",
                                "preferredBranchId": "b1", "createdAt": "2026-01-01T00:00:00+00:00"})
    fake_db.seed("parents/p1/students/st1", {"parentId": "p1", "name": "Mint Chai", "nickname": "Mint",
                                             "gender": "F", "isActive": True})
    fake_db.seed("classes/c1", {
        "name": "Robotics Saturday", "code": "ROB-SAT", "subjectId": "s1", "teacherId": "t1",
        "branchId": "b1", "roomId": "r1", "daysOfWeek": [6], "startTime": "10:00", "endTime": "12:00",
        "startDate": "2027-01-02", "endDate": "2027-03-27", "totalSessions": 4,
        "maxStudents": 2, "minStudents": 1, "enrolledCount": 0, "status": "published",
        "pricing": {"totalPrice": 4000},
    })
    for number, day in enumerate(["2027-01-02", "2027-01-09", "2027-01-16", "2027-01-23"], start=1):
        fake_db.seed(f"classes/c1/schedules/sch{number}", {
            "sessionDate": day, "sessionNumber": number, "status": "scheduled", "attendance": [],
        })
    return fake_db
