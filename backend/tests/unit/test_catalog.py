"""
Tests for services/branches.py and services/subjects.py
"""

import pytest

from core.errors import ValidationError
from services.branches import get_branch_service
from services.subjects import get_subject_service


class TestBranches:
    def test_create_uppercases_code(self, fake_db):
        branch = get_branch_service().create_branch({"name": "Siam", "code": "sm"})
        assert branch["code"] == "SM"
        assert branch["openDays"] == [1, 2, 3, 4, 5, 6]

    def test_duplicate_code(self, seed_branch):
        with pytest.raises(ValidationError):
            get_branch_service().create_branch({"name": "Other", "code": "ctr"})

    def test_invalid_hours_and_days(self, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            get_branch_service().create_branch({"name": "X", "code": "X", "openTime": "18:00",
                                                "closeTime": "09:00", "openDays": [7]})
        assert set(exc_info.value.errors) == {"openTime", "openDays"}

    def test_toggle(self, seed_branch):
        assert get_branch_service().toggle_branch_status("b1")["isActive"] is False


class TestRooms:
    def test_room_names_unique_per_branch_ignoring_case(self, seed_branch):
        with pytest.raises(ValidationError) as exc_info:
            get_branch_service().create_room("b1", {"name": " room a ", "capacity": 4})
        assert exc_info.value.errors == {"name": "duplicate"}

    def test_capacity_required(self, seed_branch):
        with pytest.raises(ValidationError):
            get_branch_service().create_room("b1", {"name": "Lab"})

    def test_rename_to_own_name(self, seed_branch):
        room = get_branch_service().update_room("b1", "r1", {"name": "Room A", "capacity": 10})
        assert room["capacity"] == 10

    def test_active_room_count(self, seed_branch, fake_db):
        fake_db.seed("branches/b1/rooms/r3", {"name": "Old", "capacity": 2, "isActive": False})
        assert get_branch_service().get_room_count("b1") == 2


class TestSubjects:
    def test_defaults(self, fake_db):
        subject = get_subject_service().create_subject({"name": "Scratch", "code": "scr1"})
        assert subject["code"] == "SCR1"
        assert subject["category"] == "Other"
        assert subject["ageRange"] == {"min": 6, "max": 18}

    def test_invalid_category_level_and_ages(self, fake_db):
        with pytest.raises(ValidationError) as exc_info:
            get_subject_service().create_subject({"name": "X", "code": "X", "category": "Art",
                                                  "level": "Expert", "ageRange": {"min": 12, "max": 8}})
        assert set(exc_info.value.errors) == {"category", "level", "ageRange"}

    def test_delete_in_use(self, school):
        with pytest.raises(ValidationError):
            get_subject_service().delete_subject("s1")

    def test_count_by_category(self, school):
        counts = get_subject_service().get_subject_count_by_category()
        assert counts["Robotics"] == 1
        assert counts["Coding"] == 0
