"""
Tests for services/teachers.py - teacher accounts mirrored into adminUsers
"""

import pytest
from unittest.mock import patch, MagicMock

from firebase_admin import auth

from core.errors import ValidationError
from services.teachers import ROLE_PERMISSIONS, get_teacher_service


@pytest.fixture
def firebase_auth():
    """Firebase Auth calls patched; no account exists for any email."""
    with patch.object(auth, "get_user_by_email", side_effect=auth.UserNotFoundError("none")), \
         patch.object(auth, "create_user", return_value=MagicMock(uid="uid-new")) as create_user, \
         patch.object(auth, "delete_user") as delete_user, \
         patch.object(auth, "update_user") as update_user:
        yield {"create_user": create_user, "delete_user": delete_user, "update_user": update_user}


class TestTeacherAccounts:
    def test_create_writes_teacher_and_admin_user(self, fake_db, firebase_auth):
        teacher = get_teacher_service().create_teacher_account(
            " Ann@School.Test ", "secret1", {"name": "Ann Wong", "availableBranches": ["b1"]}, created_by="admin1"
        )

        assert teacher["id"] == "uid-new"
        assert teacher["email"] == "ann@school.test"
        assert teacher["nickname"] == "Ann"
        admin = fake_db.data("adminUsers/uid-new")
        assert admin["role"] == "teacher"
        assert admin["branchIds"] == ["b1"]
        assert admin["permissions"]["canManageUsers"] is False

    def test_short_password(self, fake_db, firebase_auth):
        with pytest.raises(ValidationError) as exc_info:
            get_teacher_service().create_teacher_account("a@school.test", "123", {"name": "A"})
        assert exc_info.value.errors == {"password": "too_short"}
        firebase_auth["create_user"].assert_not_called()

    def test_existing_auth_email(self, fake_db, firebase_auth):
        with patch.object(auth, "get_user_by_email", return_value=MagicMock()):
            with pytest.raises(ValidationError):
                get_teacher_service().create_teacher_account("a@school.test", "secret1", {"name": "A"})

    def test_firestore_failure_rolls_back_auth_user(self, fake_db, firebase_auth):
        service = get_teacher_service()
        with patch.object(service.db, "collection", side_effect=RuntimeError("firestore down")):
            with pytest.raises(RuntimeError):
                service.create_teacher_account("a@school.test", "secret1", {"name": "A"})
        firebase_auth["delete_user"].assert_called_once_with("uid-new")

    def test_update_mirrors_to_admin_user(self, fake_db, firebase_auth):
        service = get_teacher_service()
        service.create_teacher_account("a@school.test", "secret1", {"name": "A"})
        service.update_teacher("uid-new", {"name": "Ann B", "availableBranches": ["b2"]})

        admin = fake_db.data("adminUsers/uid-new")
        assert admin["displayName"] == "Ann B"
        assert admin["branchIds"] == ["b2"]

    def test_delete_is_soft_and_disables_login(self, fake_db, firebase_auth):
        service = get_teacher_service()
        service.create_teacher_account("a@school.test", "secret1", {"name": "A"})

        teacher = service.delete_teacher("uid-new")

        assert teacher["isActive"] is False
        assert fake_db.data("adminUsers/uid-new")["isActive"] is False
        firebase_auth["update_user"].assert_called_once_with("uid-new", disabled=True)


class TestTeacherQueries:
    def test_branch_filter_and_specialty(self, school):
        school.seed("teachers/t2", {"name": "Bee", "availableBranches": ["b2"], "specialties": ["s1"], "isActive": False})
        service = get_teacher_service()
        assert [t["id"] for t in service.get_teachers("b1")] == ["t1"]
        assert [t["id"] for t in service.get_teachers_by_specialty("s1")] == ["t1"]

    def test_stats(self, school):
        school.seed("classes/c1", {**school.data("classes/c1"), "enrolledCount": 2})
        stats = get_teacher_service().get_teacher_stats("t1")
        assert stats == {"totalClasses": 1, "activeClasses": 1, "completedClasses": 0, "totalStudents": 2}


class TestAdminUsers:
    def test_create_with_role_permissions(self, fake_db, firebase_auth):
        admin = get_teacher_service().create_admin_user("boss@school.test", "secret1", "Boss", "super_admin")
        assert admin["permissions"] == ROLE_PERMISSIONS["super_admin"]

    def test_invalid_role(self, fake_db, firebase_auth):
        with pytest.raises(ValidationError):
            get_teacher_service().create_admin_user("x@school.test", "secret1", "X", "owner")

    def test_role_change_resets_permissions(self, fake_db, firebase_auth):
        service = get_teacher_service()
        service.create_admin_user("x@school.test", "secret1", "X", "branch_admin", ["b1"])
        updated = service.update_admin_user("uid-new", {"role": "super_admin", "email": "changed@x.test"})
        assert updated["permissions"]["canManageAllBranches"] is True
        assert updated["email"] == "x@school.test"
