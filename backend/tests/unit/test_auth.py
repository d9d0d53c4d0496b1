"""
Unit tests for the authentication module.

Tests staff roles, branch scoping, the cron secret and LIFF identities.
"""

import pytest
from unittest.mock import patch, MagicMock

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

import core.auth
from core.auth import (
    AuthenticatedUser,
    LineUser,
    UserRole,
    get_current_admin,
    get_current_user,
    get_line_user,
    get_super_admin,
    get_user_role,
    verify_branch_access,
    verify_cron_secret,
)
from routes.common import scoped_branch


def make_user(role=UserRole.BRANCH_ADMIN, branch_ids=None):
    return AuthenticatedUser(uid="u1", email="staff@school.test", role=role, branch_ids=branch_ids or [])


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestUserRole:
    """Tests for reading roles from adminUsers records"""

    def test_known_roles(self):
        assert get_user_role({"role": "super_admin"}) == UserRole.SUPER_ADMIN
        assert get_user_role({"role": "branch_admin"}) == UserRole.BRANCH_ADMIN

    def test_missing_role_is_teacher(self):
        assert get_user_role({}) == UserRole.TEACHER

    def test_unknown_role_is_teacher(self):
        """Unrecognized roles get the least privileged role"""
        assert get_user_role({"role": "owner"}) == UserRole.TEACHER


class TestBranchAccess:
    """Tests for branch scoping of staff"""

    def test_super_admin_sees_every_branch(self):
        user = make_user(UserRole.SUPER_ADMIN, ["b1"])
        assert user.can_access_branch("b2") is True

    def test_branch_admin_limited_to_own_branches(self):
        user = make_user(branch_ids=["b1"])
        assert user.can_access_branch("b1") is True
        assert user.can_access_branch("b2") is False

    def test_no_branch_list_means_all(self):
        assert make_user().can_access_branch("anything") is True

    def test_verify_branch_access_raises_403(self):
        with pytest.raises(HTTPException) as exc_info:
            verify_branch_access(make_user(branch_ids=["b1"]), "b2")
        assert exc_info.value.status_code == 403

    def test_scoped_branch_defaults_to_single_branch(self):
        assert scoped_branch(make_user(branch_ids=["b1"]), None) == "b1"
        assert scoped_branch(make_user(branch_ids=["b1", "b2"]), None) is None
        assert scoped_branch(make_user(UserRole.SUPER_ADMIN), None) is None

    def test_scoped_branch_rejects_foreign_branch(self):
        with pytest.raises(HTTPException):
            scoped_branch(make_user(branch_ids=["b1"]), "b9")


class TestRoleDependencies:
    """Tests for the staff dependencies"""

    @pytest.mark.asyncio
    async def test_teacher_is_not_admin(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin(make_user(UserRole.TEACHER))
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_branch_admin_is_not_super_admin(self):
        with pytest.raises(HTTPException):
            await get_super_admin(make_user())
        user = make_user(UserRole.SUPER_ADMIN)
        assert await get_super_admin(user) is user

    @pytest.mark.asyncio
    async def test_current_user_requires_admin_record(self):
        with patch.object(core.auth, "verify_firebase_token", return_value={"uid": "u1"}), \
             patch.object(core.auth, "load_admin_user", return_value=None):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user(bearer("token"))
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_current_user_rejects_disabled_account(self):
        record = {"role": "branch_admin", "isActive": False}
        with patch.object(core.auth, "verify_firebase_token", return_value={"uid": "u1"}), \
             patch.object(core.auth, "load_admin_user", return_value=record):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user(bearer("token"))
        assert exc_info.value.detail == "Account is disabled"

    @pytest.mark.asyncio
    async def test_current_user_built_from_record(self):
        record = {"role": "branch_admin", "branchIds": ["b1"], "displayName": "Ploy"}
        token = {"uid": "u1", "email": "ploy@school.test"}
        with patch.object(core.auth, "verify_firebase_token", return_value=token), \
             patch.object(core.auth, "load_admin_user", return_value=record):
            user = await get_current_user(bearer("token"))
        assert user.role == UserRole.BRANCH_ADMIN
        assert user.branch_ids == ["b1"]
        assert user.display_name == "Ploy"


class TestCronSecret:
    """Tests for the cron bearer secret"""

    def test_missing_secret_config_rejects(self):
        with patch.object(core.auth, "CRON_SECRET", ""):
            with pytest.raises(HTTPException) as exc_info:
                verify_cron_secret(bearer("anything"))
        assert exc_info.value.status_code == 401

    def test_wrong_secret_rejects(self):
        with patch.object(core.auth, "CRON_SECRET", "s3cret"):
            with pytest.raises(HTTPException):
                verify_cron_secret(bearer("guess"))

    def test_missing_header_rejects(self):
        with patch.object(core.auth, "CRON_SECRET", "s3cret"):
            with pytest.raises(HTTPException):
                verify_cron_secret(None)

    def test_matching_secret_passes(self):
        with patch.object(core.auth, "CRON_SECRET", "s3cret"):
            assert verify_cron_secret(bearer("s3cret")) is True


class TestLineUser:
    """Tests for resolving LIFF callers"""

    def test_id_token_verified_with_line(self):
        response = MagicMock(status_code=200)
        response.json.return_value = {"sub": "U123", "name": "Mom", "picture": "https://pic"}
        with patch.object(core.auth.requests, "post", return_value=response) as mock_post:
            user = get_line_user(x_line_id_token="idtoken", x_line_user_id=None)
        assert user == LineUser(user_id="U123", display_name="Mom", picture_url="https://pic")
        assert mock_post.call_args.kwargs["data"]["id_token"] == "idtoken"

    def test_rejected_id_token(self):
        with patch.object(core.auth.requests, "post", return_value=MagicMock(status_code=400)):
            with pytest.raises(HTTPException) as exc_info:
                get_line_user(x_line_id_token="bad", x_line_user_id=None)
        assert exc_info.value.status_code == 401

    def test_raw_user_id_only_in_development(self):
        with patch.object(core.auth, "is_development", return_value=True):
            assert get_line_user(x_line_id_token=None, x_line_user_id="Udev").user_id == "Udev"
        with patch.object(core.auth, "is_development", return_value=False):
            with pytest.raises(HTTPException):
                get_line_user(x_line_id_token=None, x_line_user_id="Udev")
