"""
Authentication Module for the school admin backend

Three kinds of callers reach the API:
- Admin panel staff, identified by a Firebase ID token and an adminUsers record
- The cron runner, identified by a shared CRON_SECRET bearer token
- Parents inside the LINE LIFF app, identified by a LINE Login ID token
"""

import hmac
from typing import List, Optional
from dataclasses import dataclass, field
from enum import Enum

import requests
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth

from .config import (
    CRON_SECRET,
    LIFF_CHANNEL_ID,
    LINE_LOGIN_VERIFY_URL,
    get_firestore_client,
    initialize_firebase,
    is_development,
)


# Security scheme for Bearer token
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

ADMIN_USERS_COLLECTION = "adminUsers"


class UserRole(str, Enum):
    """Staff roles stored on adminUsers documents."""
    SUPER_ADMIN = "super_admin"
    BRANCH_ADMIN = "branch_admin"
    TEACHER = "teacher"


@dataclass
class AuthenticatedUser:
    """An admin panel user resolved from Firebase Auth plus adminUsers."""
    uid: str
    email: Optional[str]
    role: UserRole
    branch_ids: List[str] = field(default_factory=list)
    display_name: Optional[str] = None
    is_active: bool = True

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    @property
    def can_manage(self) -> bool:
        return self.role in (UserRole.SUPER_ADMIN, UserRole.BRANCH_ADMIN)

    def can_access_branch(self, branch_id: Optional[str]) -> bool:
        """Super admins and staff without a branch list see every branch"""
        if self.is_super_admin or not self.branch_ids or not branch_id:
            return True
        return branch_id in self.branch_ids


@dataclass
class LineUser:
    """A parent identified through the LIFF app."""
    user_id: str
    display_name: Optional[str] = None
    picture_url: Optional[str] = None


def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token.

    Args:
        token: The Firebase ID token to verify

    Returns:
        Decoded token claims

    Raises:
        HTTPException: If token is invalid or expired
    """
    initialize_firebase()
    try:
        decoded_token = auth.verify_id_token(token)
        return decoded_token
    except auth.ExpiredIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except auth.RevokedIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except auth.InvalidIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"}
        )


def get_user_role(admin_record: dict) -> UserRole:
    """
    Read the role from an adminUsers record.

    Unknown or missing roles fall back to TEACHER, the least privileged.
    """
    try:
        return UserRole(admin_record.get("role", UserRole.TEACHER.value))
    except ValueError:
        return UserRole.TEACHER


def load_admin_user(uid: str) -> Optional[dict]:
    doc = get_firestore_client().collection(ADMIN_USERS_COLLECTION).document(uid).get()
    if not doc.exists:
        return None
    return doc.to_dict()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current admin panel user.

    The Firebase account must have an active adminUsers record.

    Usage:
        @router.get("/protected")
        async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
            return {"uid": user.uid}
    """
    decoded_token = verify_firebase_token(credentials.credentials)
    uid = decoded_token["uid"]

    record = load_admin_user(uid)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No admin access for this account"
        )
    if not record.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    return AuthenticatedUser(
        uid=uid,
        email=decoded_token.get("email") or record.get("email"),
        role=get_user_role(record),
        branch_ids=record.get("branchIds") or [],
        display_name=record.get("displayName") or decoded_token.get("name"),
        is_active=record.get("isActive", True),
    )


async def get_current_admin(
    user: AuthenticatedUser = Depends(get_current_user)
) -> AuthenticatedUser:
    """
    Dependency that ensures the user is a super admin or branch admin.

    Raises:
        HTTPException: If user is a teacher
    """
    if not user.can_manage:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


async def get_super_admin(
    user: AuthenticatedUser = Depends(get_current_user)
) -> AuthenticatedUser:
    """Dependency that ensures the user is a super admin."""
    if not user.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin access required"
        )
    return user


def verify_branch_access(user: AuthenticatedUser, branch_id: Optional[str]) -> None:
    """Raise 403 when the user may not act on the given branch."""
    if not user.can_access_branch(branch_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this branch"
        )


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)
) -> bool:
    """
    Dependency guarding the cron endpoints with the shared CRON_SECRET.

    Raises:
        HTTPException: 401 when the secret is missing or does not match
    """
    if not CRON_SECRET or credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not hmac.compare_digest(credentials.credentials, CRON_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return True


def verify_line_id_token(id_token: str) -> dict:
    """
    Verify a LIFF ID token against LINE Login.

    Returns:
        Decoded claims (sub = LINE user id, name, picture)

    Raises:
        HTTPException: 401 if LINE rejects the token
    """
    try:
        response = requests.post(
            LINE_LOGIN_VERIFY_URL,
            data={"id_token": id_token, "client_id": LIFF_CHANNEL_ID},
            timeout=10
        )
    except requests.RequestException as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"LINE verification unavailable: {e}"
        )

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid LINE ID token"
        )
    return response.json()


def get_line_user(
    x_line_id_token: Optional[str] = Header(None),
    x_line_user_id: Optional[str] = Header(None),
) -> LineUser:
    """
    Dependency resolving the LINE user behind a LIFF request.

    In development the raw X-Line-User-Id header is accepted so the LIFF
    pages can be exercised without a LINE login.
    """
    if x_line_id_token:
        claims = verify_line_id_token(x_line_id_token)
        return LineUser(
            user_id=claims["sub"],
            display_name=claims.get("name"),
            picture_url=claims.get("picture"),
        )

    if x_line_user_id and is_development():
        return LineUser(user_id=x_line_user_id)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="LINE login required"
    )
