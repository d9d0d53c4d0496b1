"""
Shared helpers for the API routers.

Services raise domain exceptions; routers wrap service calls in
``service_errors()`` so each exception becomes the matching HTTP status.
"""

from contextlib import contextmanager
from typing import Optional

from fastapi import HTTPException, status

from api.client import LineApiError
from core.auth import AuthenticatedUser, verify_branch_access
from core.errors import (
    ClassFullError,
    ConflictError,
    DuplicateEnrollmentError,
    EventFullError,
    MakeupLimitReachedError,
    NotConfiguredError,
    NotFoundError,
    ServiceError,
    SignatureError,
    ValidationError,
)
from services.cache import get_cache


def to_http_exception(error: Exception) -> HTTPException:
    """Map a service or LINE exception to an HTTPException."""
    message = str(error)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": message, "errors": error.errors}
        )
    if isinstance(error, DuplicateEnrollmentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": message, "conflicts": error.conflicts}
        )
    if isinstance(error, ClassFullError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": message, "classId": error.class_id, "availableSeats": error.available_seats}
        )
    if isinstance(error, MakeupLimitReachedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": message, "currentCount": error.current_count, "limit": error.limit}
        )
    if isinstance(error, EventFullError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": message, "remaining": error.remaining}
        )
    if isinstance(error, SignatureError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)
    if isinstance(error, NotConfiguredError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)
    if isinstance(error, LineApiError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": message, "status": error.status_code}
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


@contextmanager
def service_errors():
    """
    Translate domain exceptions raised inside the block.

    Usage:
        with service_errors():
            return get_branch_service().create_branch(data)
    """
    try:
        yield
    except (ServiceError, LineApiError) as e:
        raise to_http_exception(e)


def require_found(item, message: str):
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)
    return item


def scoped_branch(user: AuthenticatedUser, branch_id: Optional[str]) -> Optional[str]:
    """
    Branch filter for list endpoints.

    A requested branch must be accessible. Branch-scoped staff asking for
    everything get their single branch when they only have one.
    """
    if branch_id:
        verify_branch_access(user, branch_id)
        return branch_id
    if not user.is_super_admin and len(user.branch_ids) == 1:
        return user.branch_ids[0]
    return None


def invalidate_dashboard():
    get_cache().invalidate_dashboard()
