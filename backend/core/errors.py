"""
Domain exceptions raised by the service layer.

Routes translate these into HTTP responses; batch jobs record them per
item and keep going.
"""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for business-rule failures"""
    pass


class NotFoundError(ServiceError):
    def __init__(self, message: str, resource: Optional[str] = None):
        super().__init__(message)
        self.resource = resource


class ValidationError(ServiceError):
    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(ServiceError):
    """Raised when a room or teacher slot is already taken"""

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class ClassFullError(ServiceError):
    def __init__(self, class_id: str, available_seats: int = 0, message: str = "Class is full"):
        super().__init__(message)
        self.class_id = class_id
        self.available_seats = available_seats


class DuplicateEnrollmentError(ServiceError):
    pass


class MakeupLimitReachedError(ServiceError):
    def __init__(self, message: str, current_count: int, limit: int):
        super().__init__(message)
        self.current_count = current_count
        self.limit = limit


class EventFullError(ServiceError):
    def __init__(self, message: str, remaining: int = 0):
        super().__init__(message)
        self.remaining = remaining


class NotConfiguredError(ServiceError):
    """A required integration setting (e.g. LINE channel secret) is missing"""
    pass


class SignatureError(ServiceError):
    """Webhook request body does not match its X-Line-Signature"""
    pass
