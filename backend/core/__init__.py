from .config import get_firestore_client, initialize_firebase, run_transaction, FIREBASE_CONFIG
from .calendar import SchoolCalendar, utc_timestamp
from .parsers import parse_time, times_overlap, normalize_phone, doc_to_dict
from .errors import (
    ServiceError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ClassFullError,
    DuplicateEnrollmentError,
    MakeupLimitReachedError,
    EventFullError,
    NotConfiguredError,
    SignatureError
)
from .auth import (
    AuthenticatedUser,
    LineUser,
    UserRole,
    get_current_user,
    get_current_admin,
    get_super_admin,
    get_line_user,
    verify_branch_access
)
