"""
Teacher and Admin User Service

Every staff login is a Firebase Auth account mirrored by an adminUsers
document that carries the role and branch scope. Teachers additionally
have a teachers document with their teaching profile.

Account creation is a two-system write (Auth, then Firestore). If the
Firestore part fails the Auth account is deleted again.
"""

from typing import List, Dict, Any, Optional

from firebase_admin import auth

from core.auth import UserRole
from core.config import get_firestore_client, initialize_firebase
from core.calendar import utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict, is_valid_email

NO_PERMISSIONS = {
    "canManageUsers": False,
    "canManageSettings": False,
    "canViewReports": False,
    "canManageAllBranches": False,
}

ROLE_PERMISSIONS = {
    UserRole.SUPER_ADMIN.value: {
        "canManageUsers": True,
        "canManageSettings": True,
        "canViewReports": True,
        "canManageAllBranches": True,
    },
    UserRole.BRANCH_ADMIN.value: {
        "canManageUsers": False,
        "canManageSettings": False,
        "canViewReports": True,
        "canManageAllBranches": False,
    },
    UserRole.TEACHER.value: NO_PERMISSIONS,
}


class TeacherService:
    """Service for teachers and admin panel accounts."""

    TEACHERS_COLLECTION = "teachers"
    ADMIN_USERS_COLLECTION = "adminUsers"
    CLASSES_COLLECTION = "classes"

    def __init__(self):
        self.db = get_firestore_client()

    # --- Teachers ---

    def get_teachers(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.collection(self.TEACHERS_COLLECTION)
        if branch_id:
            query = query.where("availableBranches", "array_contains", branch_id)
        teachers = [doc_to_dict(doc) for doc in query.stream()]
        teachers.sort(key=lambda t: t.get("name", ""))
        return teachers

    def get_active_teachers(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [t for t in self.get_teachers(branch_id) if t.get("isActive", True)]

    def get_teachers_by_specialty(self, subject_id: str) -> List[Dict[str, Any]]:
        return [t for t in self.get_active_teachers() if subject_id in (t.get("specialties") or [])]

    def get_teacher(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.TEACHERS_COLLECTION).document(teacher_id).get())

    def check_teacher_email_exists(self, email: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.collection(self.TEACHERS_COLLECTION).where("email", "==", email.strip().lower())
        return any(doc.id != exclude_id for doc in query.stream())

    def _auth_email_exists(self, email: str) -> bool:
        try:
            auth.get_user_by_email(email)
            return True
        except auth.UserNotFoundError:
            return False

    def check_email_exists(self, email: str) -> bool:
        """Email already used by an Auth account or a teacher record."""
        return self._auth_email_exists(email) or self.check_teacher_email_exists(email)

    def _create_auth_user(self, email: str, password: str, display_name: str):
        if not is_valid_email(email):
            raise ValidationError("Invalid email address", {"email": "invalid"})
        if not password or len(password) < 6:
            raise ValidationError("Password must be at least 6 characters", {"password": "too_short"})
        if self._auth_email_exists(email):
            raise ValidationError("This email is already registered", {"email": "duplicate"})
        try:
            return auth.create_user(email=email, password=password, display_name=display_name)
        except auth.EmailAlreadyExistsError:
            raise ValidationError("This email is already registered", {"email": "duplicate"})

    def _rollback_auth_user(self, uid: str):
        try:
            auth.delete_user(uid)
            print(f"[Teacher] Rolled back auth user {uid}")
        except Exception as e:
            print(f"[ERROR] Could not roll back auth user {uid}: {e}")

    def create_teacher_account(self, email: str, password: str, data: Dict[str, Any],
                               created_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an Auth login, a teachers document and a teacher adminUsers record.

        Raises:
            ValidationError: Bad input or email already registered
        """
        email = (email or "").strip().lower()
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Teacher name is required", {"name": "required"})

        user = self._create_auth_user(email, password, name)
        branches = data.get("availableBranches") or []

        try:
            teacher_data = {
                "name": name,
                "nickname": data.get("nickname") or name.split()[0],
                "email": email,
                "phone": data.get("phone", ""),
                "lineUserId": data.get("lineUserId"),
                "specialties": data.get("specialties") or [],
                "availableBranches": branches,
                "profileImage": data.get("profileImage"),
                "hourlyRate": data.get("hourlyRate"),
                "bankAccount": data.get("bankAccount"),
                "isActive": data.get("isActive", True),
                "createdAt": utc_timestamp(),
            }
            self.db.collection(self.TEACHERS_COLLECTION).document(user.uid).set(teacher_data)
            self.db.collection(self.ADMIN_USERS_COLLECTION).document(user.uid).set({
                "email": email,
                "displayName": name,
                "role": UserRole.TEACHER.value,
                "branchIds": branches,
                "permissions": dict(NO_PERMISSIONS),
                "isActive": True,
                "authCreated": True,
                "createdAt": utc_timestamp(),
                "createdBy": created_by,
                "updatedAt": utc_timestamp(),
            })
        except Exception:
            self._rollback_auth_user(user.uid)
            raise

        print(f"[Teacher] Created teacher account {email}")
        teacher_data["id"] = user.uid
        return teacher_data

    def update_teacher(self, teacher_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update a teacher; name, branches and active flag are mirrored to adminUsers."""
        doc_ref = self.db.collection(self.TEACHERS_COLLECTION).document(teacher_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Teacher {teacher_id} not found", "teacher")

        update_data = clean_update(data)
        if "email" in update_data:
            update_data["email"] = update_data["email"].strip().lower()
            if self.check_teacher_email_exists(update_data["email"], exclude_id=teacher_id):
                raise ValidationError("This email is already registered", {"email": "duplicate"})
        update_data["updatedAt"] = utc_timestamp()
        doc_ref.update(update_data)

        mirror = {}
        if "name" in update_data:
            mirror["displayName"] = update_data["name"]
        if "availableBranches" in update_data:
            mirror["branchIds"] = update_data["availableBranches"]
        if "isActive" in update_data:
            mirror["isActive"] = update_data["isActive"]
        admin_ref = self.db.collection(self.ADMIN_USERS_COLLECTION).document(teacher_id)
        if mirror and admin_ref.get().exists:
            mirror["updatedAt"] = utc_timestamp()
            admin_ref.update(mirror)

        return doc_to_dict(doc_ref.get())

    def delete_teacher(self, teacher_id: str) -> Dict[str, Any]:
        """Soft delete: the teacher stays on historical classes but cannot log in."""
        teacher = self.update_teacher(teacher_id, {"isActive": False})
        try:
            auth.update_user(teacher_id, disabled=True)
        except auth.UserNotFoundError:
            pass
        return teacher

    def get_teacher_stats(self, teacher_id: str) -> Dict[str, Any]:
        query = self.db.collection(self.CLASSES_COLLECTION).where("teacherId", "==", teacher_id)
        stats = {"totalClasses": 0, "activeClasses": 0, "completedClasses": 0, "totalStudents": 0}
        for doc in query.stream():
            class_data = doc.to_dict()
            stats["totalClasses"] += 1
            if class_data.get("status") in ("published", "started"):
                stats["activeClasses"] += 1
                stats["totalStudents"] += class_data.get("enrolledCount") or 0
            elif class_data.get("status") == "completed":
                stats["completedClasses"] += 1
        return stats

    # --- Admin users ---

    def get_admin_users(self) -> List[Dict[str, Any]]:
        users = [doc_to_dict(doc) for doc in self.db.collection(self.ADMIN_USERS_COLLECTION).stream()]
        users.sort(key=lambda u: u.get("displayName", ""))
        return users

    def get_admin_user(self, uid: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.ADMIN_USERS_COLLECTION).document(uid).get())

    def create_admin_user(self, email: str, password: str, display_name: str, role: str,
                          branch_ids: Optional[List[str]] = None,
                          created_by: Optional[str] = None) -> Dict[str, Any]:
        if role not in ROLE_PERMISSIONS:
            raise ValidationError(f"Invalid role: {role}", {"role": "invalid"})
        email = (email or "").strip().lower()
        user = self._create_auth_user(email, password, display_name)

        admin_data = {
            "email": email,
            "displayName": display_name,
            "role": role,
            "branchIds": branch_ids or [],
            "permissions": dict(ROLE_PERMISSIONS[role]),
            "isActive": True,
            "authCreated": True,
            "createdAt": utc_timestamp(),
            "createdBy": created_by,
            "updatedAt": utc_timestamp(),
        }
        try:
            self.db.collection(self.ADMIN_USERS_COLLECTION).document(user.uid).set(admin_data)
        except Exception:
            self._rollback_auth_user(user.uid)
            raise

        admin_data["id"] = user.uid
        return admin_data

    def update_admin_user(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.ADMIN_USERS_COLLECTION).document(uid)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Admin user {uid} not found", "adminUser")

        update_data = clean_update(data)
        update_data.pop("email", None)
        if "role" in update_data:
            if update_data["role"] not in ROLE_PERMISSIONS:
                raise ValidationError(f"Invalid role: {update_data['role']}", {"role": "invalid"})
            update_data.setdefault("permissions", dict(ROLE_PERMISSIONS[update_data["role"]]))
        update_data["updatedAt"] = utc_timestamp()
        doc_ref.update(update_data)

        if "isActive" in update_data:
            try:
                auth.update_user(uid, disabled=not update_data["isActive"])
            except auth.UserNotFoundError:
                pass
        return doc_to_dict(doc_ref.get())

    def generate_password_reset_link(self, email: str) -> str:
        return auth.generate_password_reset_link(email)


_teacher_service: Optional[TeacherService] = None


def get_teacher_service() -> TeacherService:
    """Get singleton instance of TeacherService."""
    global _teacher_service
    if _teacher_service is None:
        initialize_firebase()
        _teacher_service = TeacherService()
    return _teacher_service
