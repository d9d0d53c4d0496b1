"""
Parent and Student Service

Parents are top-level documents; their children live in the
parents/{parentId}/students sub-collection. A parent is linked to a LINE
account either by signing in through LIFF or by redeeming a one-time
link token issued from the admin panel.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict, is_valid_email, is_valid_thai_phone, normalize_phone
from services.enrollments import SEAT_HOLDING_STATUSES

LINK_TOKEN_TTL_HOURS = 24


class ParentService:
    """Service for parents, their students and LINE account linking."""

    PARENTS_COLLECTION = "parents"
    STUDENTS_COLLECTION = "students"
    LINK_TOKENS_COLLECTION = "linkTokens"
    ENROLLMENTS_COLLECTION = "enrollments"
    MAKEUP_COLLECTION = "makeupClasses"

    def __init__(self):
        self.db = get_firestore_client()

    def _students(self, parent_id: str):
        return self.db.collection(self.PARENTS_COLLECTION).document(parent_id).collection(self.STUDENTS_COLLECTION)

    # --- Parents ---

    def get_parents(self) -> List[Dict[str, Any]]:
        parents = [doc_to_dict(doc) for doc in self.db.collection(self.PARENTS_COLLECTION).stream()]
        parents.sort(key=lambda p: p.get("createdAt", ""), reverse=True)
        return parents

    def get_parent(self, parent_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.PARENTS_COLLECTION).document(parent_id).get())

    def get_parent_by_line_id(self, line_user_id: str) -> Optional[Dict[str, Any]]:
        query = self.db.collection(self.PARENTS_COLLECTION).where("lineUserId", "==", line_user_id).limit(1)
        for doc in query.stream():
            return doc_to_dict(doc)
        return None

    def get_parent_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        cleaned = normalize_phone(phone)
        if not cleaned:
            return None
        query = self.db.collection(self.PARENTS_COLLECTION).where("phone", "==", cleaned).limit(1)
        for doc in query.stream():
            return doc_to_dict(doc)
        return None

    def check_parent_phone_exists(self, phone: str, exclude_id: Optional[str] = None) -> bool:
        parent = self.get_parent_by_phone(phone)
        return parent is not None and parent["id"] != exclude_id

    def check_line_user_id_exists(self, line_user_id: str, exclude_id: Optional[str] = None) -> bool:
        parent = self.get_parent_by_line_id(line_user_id)
        return parent is not None and parent["id"] != exclude_id

    def search_parents(self, term: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on name, phone or email."""
        needle = (term or "").strip().lower()
        if not needle:
            return []
        phone_needle = normalize_phone(needle)
        results = []
        for parent in self.get_parents():
            if needle in (parent.get("displayName") or "").lower():
                results.append(parent)
            elif phone_needle and phone_needle in (parent.get("phone") or ""):
                results.append(parent)
            elif needle in (parent.get("email") or "").lower():
                results.append(parent)
        return results

    def _validate_parent(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        if not partial or "displayName" in data:
            if not (data.get("displayName") or "").strip():
                errors["displayName"] = "Parent name is required"
        if not partial or "phone" in data:
            if not is_valid_thai_phone(data.get("phone")):
                errors["phone"] = "Phone must be 9-10 digits starting with 0"
        if data.get("email") and not is_valid_email(data["email"]):
            errors["email"] = "Invalid email address"
        if errors:
            raise ValidationError("Invalid parent data", errors)

    def create_parent(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a parent.

        Raises:
            ValidationError: Invalid data or a phone number already in use
        """
        self._validate_parent(data)
        phone = normalize_phone(data["phone"])
        if self.check_parent_phone_exists(phone):
            raise ValidationError("A parent with this phone number already exists", {"phone": "duplicate"})
        if data.get("lineUserId") and self.check_line_user_id_exists(data["lineUserId"]):
            raise ValidationError("This LINE account is already linked to another parent", {"lineUserId": "duplicate"})

        doc_ref = self.db.collection(self.PARENTS_COLLECTION).document()
        parent_data = {
            "displayName": data["displayName"].strip(),
            "phone": phone,
            "email": data.get("email"),
            "lineUserId": data.get("lineUserId"),
            "pictureUrl": data.get("pictureUrl"),
            "emergencyPhone": normalize_phone(data.get("emergencyPhone")) or None,
            "address": data.get("address"),
            "preferredBranchId": data.get("preferredBranchId"),
            "createdAt": utc_timestamp(),
            "lastLoginAt": None,
        }
        doc_ref.set(parent_data)
        parent_data["id"] = doc_ref.id
        return parent_data

    def update_parent(self, parent_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.PARENTS_COLLECTION).document(parent_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Parent {parent_id} not found", "parent")

        self._validate_parent(data, partial=True)
        update_data = clean_update(data)
        if "phone" in update_data:
            update_data["phone"] = normalize_phone(update_data["phone"])
            if self.check_parent_phone_exists(update_data["phone"], exclude_id=parent_id):
                raise ValidationError("A parent with this phone number already exists", {"phone": "duplicate"})
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        return doc_to_dict(doc_ref.get())

    def _has_active_enrollments(self, field_name: str, value: str) -> bool:
        query = (
            self.db.collection(self.ENROLLMENTS_COLLECTION)
            .where(field_name, "==", value)
            .where("status", "in", SEAT_HOLDING_STATUSES)
            .limit(1)
        )
        return any(True for _ in query.stream())

    def can_delete_parent(self, parent_id: str) -> Dict[str, Any]:
        if self._has_active_enrollments("parentId", parent_id):
            return {"canDelete": False, "reason": "Parent has students with active enrollments"}
        return {"canDelete": True, "reason": None}

    def delete_parent(self, parent_id: str) -> bool:
        """Delete a parent and all of their students."""
        if not self.get_parent(parent_id):
            return False
        check = self.can_delete_parent(parent_id)
        if not check["canDelete"]:
            raise ValidationError(check["reason"], {"parentId": "in_use"})

        batch = self.db.batch()
        for doc in self._students(parent_id).stream():
            batch.delete(doc.reference)
        batch.delete(self.db.collection(self.PARENTS_COLLECTION).document(parent_id))
        batch.commit()
        return True

    # --- Students ---

    def get_students_by_parent(self, parent_id: str, active_only: bool = False) -> List[Dict[str, Any]]:
        students = []
        for doc in self._students(parent_id).stream():
            student = doc_to_dict(doc)
            student["parentId"] = parent_id
            if active_only and not student.get("isActive", True):
                continue
            students.append(student)
        students.sort(key=lambda s: s.get("name", ""))
        return students

    def get_student(self, parent_id: str, student_id: str) -> Optional[Dict[str, Any]]:
        student = doc_to_dict(self._students(parent_id).document(student_id).get())
        if student:
            student["parentId"] = parent_id
        return student

    def get_student_with_parent(self, student_id: str, parent_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        A student plus the parent fields needed for contact and notifications.

        When the parent id is unknown the students collection group is scanned.
        """
        student = None
        if parent_id:
            student = self.get_student(parent_id, student_id)
        else:
            for doc in self.db.collection_group(self.STUDENTS_COLLECTION).stream():
                if doc.id == student_id:
                    student = doc_to_dict(doc)
                    student["parentId"] = student.get("parentId") or doc.reference.parent.parent.id
                    break
        if student is None:
            return None

        parent = self.get_parent(student["parentId"]) or {}
        student["parentName"] = parent.get("displayName", "")
        student["parentPhone"] = parent.get("phone", "")
        student["parentLineUserId"] = parent.get("lineUserId")
        student["parentEmail"] = parent.get("email")
        return student

    def get_all_students_with_parents(self, branch_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Every student with parent contact fields.

        With a branch, a student is included when the parent prefers that
        branch or the student has an enrollment there.
        """
        enrolled_in_branch = set()
        if branch_id:
            query = self.db.collection(self.ENROLLMENTS_COLLECTION).where("branchId", "==", branch_id)
            enrolled_in_branch = {doc.to_dict().get("studentId") for doc in query.stream()}

        results = []
        for parent in self.get_parents():
            for student in self.get_students_by_parent(parent["id"]):
                if branch_id and parent.get("preferredBranchId") != branch_id and student["id"] not in enrolled_in_branch:
                    continue
                student["parentName"] = parent.get("displayName", "")
                student["parentPhone"] = parent.get("phone", "")
                student["parentLineUserId"] = parent.get("lineUserId")
                results.append(student)
        return results

    def _validate_student(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        if not partial or "name" in data:
            if not (data.get("name") or "").strip():
                errors["name"] = "Student name is required"
        if "gender" in data and data["gender"] not in ("M", "F"):
            errors["gender"] = "Gender must be M or F"
        if data.get("birthdate"):
            try:
                datetime.fromisoformat(str(data["birthdate"])[:10])
            except ValueError:
                errors["birthdate"] = "Invalid birthdate"
        if errors:
            raise ValidationError("Invalid student data", errors)

    def create_student(self, parent_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.get_parent(parent_id):
            raise NotFoundError(f"Parent {parent_id} not found", "parent")
        self._validate_student(data)

        name = data["name"].strip()
        doc_ref = self._students(parent_id).document()
        student_data = {
            "parentId": parent_id,
            "name": name,
            "nickname": data.get("nickname") or name.split()[0],
            "birthdate": str(data["birthdate"])[:10] if data.get("birthdate") else None,
            "gender": data.get("gender"),
            "schoolName": data.get("schoolName"),
            "gradeLevel": data.get("gradeLevel"),
            "profileImage": data.get("profileImage"),
            "allergies": data.get("allergies"),
            "specialNeeds": data.get("specialNeeds"),
            "emergencyContact": data.get("emergencyContact"),
            "emergencyPhone": normalize_phone(data.get("emergencyPhone")) or None,
            "isActive": data.get("isActive", True),
            "createdAt": utc_timestamp(),
        }
        doc_ref.set(student_data)
        student_data["id"] = doc_ref.id
        return student_data

    def update_student(self, parent_id: str, student_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self._students(parent_id).document(student_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Student {student_id} not found", "student")

        self._validate_student(data, partial=True)
        update_data = clean_update(data)
        update_data.pop("parentId", None)
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        student = doc_to_dict(doc_ref.get())
        student["parentId"] = parent_id
        return student

    def can_delete_student(self, student_id: str) -> Dict[str, Any]:
        if self._has_active_enrollments("studentId", student_id):
            return {"canDelete": False, "reason": "Student has active enrollments"}
        makeups = (
            self.db.collection(self.MAKEUP_COLLECTION)
            .where("studentId", "==", student_id)
            .where("status", "in", ["pending", "scheduled"])
            .limit(1)
        )
        if any(True for _ in makeups.stream()):
            return {"canDelete": False, "reason": "Student has pending makeup classes"}
        return {"canDelete": True, "reason": None}

    def delete_student(self, parent_id: str, student_id: str) -> bool:
        doc_ref = self._students(parent_id).document(student_id)
        if not doc_ref.get().exists:
            return False
        check = self.can_delete_student(student_id)
        if not check["canDelete"]:
            raise ValidationError(check["reason"], {"studentId": "in_use"})
        doc_ref.delete()
        return True

    # --- LINE account linking ---

    def create_link_token(self, parent_id: str) -> Dict[str, Any]:
        """Issue a one-time token the parent redeems in the LIFF app."""
        if not self.get_parent(parent_id):
            raise NotFoundError(f"Parent {parent_id} not found", "parent")

        token = secrets.token_urlsafe(24)
        expires_at = datetime.now(timezone.utc) + timedelta(hours=LINK_TOKEN_TTL_HOURS)
        token_data = {
            "parentId": parent_id,
            "token": token,
            "createdAt": utc_timestamp(),
            "expiresAt": expires_at.isoformat(),
            "used": False,
        }
        doc_ref = self.db.collection(self.LINK_TOKENS_COLLECTION).document()
        doc_ref.set(token_data)
        token_data["id"] = doc_ref.id
        return token_data

    def verify_link_token(self, token: str, phone: str) -> Dict[str, Any]:
        """
        Check a link token and the phone number the parent typed.

        Returns:
            Dict with valid, reason, parent and tokenId
        """
        query = self.db.collection(self.LINK_TOKENS_COLLECTION).where("token", "==", token).limit(1)
        token_doc = next(iter(query.stream()), None)
        if token_doc is None:
            return {"valid": False, "reason": "Invalid link", "parent": None, "tokenId": None}

        token_data = token_doc.to_dict()
        if token_data.get("used"):
            return {"valid": False, "reason": "This link has already been used", "parent": None, "tokenId": token_doc.id}

        expires_at = datetime.fromisoformat(token_data["expiresAt"])
        if expires_at < datetime.now(timezone.utc):
            return {"valid": False, "reason": "This link has expired", "parent": None, "tokenId": token_doc.id}

        parent = self.get_parent(token_data["parentId"])
        if parent is None:
            return {"valid": False, "reason": "Parent not found", "parent": None, "tokenId": token_doc.id}
        if normalize_phone(phone) != parent.get("phone"):
            return {"valid": False, "reason": "Phone number does not match our records", "parent": None,
                    "tokenId": token_doc.id}

        return {"valid": True, "reason": None, "parent": parent, "tokenId": token_doc.id}

    def mark_token_used(self, token_id: str, line_user_id: str) -> None:
        self.db.collection(self.LINK_TOKENS_COLLECTION).document(token_id).update({
            "used": True,
            "usedAt": utc_timestamp(),
            "usedBy": line_user_id,
        })


_parent_service: Optional[ParentService] = None


def get_parent_service() -> ParentService:
    """Get singleton instance of ParentService."""
    global _parent_service
    if _parent_service is None:
        initialize_firebase()
        _parent_service = ParentService()
    return _parent_service
