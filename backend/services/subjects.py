"""
Subject Catalog Service

Handles Firestore operations for the subjects taught across branches.
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict
from services.cache import get_cache

SUBJECT_CATEGORIES = ["Coding", "Robotics", "AI", "Other"]
SUBJECT_LEVELS = ["Beginner", "Intermediate", "Advanced"]


class SubjectService:
    """Service for the subject catalog."""

    SUBJECTS_COLLECTION = "subjects"

    def __init__(self):
        self.db = get_firestore_client()

    def get_subjects(self) -> List[Dict[str, Any]]:
        cache = get_cache()
        cached = cache.get_list(self.SUBJECTS_COLLECTION)
        if cached is not None:
            return cached

        subjects = [doc_to_dict(doc) for doc in self.db.collection(self.SUBJECTS_COLLECTION).stream()]
        subjects.sort(key=lambda s: s.get("name", ""))
        cache.set_list(self.SUBJECTS_COLLECTION, subjects)
        return subjects

    def get_active_subjects(self) -> List[Dict[str, Any]]:
        return [s for s in self.get_subjects() if s.get("isActive", True)]

    def get_subjects_by_category(self, category: str) -> List[Dict[str, Any]]:
        return [s for s in self.get_active_subjects() if s.get("category") == category]

    def get_subject(self, subject_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.SUBJECTS_COLLECTION).document(subject_id).get())

    def check_subject_code_exists(self, code: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.collection(self.SUBJECTS_COLLECTION).where("code", "==", code.upper())
        return any(doc.id != exclude_id for doc in query.stream())

    def _validate(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        if not partial or "name" in data:
            if not (data.get("name") or "").strip():
                errors["name"] = "Subject name is required"
        if not partial or "code" in data:
            if not (data.get("code") or "").strip():
                errors["code"] = "Subject code is required"
        if "category" in data and data["category"] not in SUBJECT_CATEGORIES:
            errors["category"] = f"Category must be one of {', '.join(SUBJECT_CATEGORIES)}"
        if "level" in data and data["level"] not in SUBJECT_LEVELS:
            errors["level"] = f"Level must be one of {', '.join(SUBJECT_LEVELS)}"
        age_range = data.get("ageRange")
        if age_range and age_range.get("min", 0) > age_range.get("max", 99):
            errors["ageRange"] = "Minimum age must not exceed maximum age"
        if errors:
            raise ValidationError("Invalid subject data", errors)

    def create_subject(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a subject.

        Raises:
            ValidationError: Missing fields, unknown category/level, duplicate code
        """
        data = {"category": "Other", "level": "Beginner", **data}
        self._validate(data)
        code = data["code"].strip().upper()
        if self.check_subject_code_exists(code):
            raise ValidationError(f"Subject code {code} already exists", {"code": "duplicate"})

        doc_ref = self.db.collection(self.SUBJECTS_COLLECTION).document()
        subject_data = {
            "name": data["name"].strip(),
            "code": code,
            "description": data.get("description", ""),
            "category": data["category"],
            "level": data["level"],
            "ageRange": data.get("ageRange", {"min": 6, "max": 18}),
            "color": data.get("color", "#3B82F6"),
            "prerequisites": data.get("prerequisites", []),
            "isActive": data.get("isActive", True),
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }
        doc_ref.set(subject_data)
        get_cache().invalidate_list(self.SUBJECTS_COLLECTION)

        subject_data["id"] = doc_ref.id
        return subject_data

    def update_subject(self, subject_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.SUBJECTS_COLLECTION).document(subject_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Subject {subject_id} not found", "subject")

        self._validate(data, partial=True)
        update_data = clean_update(data)
        if "code" in update_data:
            update_data["code"] = update_data["code"].strip().upper()
            if self.check_subject_code_exists(update_data["code"], exclude_id=subject_id):
                raise ValidationError(f"Subject code {update_data['code']} already exists", {"code": "duplicate"})
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        get_cache().invalidate_list(self.SUBJECTS_COLLECTION)
        return doc_to_dict(doc_ref.get())

    def delete_subject(self, subject_id: str) -> bool:
        doc_ref = self.db.collection(self.SUBJECTS_COLLECTION).document(subject_id)
        if not doc_ref.get().exists:
            return False
        in_use = self.db.collection("classes").where("subjectId", "==", subject_id).limit(1).stream()
        if any(True for _ in in_use):
            raise ValidationError("Cannot delete a subject that has classes", {"subjectId": "in_use"})
        doc_ref.delete()
        get_cache().invalidate_list(self.SUBJECTS_COLLECTION)
        return True

    def get_subject_count_by_category(self) -> Dict[str, int]:
        counts = {category: 0 for category in SUBJECT_CATEGORIES}
        for subject in self.get_active_subjects():
            category = subject.get("category", "Other")
            counts[category] = counts.get(category, 0) + 1
        return counts


_subject_service: Optional[SubjectService] = None


def get_subject_service() -> SubjectService:
    """Get singleton instance of SubjectService."""
    global _subject_service
    if _subject_service is None:
        initialize_firebase()
        _subject_service = SubjectService()
    return _subject_service
