"""
Branch and Room Service

Branches are the school's physical locations; rooms live in a
sub-collection under each branch.
"""

from typing import List, Dict, Any, Optional

from core.config import get_firestore_client, initialize_firebase
from core.calendar import utc_timestamp
from core.errors import NotFoundError, ValidationError
from core.parsers import clean_update, doc_to_dict, is_valid_time_range
from services.cache import get_cache


class BranchService:
    """Service for branches and their rooms."""

    BRANCHES_COLLECTION = "branches"
    ROOMS_COLLECTION = "rooms"

    def __init__(self):
        self.db = get_firestore_client()

    # --- Branches ---

    def get_branches(self) -> List[Dict[str, Any]]:
        """All branches sorted by name."""
        cache = get_cache()
        cached = cache.get_list(self.BRANCHES_COLLECTION)
        if cached is not None:
            return cached

        branches = [doc_to_dict(doc) for doc in self.db.collection(self.BRANCHES_COLLECTION).stream()]
        branches.sort(key=lambda b: b.get("name", ""))
        cache.set_list(self.BRANCHES_COLLECTION, branches)
        return branches

    def get_active_branches(self) -> List[Dict[str, Any]]:
        return [b for b in self.get_branches() if b.get("isActive", True)]

    def get_branch(self, branch_id: str) -> Optional[Dict[str, Any]]:
        return doc_to_dict(self.db.collection(self.BRANCHES_COLLECTION).document(branch_id).get())

    def get_branches_by_ids(self, branch_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Branches keyed by id; unknown ids are left out."""
        result = {}
        for branch_id in set(branch_ids or []):
            branch = self.get_branch(branch_id)
            if branch:
                result[branch_id] = branch
        return result

    def check_branch_code_exists(self, code: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.collection(self.BRANCHES_COLLECTION).where("code", "==", code.upper())
        return any(doc.id != exclude_id for doc in query.stream())

    def _validate_branch(self, data: Dict[str, Any], partial: bool = False):
        errors = {}
        if not partial or "name" in data:
            if not (data.get("name") or "").strip():
                errors["name"] = "Branch name is required"
        if not partial or "code" in data:
            if not (data.get("code") or "").strip():
                errors["code"] = "Branch code is required"
        open_time = data.get("openTime")
        close_time = data.get("closeTime")
        if open_time and close_time and not is_valid_time_range(open_time, close_time):
            errors["openTime"] = "Opening time must be before closing time"
        days = data.get("openDays")
        if days is not None and any(d not in range(7) for d in days):
            errors["openDays"] = "Open days must be between 0 (Sunday) and 6 (Saturday)"
        if errors:
            raise ValidationError("Invalid branch data", errors)

    def create_branch(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a branch.

        Raises:
            ValidationError: Missing fields or duplicate branch code
        """
        self._validate_branch(data)
        code = data["code"].strip().upper()
        if self.check_branch_code_exists(code):
            raise ValidationError(f"Branch code {code} already exists", {"code": "duplicate"})

        doc_ref = self.db.collection(self.BRANCHES_COLLECTION).document()
        branch_data = {
            "name": data["name"].strip(),
            "code": code,
            "address": data.get("address", ""),
            "phone": data.get("phone", ""),
            "location": data.get("location"),
            "openTime": data.get("openTime", "09:00"),
            "closeTime": data.get("closeTime", "18:00"),
            "openDays": data.get("openDays", [1, 2, 3, 4, 5, 6]),
            "isActive": data.get("isActive", True),
            "managerName": data.get("managerName"),
            "managerPhone": data.get("managerPhone"),
            "lineGroupUrl": data.get("lineGroupUrl"),
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }
        doc_ref.set(branch_data)
        get_cache().invalidate_list(self.BRANCHES_COLLECTION)

        branch_data["id"] = doc_ref.id
        return branch_data

    def update_branch(self, branch_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self.db.collection(self.BRANCHES_COLLECTION).document(branch_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Branch {branch_id} not found", "branch")

        self._validate_branch(data, partial=True)
        update_data = clean_update(data)
        if "code" in update_data:
            update_data["code"] = update_data["code"].strip().upper()
            if self.check_branch_code_exists(update_data["code"], exclude_id=branch_id):
                raise ValidationError(f"Branch code {update_data['code']} already exists", {"code": "duplicate"})
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        get_cache().invalidate_list(self.BRANCHES_COLLECTION)
        return doc_to_dict(doc_ref.get())

    def toggle_branch_status(self, branch_id: str) -> Dict[str, Any]:
        branch = self.get_branch(branch_id)
        if not branch:
            raise NotFoundError(f"Branch {branch_id} not found", "branch")
        return self.update_branch(branch_id, {"isActive": not branch.get("isActive", True)})

    # --- Rooms ---

    def _rooms(self, branch_id: str):
        return self.db.collection(self.BRANCHES_COLLECTION).document(branch_id).collection(self.ROOMS_COLLECTION)

    def get_rooms(self, branch_id: str, active_only: bool = False) -> List[Dict[str, Any]]:
        rooms = []
        for doc in self._rooms(branch_id).stream():
            room = doc_to_dict(doc)
            room["branchId"] = branch_id
            if active_only and not room.get("isActive", True):
                continue
            rooms.append(room)
        rooms.sort(key=lambda r: r.get("name", ""))
        return rooms

    def get_room(self, branch_id: str, room_id: str) -> Optional[Dict[str, Any]]:
        room = doc_to_dict(self._rooms(branch_id).document(room_id).get())
        if room:
            room["branchId"] = branch_id
        return room

    def check_room_name_exists(self, branch_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
        wanted = name.strip().lower()
        for room in self.get_rooms(branch_id):
            if room["id"] != exclude_id and room.get("name", "").strip().lower() == wanted:
                return True
        return False

    def create_room(self, branch_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.get_branch(branch_id):
            raise NotFoundError(f"Branch {branch_id} not found", "branch")

        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Room name is required", {"name": "required"})
        capacity = data.get("capacity", 0)
        if capacity is None or capacity < 1:
            raise ValidationError("Room capacity must be at least 1", {"capacity": "invalid"})
        if self.check_room_name_exists(branch_id, name):
            raise ValidationError(f"Room {name} already exists in this branch", {"name": "duplicate"})

        doc_ref = self._rooms(branch_id).document()
        room_data = {
            "branchId": branch_id,
            "name": name,
            "capacity": capacity,
            "floor": data.get("floor"),
            "hasProjector": data.get("hasProjector", False),
            "hasWhiteboard": data.get("hasWhiteboard", True),
            "isActive": data.get("isActive", True),
            "createdAt": utc_timestamp(),
            "updatedAt": utc_timestamp(),
        }
        doc_ref.set(room_data)
        room_data["id"] = doc_ref.id
        return room_data

    def update_room(self, branch_id: str, room_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_ref = self._rooms(branch_id).document(room_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"Room {room_id} not found", "room")

        update_data = clean_update(data)
        update_data.pop("branchId", None)
        if "name" in update_data and self.check_room_name_exists(branch_id, update_data["name"], exclude_id=room_id):
            raise ValidationError(f"Room {update_data['name']} already exists in this branch", {"name": "duplicate"})
        update_data["updatedAt"] = utc_timestamp()

        doc_ref.update(update_data)
        room = doc_to_dict(doc_ref.get())
        room["branchId"] = branch_id
        return room

    def delete_room(self, branch_id: str, room_id: str) -> bool:
        doc_ref = self._rooms(branch_id).document(room_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True

    def get_room_count(self, branch_id: str) -> int:
        return len(self.get_rooms(branch_id, active_only=True))


_branch_service: Optional[BranchService] = None


def get_branch_service() -> BranchService:
    """Get singleton instance of BranchService."""
    global _branch_service
    if _branch_service is None:
        initialize_firebase()
        _branch_service = BranchService()
    return _branch_service
