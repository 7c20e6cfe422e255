# directory_admin/models/enums.py

from enum import Enum
from typing import Optional

# --- User Related Enums ---

class UserRole(str, Enum):
    """Roles a directory user can hold. Each has its own role collection."""
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"
    ASSISTANT = "assistant"

    @property
    def collection(self) -> str:
        return ROLE_COLLECTIONS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["UserRole"]:
        """Returns the matching role, or None for anything outside the enum."""
        try:
            return cls(value)
        except ValueError:
            return None


# --- Collection Names ---
USERS_COLLECTION = "users"

ROLE_COLLECTIONS = {
    UserRole.TEACHER: "teachers",
    UserRole.STUDENT: "students",
    UserRole.PARENT: "parents",
    UserRole.ASSISTANT: "assistants",
}

VALID_ROLES = [role.value for role in UserRole]
