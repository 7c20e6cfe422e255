# directory_admin/models/user.py
from pydantic import BaseModel, Field, ConfigDict, StrictBool
from typing import Optional, List, Dict, Any, Union, Literal, Annotated

from .enums import UserRole
from ..core.exceptions import InvalidRole


def derive_key(email: str) -> str:
    """
    Canonical document key for an email: every '@' and '.' becomes '_'.

    Case is preserved, so 'A@x.com' and 'a@x.com' map to different keys.
    There is no inverse; records always carry their own email.
    """
    return email.replace("@", "_").replace(".", "_")


def stored_email(doc: Dict[str, Any]) -> Optional[str]:
    """The email a stored document carries, or None when it is missing or not a string."""
    email = doc.get("email")
    if isinstance(email, str) and email:
        return email
    return None


# --- Login tracking ---

class LoginEntry(BaseModel):
    timestamp: str
    uid: Optional[str] = None


# --- Role-specific payloads (tagged on `role`) ---

class _RoleDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TeacherDetails(_RoleDetails):
    role: Literal["teacher"] = "teacher"


class AssistantDetails(_RoleDetails):
    role: Literal["assistant"] = "assistant"


class StudentDetails(_RoleDetails):
    role: Literal["student"] = "student"
    class_ids: List[str] = Field(default_factory=list, alias="classIds")
    parent_id: str = Field(default="", alias="parentId")


class ParentDetails(_RoleDetails):
    role: Literal["parent"] = "parent"
    phone: str = ""
    child_emails: List[str] = Field(default_factory=list, alias="childEmails")
    child_ids: List[str] = Field(default_factory=list, alias="childIds")


RoleDetails = Annotated[
    Union[TeacherDetails, StudentDetails, ParentDetails, AssistantDetails],
    Field(discriminator="role"),
]

DETAILS_BY_ROLE = {
    UserRole.TEACHER: TeacherDetails,
    UserRole.STUDENT: StudentDetails,
    UserRole.PARENT: ParentDetails,
    UserRole.ASSISTANT: AssistantDetails,
}


ROLE_PAYLOAD_FIELDS = {
    field.alias or name
    for model in DETAILS_BY_ROLE.values()
    for name, field in model.model_fields.items()
    if name != "role"
}
LOGIN_FIELDS = ("lastLogin", "loginHistory")


def with_role(doc: Dict[str, Any], role: UserRole) -> Dict[str, Any]:
    """Copy of a stored document re-tagged to `role`, with that role's default payload."""
    retagged = {k: v for k, v in doc.items() if k not in ROLE_PAYLOAD_FIELDS}
    retagged.update(DETAILS_BY_ROLE[role]().model_dump(by_alias=True))
    return retagged


def without_login(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in LOGIN_FIELDS}


def parse_role(value: Optional[str]) -> UserRole:
    """Strict role parsing for operator input. Raises InvalidRole."""
    role = UserRole.parse(value)
    if role is None:
        valid = ", ".join(r.value for r in UserRole)
        raise InvalidRole(f"Invalid role '{value}'. Must be one of: {valid}")
    return role


# --- The directory record ---

class DirectoryRecord(BaseModel):
    """
    One logical directory user: a common core plus a role-tagged payload.

    Stored flat (the payload fields sit next to the core fields), with the
    camelCase field names the rest of the platform reads.
    """
    email: str
    name: str = ""
    principal_id: Optional[str] = Field(default=None, alias="uid")
    disabled: bool = False
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")
    login_history: List[LoginEntry] = Field(default_factory=list, alias="loginHistory")
    details: RoleDetails

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def role(self) -> UserRole:
        return UserRole(self.details.role)

    @property
    def key(self) -> str:
        return derive_key(self.email)

    @classmethod
    def new(cls, email: str, name: str, role: UserRole, **core: Any) -> "DirectoryRecord":
        """A fresh record with the default payload for `role`."""
        return cls(email=email, name=name, details=DETAILS_BY_ROLE[role](), **core)

    def to_document(self, include_login: bool = True) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, exclude={"details"})
        doc.update(self.details.model_dump(by_alias=True))
        if self.principal_id is None:
            doc.pop("uid")
        return doc if include_login else without_login(doc)


class UserView(BaseModel):
    """A stored `users` document as returned to the console (shape is not enforced)."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    uid: Optional[str] = None
    disabled: bool = False

    model_config = ConfigDict(extra="allow")

    @classmethod
    def from_document(cls, key: str, doc: Dict[str, Any]) -> "UserView":
        return cls.model_validate({**doc, "id": key, "email": stored_email(doc)})


# --- Request bodies ---

class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, description="Login email, used verbatim to derive the document key")
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., description="teacher | student | parent | assistant")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "jane.doe@example.com",
                "password": "s3cret!",
                "name": "Jane Doe",
                "role": "teacher",
            }
        }
    )


class UserUpdate(BaseModel):
    email: Optional[str] = Field(None, min_length=3)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    role: Optional[str] = None


class PasswordChange(BaseModel):
    password: Optional[str] = None


class DisabledChange(BaseModel):
    disabled: Optional[StrictBool] = None


class LoginEvent(BaseModel):
    uid: Optional[str] = None


class MissingRecordRequest(BaseModel):
    email: str = Field(..., min_length=1)
    name: str = "Unknown"
    role: str = "student"
