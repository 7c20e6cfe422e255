# directory_admin/models/reports.py
from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import Optional, List

from ..core.exceptions import PartialFailure


class ItemError(BaseModel):
    """One failed document operation inside a batch pass."""
    collection: str
    key: Optional[str] = None
    operation: str
    message: str


class PassReport(BaseModel):
    """Base for reconciliation pass reports: per-item failures are collected, not raised."""
    errors: List[ItemError] = Field(default_factory=list)

    @computed_field
    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, collection: str, key: Optional[str], operation: str, exc: Exception) -> None:
        self.errors.append(ItemError(collection=collection, key=key, operation=operation, message=str(exc)))

    def raise_for_errors(self, pass_name: str) -> None:
        if self.errors:
            raise PartialFailure(f"{pass_name} finished with {len(self.errors)} error(s)", self.errors)


# --- Single-record operations ---

class MutationResult(BaseModel):
    success: bool = True
    email_key: Optional[str] = Field(default=None, alias="emailKey")
    uid: Optional[str] = None
    written: List[str] = Field(default_factory=list, description="collection/key paths written")
    deleted: List[str] = Field(default_factory=list, description="collection/key paths deleted")

    model_config = ConfigDict(populate_by_name=True)


class LoginResult(BaseModel):
    success: bool = True
    last_login: str = Field(..., alias="lastLogin")
    history_length: int = Field(..., alias="historyLength")

    model_config = ConfigDict(populate_by_name=True)


class LoginHistory(BaseModel):
    last_login: Optional[str] = Field(default=None, alias="lastLogin")
    login_history: List[dict] = Field(default_factory=list, alias="loginHistory")

    model_config = ConfigDict(populate_by_name=True)


# --- Deduplicate-by-email ---

class DuplicateGroup(BaseModel):
    email: str
    total: int
    kept_key: str
    deleted_keys: List[str] = Field(default_factory=list)
    kept_derived_key: bool = Field(..., description="False when no copy sat at the derived key and the first one was kept")


class DeduplicationReport(PassReport):
    scanned: int = 0
    unique_emails: int = 0
    documents_without_email: List[str] = Field(default_factory=list)
    groups: List[DuplicateGroup] = Field(default_factory=list)
    deleted_count: int = 0


# --- Reconcile-role-collections ---

class CollectionPruneStats(BaseModel):
    collection: str
    role: str
    kept: int = 0
    removed: int = 0


class RoleReconciliationReport(PassReport):
    pruned: List[CollectionPruneStats] = Field(default_factory=list)
    added: int = 0
    documents_without_email: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def total_removed(self) -> int:
        return sum(stats.removed for stats in self.pruned)


# --- Manual repair / migration ---

class MissingRecordResult(BaseModel):
    email_key: str = Field(..., alias="emailKey")
    role: str
    written: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class MigrationReport(PassReport):
    scanned: int = 0
    migrated: int = 0
    skipped: int = 0
    documents_without_email: List[str] = Field(default_factory=list)
