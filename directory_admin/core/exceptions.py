# directory_admin/core/exceptions.py
"""
Error kinds surfaced by the directory services.

Adapters (document store, identity provider) translate library exceptions
into these at their boundary, so callers only ever see a message plus a kind.
"""

from typing import Any, Dict, List, Optional


class DirectoryError(Exception):
    """Base class for all directory errors."""
    kind = "DirectoryError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "kind": self.kind}


class NotFound(DirectoryError):
    """Record, role-specific document or principal missing."""
    kind = "NotFound"


class InvalidRole(DirectoryError):
    """Role outside teacher/student/parent/assistant."""
    kind = "InvalidRole"


class AlreadyExists(DirectoryError):
    kind = "AlreadyExists"


class InvalidRequest(DirectoryError):
    """Operator input that cannot be acted on (missing password, bad flag)."""
    kind = "InvalidRequest"


class UpstreamUnavailable(DirectoryError):
    """Store or identity provider unreachable. Safe to re-invoke."""
    kind = "UpstreamUnavailable"


class UpstreamRejected(DirectoryError):
    """The identity provider refused the request (weak password, bad email, ...)."""
    kind = "UpstreamRejected"


class PartialFailure(DirectoryError):
    """A batch pass finished with per-item errors."""
    kind = "PartialFailure"

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = [e.model_dump() if hasattr(e, "model_dump") else e for e in self.errors]
        return payload
