"""
Error kinds raised by the store, auditor and moderation workflow.
Each kind maps to one HTTP status at the API boundary.
"""

from typing import Any, Dict, Optional


class RepositoryError(Exception):
    """Base class for all repository failures."""
    kind = "Internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON error body returned to API callers."""
        data = {"ok": False, "kind": self.kind, "errors": [self.message]}
        data.update(self.details)
        return data


class InvalidInputError(RepositoryError):
    """Malformed request: bad id, wrong type, unparseable shape."""
    kind = "InvalidInput"
    status_code = 400


class ForbiddenError(RepositoryError):
    """Inactive workspace or caller is not the owner."""
    kind = "Forbidden"
    status_code = 403


class NotFoundError(RepositoryError):
    """Workspace, school, dataset or inbox record is absent."""
    kind = "NotFound"
    status_code = 404


class ConflictError(RepositoryError):
    """Duplicate workspace id or a second state transition."""
    kind = "Conflict"
    status_code = 409


class UnprocessableContentError(RepositoryError):
    """Content parses but fails the audit gate, or a subject cannot be resolved."""
    kind = "UnprocessableContent"
    status_code = 422


class UnavailableError(RepositoryError):
    """Storage I/O failure or lock timeout. Safe to retry."""
    kind = "Unavailable"
    status_code = 503
