"""
Domain errors raised by the tracker core.

Service and permission code raise these instead of HTTPException so that
the same rules can be exercised without a request. main.py registers a
single exception handler that renders them as JSON:

- ValidationError  -> 400 {"detail", "errors": [{"field", "message"}]}
- ForbiddenError   -> 403 {"detail", "reason"}
- NotFoundError    -> 404 {"detail"}
- ConsistencyError -> 409 {"detail", "mismatches"}
"""

import enum
from typing import Any, Dict, List, Optional


class DenyReason(str, enum.Enum):
    """Stable reason codes carried by every authorization denial."""
    not_authenticated = "not_authenticated"
    not_admin = "not_admin"
    not_owner = "not_owner"
    not_member = "not_member"
    not_assignee = "not_assignee"


class TrackerError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class ValidationError(TrackerError):
    """Malformed, missing or out-of-enum input. Lists every violated field."""

    status_code = 400

    def __init__(self, errors: List[Dict[str, str]], detail: Optional[str] = None):
        if detail is None:
            if len(errors) == 1:
                detail = errors[0]["message"]
            else:
                detail = "Validation failed"
        super().__init__(detail)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    @property
    def fields(self) -> List[str]:
        return [error["field"] for error in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "errors": self.errors}


class ForbiddenError(TrackerError):
    """Authorization guard denial."""

    status_code = 403

    def __init__(self, reason: DenyReason, detail: Optional[str] = None):
        super().__init__(detail or f"Not authorized ({reason.value})")
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "reason": self.reason.value}


class NotFoundError(TrackerError):
    """A referenced Project, Task or User does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConsistencyError(TrackerError):
    """Back-references disagree with the authoritative sets they mirror."""

    status_code = 409

    def __init__(self, detail: str, mismatches: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.mismatches = mismatches or []

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "mismatches": self.mismatches}
