"""Error taxonomy for screening operations.

Every error carries a machine-readable ``code`` and a ``to_dict`` payload
so transports can tell "nothing happened" (validation, precondition,
authorization) from "state moved underneath you" (conflict state).
Partial batch failures are not exceptions; see ``BatchResult``.
"""

from typing import Any, Dict, List, Optional


class ScreeningError(Exception):
    """Base class for all engine errors."""

    code = "screening_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class ValidationError(ScreeningError):
    """Malformed input.  Never retried automatically."""

    code = "validation_error"


class NotFoundError(ScreeningError):
    """Unknown project or study."""

    code = "not_found"


class PreconditionError(ScreeningError):
    """The state an operation requires does not hold."""

    code = "precondition_failed"

    def __init__(self, message: str, conditions: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.conditions = list(conditions or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["conditions"] = self.conditions
        return data


class ConflictStateError(ScreeningError):
    """State changed between a read and the dependent write."""

    code = "conflict_state"
    retryable = True

    def __init__(
        self,
        message: str,
        changed_study_ids: Optional[List[str]] = None,
        conditions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.changed_study_ids = sorted(changed_study_ids or [])
        self.conditions = list(conditions or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["changed_study_ids"] = self.changed_study_ids
        data["conditions"] = self.conditions
        return data


class AuthorizationError(ScreeningError):
    """Caller lacks the privilege for an override operation."""

    code = "forbidden"
