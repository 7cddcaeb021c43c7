"""Scheduling error taxonomy"""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for errors reported to callers of the scheduling core"""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"status": "error", "message": self.message, "errors": self.details or None}


class ValidationError(SchedulingError):
    """Malformed interval, duration mismatch or missing required field"""

    status_code = 400


class NotFoundError(SchedulingError):
    """Unknown service type, provider or appointment"""

    status_code = 404


class ConflictError(SchedulingError):
    """Slot unavailable or double assignment; carries the conflicting records"""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[list[dict]] = None):
        self.conflicts = conflicts or []
        super().__init__(message, {"conflicts": self.conflicts} if self.conflicts else None)


class StateTransitionError(SchedulingError):
    """Illegal appointment status change; the appointment is left unchanged"""

    status_code = 409

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot change appointment status from '{current_status}' to '{target_status}'",
            {"current_status": current_status, "target_status": target_status},
        )
