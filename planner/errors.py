"""
Planner error taxonomy.

Every error the engine raises on purpose maps to one wire payload and one HTTP
status. Collaborator failures (reminders, events, tracing) never reach here:
they are logged where they happen.
"""

from typing import Any, Dict, Optional


class PlannerError(Exception):
    """Base class for errors the engine surfaces to the caller."""

    status_code = 500
    error_code = "planner_error"

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.session_id:
            payload["sessionId"] = self.session_id
        return payload


class SessionExpired(PlannerError):
    """Continuation requested but no live session exists for the caller."""

    status_code = 410
    error_code = "session_expired"

    def __init__(self, message: str = "This planning conversation has ended. Please start a new one.",
                 session_id: Optional[str] = None):
        super().__init__(message, session_id)

    def to_response(self) -> Dict[str, Any]:
        payload = super().to_response()
        payload["sessionCompleted"] = True
        payload["requiresReset"] = True
        return payload


class ExtractorFailure(PlannerError):
    """The planner agent raised, or claimed readiness with a malformed plan."""

    status_code = 200
    error_code = "plan_generation_failed"


class MaterializationFailure(PlannerError):
    """Committing the confirmed plan failed; changes were rolled back."""

    status_code = 500
    error_code = "materialization_failed"
    USER_MESSAGE = "Failed to update your plan. Your changes were rolled back."

    def __init__(self, detail: str, session_id: Optional[str] = None, rollback_complete: bool = True):
        super().__init__(self.USER_MESSAGE, session_id)
        # Internal detail is for logs only, never for the wire payload
        self.detail = detail
        self.rollback_complete = rollback_complete
