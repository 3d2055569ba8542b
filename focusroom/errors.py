"""Domain errors raised by the session engine.

Each error carries the HTTP status the API answers with; the handlers in
``focusroom.middleware.error_handler`` turn them into JSON responses.
"""


class FocusRoomError(Exception):
    status_code = 500
    default_detail = "Session engine error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(FocusRoomError, ValueError):
    """Bad input. Never retried."""

    status_code = 400
    default_detail = "Invalid request"


class InvalidDuration(ValidationError):
    default_detail = "Session duration must be between 1 and 1440 minutes"


class InvalidRoomCode(ValidationError):
    default_detail = "Room code must be 6 digits"


class NotFound(FocusRoomError):
    status_code = 404
    default_detail = "Not found"


class SessionNotFound(NotFound):
    default_detail = "Session not found"


class UserNotFound(NotFound):
    default_detail = "User not found"


class PermissionDenied(FocusRoomError):
    status_code = 403
    default_detail = "Not allowed"


class IllegalTransition(FocusRoomError):
    """Operation attempted from the wrong state; the client view is stale."""

    status_code = 409
    default_detail = "Operation not allowed in the current session state"


class SessionNotJoinable(IllegalTransition):
    default_detail = "Session is no longer accepting participants"


class SessionClosed(IllegalTransition):
    default_detail = "Session is closed"


class ConcurrentModification(IllegalTransition):
    default_detail = "Session was modified concurrently, refresh and try again"


class AllocationExhausted(FocusRoomError):
    """No free room code found. Transient, safe to retry."""

    status_code = 503
    default_detail = "Could not allocate a room code, try again"
    retry_after = 1
