class SchedulingError(Exception):
    """Base for failures the booking core reports to its callers."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(SchedulingError):
    # malformed or past-dated input, not retryable as-is
    status_code = 400
    default_message = "Invalid request"


class AuthorizationError(SchedulingError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(SchedulingError):
    status_code = 404
    default_message = "Not found"


class ConflictError(SchedulingError):
    # lost a race for a slot, or the reservation already left the confirmed state;
    # clients must re-read state before deciding what to do next
    status_code = 409
    default_message = "Conflict"
