from .errors import (
    SchedulingError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
)
