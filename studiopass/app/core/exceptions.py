"""
Unified base exception classes for all services.

Each service-level error extends one of the taxonomy classes below and
carries a stable machine-readable ``code`` that clients branch on.
The HTTP layer renders any ServiceError as ``{"error": message, "code": code}``.
"""


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    status_code = 400
    code = "service_error"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(ServiceError):
    """Bad or missing input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class StateConflictError(ServiceError):
    """The entity exists but is in a state that forbids the operation."""

    status_code = 400
    code = "state_conflict"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "forbidden"


class DependencyError(ServiceError):
    """Store or gateway failure."""

    status_code = 500
    code = "server_error"


class ServiceUnavailableError(ServiceError):
    status_code = 503
    code = "service_unavailable"
