"""
Service error taxonomy

Services raise these typed errors; the HTTP layer maps them to status codes
through a single exception handler (see app.main).
"""
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Tag carried by every service error"""
    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAVAILABLE: 500,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """Base class for all errors raised by the service layer"""

    kind: ErrorKind = ErrorKind.INTERNAL
    retryable: bool = False

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "detail": self.message,
            "error": self.kind.value,
        }
        if self.retryable:
            body["retryable"] = True
        if self.data:
            body["data"] = self.data
        return body


class ValidationError(ServiceError):
    """Malformed or missing input"""
    kind = ErrorKind.VALIDATION


class ConflictError(ServiceError):
    """Uniqueness, ownership or state violation"""
    kind = ErrorKind.CONFLICT


class InvalidPlanError(ValidationError):
    """Plan is not part of the fixed catalog"""


class InvalidStateError(ConflictError):
    """Transition is not legal from the record's current status"""


class DeviceOwnershipConflictError(ConflictError):
    """Device is already bound to a different identity"""


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(ServiceError):
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN


class UnavailableError(ServiceError):
    """Transient store/network failure; safe to retry"""
    kind = ErrorKind.UNAVAILABLE
    retryable = True


class InternalError(ServiceError):
    kind = ErrorKind.INTERNAL
