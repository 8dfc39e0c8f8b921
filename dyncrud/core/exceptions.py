"""Custom exception classes for the dynamic CRUD platform."""

from typing import Optional, List, Dict, Any

from fastapi import status


class DynCrudError(Exception):
    """Base exception for the dynamic CRUD platform.

    Every subclass carries a stable ``code`` and a message that is safe to show
    to API callers.
    """

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "fields": []}


class AuthenticationError(DynCrudError):
    """Raised when a caller cannot be authenticated."""
    code = "AUTHENTICATION_FAILED"
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(DynCrudError):
    """Raised when an identity is missing, anonymous, or lacks the required role."""
    code = "ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied", status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ResourceNotFoundError(DynCrudError):
    """Raised when a requested resource is not found."""
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class TableNotAvailableError(ResourceNotFoundError):
    """Raised when a table name is not registered in the catalog.

    The message never echoes the requested name.
    """
    code = "TABLE_NOT_AVAILABLE"

    def __init__(self, message: str = "Table not available"):
        super().__init__(message)


class FieldError:
    """One field-level validation problem."""

    __slots__ = ("field", "code", "message")

    def __init__(self, field: Optional[str], code: str, message: str):
        self.field = field
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"FieldError({self.field!r}, {self.code!r})"


class ValidationError(DynCrudError):
    """Raised when a CRUD request does not fit its table descriptor."""
    code = "VALIDATION_FAILED"
    status_code = 422

    def __init__(self, errors: List[FieldError], message: str = "Request validation failed"):
        super().__init__(message)
        self.errors = errors

    @property
    def codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "fields": [e.to_dict() for e in self.errors],
        }


class CatalogError(DynCrudError):
    """Raised when the trusted catalog source cannot be loaded."""
    code = "CATALOG_INVALID"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageError(DynCrudError):
    """Raised when the storage engine fails a statement."""
    code = "STORAGE_FAILURE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransientStorageError(StorageError):
    """Timeout, lost connection, or serialization conflict."""
    code = "TRANSIENT_FAILURE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ConstraintViolationError(StorageError):
    """Uniqueness, foreign-key, or other integrity violation."""
    code = "CONSTRAINT_VIOLATION"
    status_code = status.HTTP_409_CONFLICT


class AuditWriteError(DynCrudError):
    """Raised when an audit or ledger record could not be persisted."""
    code = "AUDIT_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class GateStateError(DynCrudError):
    """Raised on an illegal security gate transition."""
    code = "GATE_STATE_INVALID"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

