"""Custom exception classes for consistent error handling across the application."""

from dataclasses import dataclass, field
from enum import Enum

# Shared type alias for error detail values
type ErrorDetails = dict[
    str, str | int | float | bool | list[str] | list[dict[str, str | int]] | None
]


class RemoteErrorKind(Enum):
    """Closed classification of remote store failures."""

    NETWORK_UNAVAILABLE = "network_unavailable"
    PERMISSION_DENIED = "permission_denied"
    FAILED_PRECONDITION = "failed_precondition"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# Failures that mean "try again later" rather than "this write is wrong"
RECOVERABLE_KINDS = frozenset(
    {
        RemoteErrorKind.NETWORK_UNAVAILABLE,
        RemoteErrorKind.PERMISSION_DENIED,
        RemoteErrorKind.FAILED_PRECONDITION,
    }
)


@dataclass
class AppError(Exception):
    """Base exception for all application errors."""

    code: str = "app_error"
    message: str = "An application error occurred"
    details: ErrorDetails = field(default_factory=dict)

    def __str__(self) -> str:  # pyright: ignore[reportImplicitOverride]
        return self.message


@dataclass
class NotFoundError(AppError):
    """Raised when a requested resource is not found."""

    code: str = "not_found"
    message: str = "Resource not found"


@dataclass
class ValidationError(AppError):
    """Raised when domain validation fails."""

    code: str = "validation_error"
    message: str = "Validation failed"


@dataclass
class ConflictError(AppError):
    """Raised when an operation conflicts with existing state."""

    code: str = "conflict"
    message: str = "Resource conflict"


@dataclass
class DomainRuleError(AppError):
    """Raised when a tournament rule forbids the requested transition."""

    code: str = "domain_rule_violation"
    message: str = "Operation not allowed in the current state"


@dataclass
class ForbiddenError(AppError):
    """Raised when the acting user is not allowed to perform an operation."""

    code: str = "forbidden"
    message: str = "Operation not permitted for this user"


@dataclass
class OfflineError(AppError):
    """Raised by operations that cannot be deferred while offline."""

    code: str = "offline"
    message: str = "This operation requires a connection"


@dataclass
class StorageError(AppError):
    """Raised when the object storage cannot store or delete a file."""

    code: str = "storage_error"
    message: str = "Object storage failure"


@dataclass
class RemoteStoreError(AppError):
    """Raised by remote store adapters, tagged with a failure kind."""

    code: str = "remote_store_error"
    message: str = "Remote store failure"
    kind: RemoteErrorKind = RemoteErrorKind.UNKNOWN

    @property
    def recoverable(self) -> bool:
        """Whether the failure is connectivity/permission class."""
        return self.kind in RECOVERABLE_KINDS


@dataclass
class InternalError(AppError):
    """Raised for unexpected internal errors."""

    code: str = "internal_error"
    message: str = "Internal server error"
