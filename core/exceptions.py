"""
Custom exceptions for the print queue core.

Exception Hierarchy:
    PrintQueueError (base)
    ├── ParseError              - Package/metadata could not be read
    ├── ValidationError         - Package fails the required-file contract
    ├── NotFoundError           - Referenced Order/Job/object is missing
    ├── RemoteIOError           - Storage download/upload failed
    │   ├── StorageConflictError    - Upload target already exists
    │   └── OperationTimeoutError   - Deadline exceeded
    ├── SizeLimitError          - Concatenated stream does not fit the ceiling
    ├── InvalidTransitionError  - Order lifecycle violation
    └── DatabaseError           - Relational store failure

Usage:
    A single concatenation aborts on the first error and surfaces it as-is.
    Batch operations catch PrintQueueError per item and keep going.
"""

from typing import Optional, Dict, Any, List


class PrintQueueError(Exception):
    """
    Base exception for all print queue errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ParseError(PrintQueueError):
    """
    A package archive or one of its entries could not be interpreted.

    Raised when the bytes are not a ZIP archive, when no machine-code entry
    can be located by any strategy, or when a Job's package referenced by a
    concatenation cannot be read.
    """

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if source:
            error_details["source"] = source
        super().__init__(message, error_details)
        self.source = source


class ValidationError(PrintQueueError):
    """
    A package failed the required-file / well-formedness contract.

    ``errors`` carries one message per offending file so the operator can
    see exactly why an artifact was rejected.
    """

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        message = "Package is not valid: " + "; ".join(errors) if errors else "Package is not valid"
        details = {
            "errors": list(errors),
            "warnings": list(warnings or []),
        }
        super().__init__(message, details)
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class NotFoundError(PrintQueueError):
    """A referenced Order, Job or stored object does not exist."""

    def __init__(self, entity: str, identifier: Any):
        message = f"{entity} not found: {identifier}"
        super().__init__(message, {"entity": entity, "identifier": identifier})
        self.entity = entity
        self.identifier = identifier


class RemoteIOError(PrintQueueError):
    """
    Object storage download or upload failed.

    Transient by nature; callers may retry the same operation.
    """

    def __init__(self, message: str, path: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if path:
            error_details["path"] = path
        super().__init__(message, error_details)
        self.path = path


class StorageConflictError(RemoteIOError):
    """Upload target already exists and overwrite was not requested."""

    def __init__(self, path: str):
        super().__init__(f"Object already exists: {path}", path=path)


class OperationTimeoutError(RemoteIOError):
    """
    An operation ran past its deadline.

    Every remote call in the pipeline takes a deadline; runs also carry an
    overall timeout.
    """

    def __init__(self, operation: str, timeout_seconds: float, path: Optional[str] = None):
        message = f"{operation} timed out after {timeout_seconds:.1f}s"
        details = {
            "operation": operation,
            "timeout_seconds": timeout_seconds,
            "resolution": "Retry the operation or raise the configured timeout",
        }
        super().__init__(message, path=path, details=details)
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class SizeLimitError(PrintQueueError):
    """
    Requested replicas do not fit under the concatenation ceiling.

    Soft by default: the engine truncates and reports a warning. It is only
    raised when nothing fits at all or when FAIL_ON_TRUNCATION is enabled.
    """

    def __init__(self, requested: int, fitting: int, limit_bytes: int):
        message = (
            f"Concatenated G-code exceeds {limit_bytes} bytes: "
            f"only {fitting} of {requested} segments fit"
        )
        details = {
            "requested_segments": requested,
            "fitting_segments": fitting,
            "limit_bytes": limit_bytes,
        }
        super().__init__(message, details)
        self.requested = requested
        self.fitting = fitting
        self.limit_bytes = limit_bytes


class InvalidTransitionError(PrintQueueError):
    """An Order state change that the lifecycle does not allow."""

    def __init__(self, order_id: Any, current: str, requested: str):
        message = f"Order {order_id} cannot move from '{current}' to '{requested}'"
        details = {"order_id": order_id, "current": current, "requested": requested}
        super().__init__(message, details)
        self.order_id = order_id
        self.current = current
        self.requested = requested


class DatabaseError(PrintQueueError):
    """The relational store rejected a query or is unreachable."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"Database {operation} failed: {cause}", {"operation": operation})
        self.operation = operation
        self.cause = cause
