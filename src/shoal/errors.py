"""
Exception hierarchy for Shoal.

All Shoal exceptions inherit from ShoalError, allowing callers to catch
all Shoal-specific exceptions with a single except clause.

Exception Categories:
    - InvalidInputError: A required field is missing or malformed
    - ApprovalNotFoundError: Approval id is unknown
    - ApprovalConflictError: Transition attempted from a non-pending state
    - StorageUnavailableError: Database operation failed

Policy denials are NOT exceptions. Evaluators always return a result
object carrying the reasons, even when the outcome is "blocked".

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (ids, states, fields where applicable)
    - Errors are designed to be both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Input errors: 1xxx
ERROR_INVALID_INPUT = 1001

# Approval errors: 2xxx
ERROR_APPROVAL_NOT_FOUND = 2001
ERROR_APPROVAL_CONFLICT = 2002

# Storage errors: 5xxx
ERROR_STORAGE_UNAVAILABLE = 5000
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ShoalError(Exception):
    """
    Base exception for all Shoal errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Input Errors
# =============================================================================


@dataclass
class InvalidInputError(ShoalError):
    """
    Raised when a required field is missing or malformed.

    Attributes:
        field_name: The offending field
        value: The value that was rejected
    """

    field_name: str = ""
    value: Any = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid value for {self.field_name}: {self.value!r}"
        if self.code == 0:
            self.code = ERROR_INVALID_INPUT
        self.context.update({
            "field": self.field_name,
            "value": self.value,
        })


# =============================================================================
# Approval Errors
# =============================================================================


@dataclass
class ApprovalError(ShoalError):
    """
    Base class for approval lifecycle errors.

    Attributes:
        approval_id: ID of the approval request involved
    """

    approval_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["approval_id"] = self.approval_id


@dataclass
class ApprovalNotFoundError(ApprovalError):
    """Raised when an approval request id is unknown."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Approval request not found: {self.approval_id}"
        if self.code == 0:
            self.code = ERROR_APPROVAL_NOT_FOUND
        super().__post_init__()


@dataclass
class ApprovalConflictError(ApprovalError):
    """
    Raised when a decision cannot be applied to the current state.

    Covers both "already decided" and invalid target states. Also raised
    when a concurrent decision won the compare-and-swap.
    """

    current_state: str = ""
    requested_state: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Approval request {self.approval_id} cannot move from "
                f"{self.current_state} to {self.requested_state}"
            )
        if self.code == 0:
            self.code = ERROR_APPROVAL_CONFLICT
        if not self.suggestion:
            self.suggestion = "Only pending approval requests can be decided"
        super().__post_init__()
        self.context.update({
            "current_state": self.current_state,
            "requested_state": self.requested_state,
        })


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageUnavailableError(ShoalError):
    """
    Base class for storage/database errors.

    These are never retried by Shoal and propagate to the caller.

    Attributes:
        operation: The operation that failed (e.g., "create", "append")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Storage unavailable during {self.operation}"
        if self.code == 0:
            self.code = ERROR_STORAGE_UNAVAILABLE
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageUnavailableError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageUnavailableError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageUnavailableError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error
