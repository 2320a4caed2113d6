"""
Exception hierarchy for Toolgate.

All Toolgate exceptions inherit from ToolgateError, allowing callers to catch
all Toolgate-specific exceptions with a single except clause.

Exception Categories:
    - PolicyError: Invalid policy documents, unknown versions, bad tool names
    - StorageError: Database operation failed
    - AuditWriteError: An audit entry could not be persisted
    - ConfigError: Settings file missing or invalid

Expected outcomes of a policy decision (rate limited, blackout window, ...)
are never raised: they are returned as a PolicyVerdict. Exceptions are kept
for conditions the caller has to act on.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_INVALID = 1001
ERROR_POLICY_VERSION_NOT_FOUND = 1002
ERROR_POLICY_INVALID_TOOL = 1003

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003
ERROR_STORAGE_INTEGRITY = 5004
ERROR_AUDIT_WRITE = 5005

# Configuration errors: 6xxx
ERROR_CONFIG_INVALID = 6001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ToolgateError(Exception):
    """
    Base exception for all Toolgate errors.

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
# Policy Errors
# =============================================================================


@dataclass
class PolicyError(ToolgateError):
    """
    Base class for policy management errors.

    Attributes:
        tool: Canonical name of the tool the policy belongs to
    """

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["tool"] = self.tool


@dataclass
class PolicyValidationError(PolicyError):
    """Raised when a policy document does not match the schema."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid policy document for {self.tool or 'tool'}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID
        if not self.suggestion:
            self.suggestion = "Check section names and value types against the policy schema"
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class PolicyVersionNotFoundError(PolicyError):
    """Raised when a requested policy version does not exist."""

    version: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy version {self.version} not found for {self.tool}"
        if self.code == 0:
            self.code = ERROR_POLICY_VERSION_NOT_FOUND
        if not self.suggestion:
            self.suggestion = f"List available versions with: toolgate policy versions {self.tool}"
        super().__post_init__()
        self.context["version"] = self.version


@dataclass
class InvalidToolError(PolicyError):
    """Raised when a tool name is empty after sanitization."""

    raw_tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid tool name: {self.raw_tool!r}"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID_TOOL
        if not self.suggestion:
            self.suggestion = "Tool names use lowercase letters, digits, '.', '_' and '-'"
        super().__post_init__()
        self.context["raw_tool"] = self.raw_tool


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(ToolgateError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "create_version")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """The SQLite file could not be opened."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot open toolgate database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the directory exists and db_path is writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """An insert or update against the toolgate database failed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not write to toolgate database: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """A query against the toolgate database failed."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not read from toolgate database: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageIntegrityError(StorageError):
    """Stored rows contradict each other (e.g. two active versions)."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Toolgate database is inconsistent"
        if self.code == 0:
            self.code = ERROR_STORAGE_INTEGRITY
        if not self.suggestion:
            self.suggestion = "Roll the tool back to a known version to reset its active row"
        super().__post_init__()


@dataclass
class AuditWriteError(StorageWriteError):
    """Raised when an audit entry cannot be persisted."""

    action: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to record audit entry for {self.action}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_AUDIT_WRITE
        super().__post_init__()
        self.context["action"] = self.action


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(ToolgateError):
    """Raised when the settings file cannot be loaded or validated."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path
