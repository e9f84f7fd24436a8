"""weebase — Exception hierarchy.

All exceptions raised by the core inherit from WeebaseError so that the
calling layer can catch the full family with a single except clause and map
each subclass to a user-visible response.

Hierarchy:
    WeebaseError
    ├── ValidationError
    │   └── ProfileNotFoundError
    ├── ConfigurationError
    ├── DatabaseConnectionError
    │   └── NotConnectedError
    ├── SafetyViolation
    └── ExecutionError
"""

from __future__ import annotations

from typing import Any


class WeebaseError(Exception):
    """Base exception for all weebase errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Input errors: raised before any I/O
# ---------------------------------------------------------------------------


class ValidationError(WeebaseError):
    """A required field is missing, an identifier is invalid, or parallel
    column/value arrays have different lengths."""


class ProfileNotFoundError(ValidationError):
    """No saved connection profile has the requested id."""

    def __init__(self, profile_id: str) -> None:
        super().__init__(
            f"profile not found: {profile_id}",
            context={"profile_id": profile_id},
        )
        self.profile_id = profile_id


class ConfigurationError(WeebaseError):
    """Unsupported dialect or malformed DSN inputs."""


# ---------------------------------------------------------------------------
# Connection errors
# ---------------------------------------------------------------------------


class DatabaseConnectionError(WeebaseError):
    """Opening or pinging a database failed.

    The session's active connection is left untouched when this is raised.
    """

    def __init__(self, message: str, driver: str = "", cause: BaseException | None = None) -> None:
        super().__init__(message, context={"driver": driver})
        self.driver = driver
        self.cause = cause


class NotConnectedError(DatabaseConnectionError):
    """The session has no active connection."""

    def __init__(self, message: str = "not connected to database") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Safety and execution
# ---------------------------------------------------------------------------


class SafetyViolation(WeebaseError):
    """A mutation was refused by the safety policy or the row-count guard.

    Raised either before a transaction is opened or after it was rolled back;
    a mutation is never partially applied.
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        matched_rows: int | None = None,
    ) -> None:
        context: dict[str, Any] = {"operation": operation}
        if matched_rows is not None:
            context["matched_rows"] = matched_rows
        super().__init__(message, context=context)
        self.operation = operation
        self.matched_rows = matched_rows


class ExecutionError(WeebaseError):
    """The database rejected a statement (syntax, constraint, permissions)."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(
            f"{operation} failed: {cause}",
            context={"operation": operation, "cause_type": type(cause).__name__},
        )
        self.operation = operation
        self.cause = cause
