"""
Octeth Backup Exception Hierarchy.

Defines all custom exceptions used across the backup, cleanup and restore
flows. Provides consistent error handling and debugging information.
"""

from typing import Any


class BackupSystemError(Exception):
    """
    Base exception for all Octeth Backup errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a BackupSystemError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(BackupSystemError):
    """
    Raised when configuration is missing or invalid.

    Covers the configuration file, environment overrides and
    provider-specific settings.
    """

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            config_file: Configuration file that was being read
            config_key: Key that failed validation
            details: Optional structured data for debugging
        """
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.config_file = config_file
        self.config_key = config_key


class LockError(BackupSystemError):
    """Raised when the run lock cannot be acquired or released."""

    def __init__(
        self,
        message: str,
        *,
        lock_file: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if lock_file:
            details["lock_file"] = lock_file
        super().__init__(message, details=details)
        self.lock_file = lock_file


class AlreadyRunningError(LockError):
    """Raised when another live process holds the run lock."""

    def __init__(
        self,
        message: str = "Another backup process is already running",
        *,
        lock_file: str | None = None,
        pid: int | None = None,
    ):
        details = {}
        if pid is not None:
            details["pid"] = pid
        super().__init__(message, lock_file=lock_file, details=details)
        self.pid = pid


class PreflightError(BackupSystemError):
    """
    Fatal pre-flight failure.

    Raised before any engine invocation or mutation when:
    - The backup engine is missing
    - The database service is unreachable
    - Disk capacity is insufficient
    """

    def __init__(
        self,
        message: str,
        *,
        check: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if check:
            details["check"] = check
        super().__init__(message, details=details)
        self.check = check


class EngineUnavailableError(PreflightError):
    """Raised when the backup engine binary cannot be found or run."""

    def __init__(self, message: str, *, binary: str | None = None):
        details = {}
        if binary:
            details["binary"] = binary
        super().__init__(message, check="engine", details=details)
        self.binary = binary


class DatabaseUnreachableError(PreflightError):
    """Raised when the database service fails its liveness check."""

    def __init__(self, message: str, *, service: str | None = None):
        details = {}
        if service:
            details["service"] = service
        super().__init__(message, check="connectivity", details=details)
        self.service = service


class InsufficientCapacityError(PreflightError):
    """Raised when a volume does not have enough room for the backup."""

    def __init__(
        self,
        message: str,
        *,
        volume: str | None = None,
        required: float | None = None,
        available: float | None = None,
    ):
        details: dict[str, Any] = {}
        if volume:
            details["volume"] = volume
        if required is not None:
            details["required"] = required
        if available is not None:
            details["available"] = available
        super().__init__(message, check="capacity", details=details)
        self.volume = volume
        self.required = required
        self.available = available


class EngineError(BackupSystemError):
    """
    Errors from the backup engine.

    Raised when the snapshot or make-consistent step exits non-zero
    or exceeds the run's timeout budget.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if operation:
            details["operation"] = operation
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(message, details=details)
        self.operation = operation
        self.exit_code = exit_code


class CompressionError(BackupSystemError):
    """Raised when the snapshot cannot be archived and compressed."""


class ServiceControlError(BackupSystemError):
    """Raised when the database service cannot be controlled or inspected."""

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        action: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if service:
            details["service"] = service
        if action:
            details["action"] = action
        super().__init__(message, details=details)
        self.service = service
        self.action = action


class StorageBackendError(BackupSystemError):
    """Raised when a storage backend cannot be constructed or reached."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        super().__init__(message, details=details)
        self.provider = provider


class ToolMissingError(StorageBackendError):
    """Raised when the SDK or binary a backend needs is not installed."""

    def __init__(self, message: str, *, provider: str | None = None, tool: str | None = None):
        details = {}
        if tool:
            details["tool"] = tool
        super().__init__(message, provider=provider, details=details)
        self.tool = tool


class ChecksumMismatchError(BackupSystemError):
    """Raised when an artifact does not match its checksum sidecar."""

    def __init__(
        self,
        message: str = "Checksum mismatch",
        *,
        artifact: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ):
        details = {}
        if artifact:
            details["artifact"] = artifact
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual
        super().__init__(message, details=details)
        self.artifact = artifact
        self.expected = expected
        self.actual = actual


class RestoreError(BackupSystemError):
    """
    Errors during a restore.

    When the data directory has already been cleared, the message
    always names the safety copy so the operator can recover by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        safety_copy: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if step:
            details["step"] = step
        if safety_copy:
            details["safety_copy"] = safety_copy
        super().__init__(message, details=details)
        self.step = step
        self.safety_copy = safety_copy


class RunInterrupted(BackupSystemError):
    """Raised inside a run when a termination signal is delivered."""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}", details={"signal": signum})
        self.signum = signum


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, BackupSystemError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"
