"""
errors.py - Exception hierarchy for sysup.

Fatal errors end the run with a non-zero exit. Everything else is returned
as a status to the orchestrator, which decides whether to prompt, fall back
to a default, or continue.
"""

from __future__ import annotations

from typing import Any


class SysupError(Exception):
    """Base exception for all sysup errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        recoverable: Whether the run could continue after this error
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigError(SysupError):
    """Configuration file or flag value could not be used."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            message,
            code="CONFIG_INVALID",
            details={"path": path} if path else None,
        )


class FatalError(SysupError):
    """Base for errors that terminate the run before any further step."""


class NoPackageManagerError(FatalError):
    def __init__(self) -> None:
        super().__init__(
            "No package managers detected",
            code="NO_PACKAGE_MANAGER",
        )


class BackupDirError(FatalError):
    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Cannot write backup directory {path}: {reason}",
            code="BACKUP_DIR_UNWRITABLE",
            details={"path": path, "reason": reason},
        )


class NetworkUnavailableError(FatalError):
    def __init__(self, host: str):
        super().__init__(
            "No internet connectivity detected; network is required for a system upgrade",
            code="NETWORK_UNAVAILABLE",
            details={"host": host},
        )


class EssentialPackageError(FatalError):
    """A conflict names a package whose removal would break the host."""

    def __init__(self, packages: list[str]):
        names = ", ".join(packages)
        super().__init__(
            f"Conflict involves essential package(s): {names}. Manual intervention required.",
            code="ESSENTIAL_PACKAGE_CONFLICT",
            details={"packages": list(packages)},
        )
        self.packages = list(packages)


class BatteryTooLowError(FatalError):
    def __init__(self, level: int, minimum: int):
        super().__init__(
            f"Battery level too low: {level}% (minimum: {minimum}%)",
            code="BATTERY_TOO_LOW",
            details={"level": level, "minimum": minimum},
        )


class InsufficientDiskSpaceError(FatalError):
    def __init__(self, available_mb: int, needed_mb: int):
        super().__init__(
            f"Insufficient disk space: available {available_mb}MB, estimated need {needed_mb}MB",
            code="INSUFFICIENT_DISK_SPACE",
            details={"available_mb": available_mb, "needed_mb": needed_mb},
        )


class OperatorAbort(FatalError):
    """The operator declined to continue at a recoverable decision point."""

    def __init__(self, reason: str):
        super().__init__(reason, code="OPERATOR_ABORT")
