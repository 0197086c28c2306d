"""Domain-specific exceptions raised by the launcher core."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable identifiers for launcher failures surfaced to callers."""

    PROVISION_FAILED = "provision_failed"
    SANDBOX_UNAVAILABLE = "sandbox_unavailable"
    LAUNCH_FAILED = "launch_failed"
    ALREADY_RUNNING = "already_running"
    NOT_RUNNING = "not_running"
    PROCESS_CRASHED = "process_crashed"
    CONFIG_NOT_FOUND = "config_not_found"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    CONFIG_UNAVAILABLE = "config_unavailable"


class LauncherError(Exception):
    """Base class for launcher failures; carries an ``ErrorCode``."""

    code: ErrorCode = ErrorCode.LAUNCH_FAILED

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ProvisionError(LauncherError):
    """Raised when a binary is missing, invalid or cannot be made executable."""

    code = ErrorCode.PROVISION_FAILED


class SandboxUnavailableError(LauncherError):
    """Raised when a sandbox readiness check fails."""

    code = ErrorCode.SANDBOX_UNAVAILABLE


class LaunchError(LauncherError):
    """Raised when every launch strategy has been exhausted."""

    code = ErrorCode.LAUNCH_FAILED


class ConfigNotFoundError(LauncherError, LookupError):
    """Raised when the configuration store has no entry for an id."""

    code = ErrorCode.CONFIG_NOT_FOUND


class CapacityExceededError(LauncherError):
    """Raised when the supervision pool has no free slot for another process."""

    code = ErrorCode.CAPACITY_EXCEEDED


class ConfigUnavailableError(LauncherError):
    """Raised when the configuration store itself cannot be read."""

    code = ErrorCode.CONFIG_UNAVAILABLE


__all__ = [
    "CapacityExceededError",
    "ConfigNotFoundError",
    "ConfigUnavailableError",
    "ErrorCode",
    "LaunchError",
    "LauncherError",
    "ProvisionError",
    "SandboxUnavailableError",
]
