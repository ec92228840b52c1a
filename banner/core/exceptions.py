#!/usr/bin/env python3
"""
Banner exceptions

Every fatal condition the CLI reports is a BannerError subclass. The CLI
logs the message and exits with status 1; nothing below the CLI retries or
rolls back.
"""

from typing import Any, Optional, Sequence


class BannerError(Exception):
    """Base exception for all banner errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class PrivilegeError(BannerError):
    """Raised when a command needs root and the process is not root."""

    def __init__(self, command: str):
        super().__init__("This command must be run as root", details=command)
        self.command = command


class DependencyError(BannerError):
    """Raised when a required host tool is missing and cannot be installed."""

    def __init__(self, message: str, missing: Sequence[str] = ()):
        super().__init__(message, details=", ".join(missing) or None)
        self.missing = list(missing)


class NetworkError(BannerError):
    """Raised when a list cannot be fetched or, in strict mode, a domain does not resolve."""
    pass


class FilterEngineError(BannerError):
    """Raised when iptables or ipset rejects a mutation.

    The engine's stderr is kept verbatim in ``details``.
    """

    def __init__(self, message: str, command: Optional[Sequence[str]] = None,
                 stderr: Optional[str] = None):
        super().__init__(message, details=(stderr or "").strip() or None)
        self.command = list(command) if command else []
        self.stderr = stderr or ""


class InvalidArgumentError(BannerError):
    """Raised for an unknown list id or command."""
    pass


class ConfigurationError(BannerError):
    """Raised when the configuration file is unreadable or holds invalid values."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid configuration value for '{field}'", details=reason)
        self.field = field
        self.reason = reason


class LockError(BannerError):
    """Raised when another banner process holds the reconcile lock."""

    def __init__(self, lock_path: str):
        super().__init__("Another instance is already running",
                         details=f"if this is an error, remove {lock_path}.lock")
        self.lock_path = lock_path
