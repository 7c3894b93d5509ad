"""Error taxonomy for availability scans.

Every fatal condition raised by the engine derives from :class:`ScanError` so
the entry point can report it uniformly. ``url`` and ``diagnostics`` are filled
in by the engine once it has captured the failing page.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ConfigurationError(ValueError):
    """Raised when the watcher is configured with unusable values."""


class NotificationError(RuntimeError):
    """Raised by the mail collaborator when a message could not be sent."""


class ScanError(Exception):
    """Base class for unrecovered navigation/classification failures."""

    def __init__(self, message: str, *, url: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.diagnostics: dict[str, Path] = {}


class RetryExhausted(ScanError):
    """A bounded-retry operation failed on every attempt."""

    def __init__(self, name: str, attempts: int, last_error: Optional[BaseException]):
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown error"
        super().__init__(
            f"{name}: gave up after {attempts} attempt(s); last error: {detail}",
            url=getattr(last_error, "url", None),
        )
        self.name = name
        self.attempts = attempts
        self.last_error = last_error


class HardBlock(ScanError):
    """The site answered with a denial or rate-limit page."""

    def __init__(self, step: str, *, url: Optional[str] = None, http_status: Optional[int] = None):
        status = f" (HTTP {http_status})" if http_status is not None else ""
        super().__init__(f"{step}: access blocked by the site{status}", url=url)
        self.step = step
        self.http_status = http_status


class NavigationMismatch(ScanError):
    """The reached page is not the expected target (wrong route or error page)."""

    def __init__(self, step: str, reason: str, *, url: Optional[str] = None):
        super().__init__(f"{step}: {reason}", url=url)
        self.step = step
        self.reason = reason


__all__ = [
    "ConfigurationError",
    "HardBlock",
    "NavigationMismatch",
    "NotificationError",
    "RetryExhausted",
    "ScanError",
]
