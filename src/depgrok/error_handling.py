"""
Error handling for depgrok.

Defines the exception hierarchy raised by the search engine and the cloner,
and an ErrorReporter that records and logs the problems a run ran into.
Everything it logs passes through a filter that redacts API tokens and
credentials embedded in URLs.
"""

import logging
import re
import sys
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit


class DepgrokError(Exception):
    """Base class for all depgrok errors."""


class ConfigurationError(DepgrokError):
    """Invalid or incomplete configuration, raised before any work starts."""


class FileSystemAccessError(DepgrokError):
    """A path encountered during a walk could not be stat'ed, listed or read."""

    def __init__(self, path: str, operation: str, cause: Optional[BaseException] = None):
        self.path = path
        self.operation = operation
        self.cause = cause
        message = f"Cannot {operation} {path}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class DuplicateDependencyError(DepgrokError):
    """The registry already holds a dependency with this name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"The collection already contains a dependency named '{name}'"
        )


class CloneError(DepgrokError):
    """Listing or cloning repositories failed."""


class ErrorCategory(Enum):
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    VCS = "vcs"


_REDACTIONS = [
    (re.compile(r"(authorization:\s*(?:token|bearer|basic)\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(token\s*[=:]\s*['\"]?)[\w\-.+/=]{8,}", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(\w+://[^/@\s:]+:)[^@\s/]+@"), r"\1[REDACTED]@"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), "[REDACTED]"),
]

_SECRET_KEYS = ("token", "password", "secret", "credential", "authorization")


def sanitize_message(message: str) -> str:
    """Remove tokens and embedded credentials from a message."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def sanitize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """Redact secret-looking keys and sanitize string values, recursively."""
    clean: Dict[str, Any] = {}
    for key, value in details.items():
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            clean[key] = "[REDACTED]"
        elif isinstance(value, dict):
            clean[key] = sanitize_details(value)
        elif isinstance(value, str):
            clean[key] = sanitize_message(value)
        else:
            clean[key] = value
    return clean


def strip_url(url: str) -> str:
    """Keep scheme, host, port and path of a URL; drop credentials and query."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}"


class RedactingFilter(logging.Filter):
    """Logging filter that sanitizes the rendered message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_message(record.getMessage())
        record.args = None
        return True


@dataclass
class ErrorRecord:
    """One problem reported during a run."""

    severity: int
    category: ErrorCategory
    message: str
    component: str
    operation: str
    details: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None
    hints: List[str] = field(default_factory=list)

    def render(self) -> str:
        parts = [f"[{self.category.value}] {self.component}.{self.operation}: {self.message}"]
        if self.cause is not None:
            parts.append(f"cause={type(self.cause).__name__}")
        if self.details:
            parts.append(f"details={sanitize_details(self.details)}")
        if self.hints:
            parts.append("hints=" + "; ".join(self.hints))
        return " | ".join(parts)


ErrorListener = Callable[[ErrorRecord], None]


class ErrorReporter:
    """
    Central sink for errors and warnings raised while searching or cloning.

    Every report is logged through a redacting logger, counted per category
    and severity, and passed to registered listeners.
    """

    def __init__(self, logger_name: str = "depgrok.errors", log_level: int = logging.WARNING):
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)
        self.logger.propagate = False
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
            handler.addFilter(RedactingFilter())
            self.logger.addHandler(handler)
        self.listeners: List[ErrorListener] = []
        self.counts: Counter = Counter()

    def add_listener(self, listener: ErrorListener) -> None:
        self.listeners.append(listener)

    def report(
        self,
        severity: int,
        category: ErrorCategory,
        message: str,
        component: str,
        operation: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        hints: Optional[List[str]] = None,
    ) -> ErrorRecord:
        """
        Record, log and broadcast one problem.

        A failing listener is logged and does not stop the others.
        """
        record = ErrorRecord(
            severity=severity,
            category=category,
            message=message,
            component=component,
            operation=operation,
            details=details or {},
            cause=cause,
            hints=hints or [],
        )
        self.counts[(category, severity)] += 1
        self.logger.log(severity, record.render())

        for listener in self.listeners:
            try:
                listener(record)
            except Exception as listener_error:
                self.logger.error("error listener failed: %s", listener_error)

        return record

    def warning(self, category: ErrorCategory, message: str, component: str, operation: str, **kwargs) -> ErrorRecord:
        return self.report(logging.WARNING, category, message, component, operation, **kwargs)

    def error(self, category: ErrorCategory, message: str, component: str, operation: str, **kwargs) -> ErrorRecord:
        return self.report(logging.ERROR, category, message, component, operation, **kwargs)

    def count(self, category: Optional[ErrorCategory] = None) -> int:
        """Number of reports, optionally for one category only."""
        return sum(n for (cat, _), n in self.counts.items() if category in (None, cat))

    def reset(self) -> None:
        self.counts.clear()


_reporter: Optional[ErrorReporter] = None


def get_error_reporter() -> ErrorReporter:
    """Process-wide reporter, created on first use."""
    global _reporter
    if _reporter is None:
        _reporter = ErrorReporter()
    return _reporter


def log_filesystem_error(
    error: FileSystemAccessError, operation: str, fatal: bool
) -> ErrorRecord:
    """
    Report a path the walker could not access.

    Args:
        error: The access error raised by the walker
        operation: Walker step that caught the error
        fatal: Whether the error aborts the run
    """
    hints = [
        "Check file permissions under the search directory",
        "Exclude the path with --exclude",
    ]
    if fatal:
        hints.append("Re-run with --on-error skip to continue past unreadable paths")

    reporter = get_error_reporter()
    report = reporter.error if fatal else reporter.warning
    return report(
        ErrorCategory.FILESYSTEM,
        str(error),
        "walker",
        operation,
        cause=error.cause,
        details={"path": error.path, "operation": error.operation},
        hints=hints,
    )


def log_network_error(
    message: str,
    component: str,
    operation: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    cause: Optional[BaseException] = None,
) -> ErrorRecord:
    """Report a failed GitHub API call. The URL is logged without query or credentials."""
    details: Dict[str, Any] = {}
    if url is not None:
        details["url"] = strip_url(url)
    if status_code is not None:
        details["status_code"] = status_code

    hints = ["Verify the organisation name and token scope"]
    if status_code in (403, 429):
        hints.append("GitHub API rate limit may be exhausted, retry later")
    elif status_code is None:
        hints.append("Check network connectivity")

    return get_error_reporter().error(
        ErrorCategory.NETWORK,
        message,
        component,
        operation,
        cause=cause,
        details=details,
        hints=hints,
    )
