"""
Structured logging configuration for depgrok.

Emits one JSON object per event on stderr so that the search report on
stdout stays clean and the log stream stays machine-readable.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRIBUTES = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRIBUTES:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class SearchLogger:
    """Structured logger for search and clone events."""

    def __init__(self, name: str = "depgrok"):
        self.logger = logging.getLogger(name)
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_context(self, **context: Any) -> None:
        """Attach fields to every event logged until clear_context()."""
        self.context = {key: value for key, value in context.items() if value is not None}

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: int, event_type: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        log_data = {"event_type": event_type, **self.context, **kwargs}
        self.logger.log(level, event_type, extra=log_data)

    def info(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event_type, **kwargs)

    def warning(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event_type, **kwargs)

    def error(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event_type, **kwargs)

    def debug(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event_type, **kwargs)


_search_logger = SearchLogger("depgrok.search")
_walker_logger = SearchLogger("depgrok.walker")
_clone_logger = SearchLogger("depgrok.clone")

_ALL_LOGGERS = (_search_logger, _walker_logger, _clone_logger)


def get_search_logger() -> SearchLogger:
    """Get level coordinator logger."""
    return _search_logger


def get_walker_logger() -> SearchLogger:
    """Get tree walker logger."""
    return _walker_logger


def get_clone_logger() -> SearchLogger:
    """Get repository cloning logger."""
    return _clone_logger


def log_search_start(search_id: str, root: str, seeds: int, depth: int) -> None:
    """Log search start event and set the search context on every logger."""
    for logger in _ALL_LOGGERS:
        logger.set_context(search_id=search_id)
    _search_logger.info(
        "search_started", root=root, seed_dependencies=seeds, depth=depth
    )


def log_level_complete(
    level: int, dependencies: int, new_dependencies: int, files_searched: int, duration_ms: int
) -> None:
    """Log the end of one level of the search."""
    _search_logger.info(
        "level_completed",
        search_level=level,
        total_dependencies=dependencies,
        new_dependencies=new_dependencies,
        files_searched=files_searched,
        level_duration_ms=duration_ms,
    )


def log_dependency_discovered(name: str, parent: str, level: int, repo: str) -> None:
    """Log a new dependency spawned by a match."""
    _walker_logger.debug(
        "dependency_discovered", dependency=name, parent=parent, search_level=level, repo=repo
    )


def log_search_complete(
    search_id: str,
    duration_ms: int,
    diagrams: int,
    errors: int = 0,
) -> None:
    """Log search completion event and clear the search context."""
    _search_logger.info(
        "search_completed",
        search_id=search_id,
        search_duration_ms=duration_ms,
        total_diagrams=diagrams,
        skipped_paths=errors,
    )
    clear_context()


def clear_context() -> None:
    """Clear context on all loggers."""
    for logger in _ALL_LOGGERS:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING", log_file: Optional[str] = None) -> None:
    """Configure logging levels, and optionally mirror events to a file."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
        if log_file and not any(
            isinstance(h, logging.FileHandler) for h in logger.logger.handlers
        ):
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(StructuredFormatter())
            logger.logger.addHandler(file_handler)
