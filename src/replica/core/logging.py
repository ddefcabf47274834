"""
Logging utilities for the replica framework.

Provides structured logging with job correlation so that log lines from a
generate/sync/export job can be traced back to the job that emitted them.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

CONTEXT_FIELDS = ("job_id", "job_kind", "replica_id", "layer_id")


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes the standard fields (timestamp, level, message,
    logger), any correlation fields present on the record, and exception
    text when available.
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter for console output.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [job_id=X job_kind=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                context_parts.append(f"{name}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    include_timestamp: bool = True,
    stream=None,
) -> logging.Logger:
    """
    Configure the `replica` package logger.

    Only one handler is installed; calling this again adjusts the level
    and formatter of the existing handler.

    Args:
        level: Logging level (default: INFO)
        structured: If True, output JSON lines; otherwise human-readable
        include_timestamp: Whether to include timestamps
        stream: Output stream (default: stdout)

    Returns:
        The package logger
    """
    package_logger = logging.getLogger("replica")
    package_logger.setLevel(level)

    if structured:
        formatter = StructuredFormatter(include_timestamp=include_timestamp)
    else:
        formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

    if package_logger.handlers:
        for handler in package_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
    else:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    return package_logger


class JobContext:
    """
    Context manager that attaches correlation fields to log calls.

    The context is per thread: a job running on the worker thread does not
    leak its fields into log lines from the caller thread.

    Example:
        >>> with JobContext(job_id="abc", job_kind="sync"):
        ...     log_with_context(logger, logging.INFO, "Sync started")
    """

    _local = threading.local()

    def __init__(
        self,
        job_id: Optional[str] = None,
        job_kind: Optional[str] = None,
        replica_id: Optional[str] = None,
        **extra: Any,
    ):
        self.context = {
            "job_id": job_id,
            "job_kind": job_kind,
            "replica_id": replica_id,
            **extra,
        }
        self.context = {k: v for k, v in self.context.items() if v is not None}
        self._previous: Optional["JobContext"] = None

    def __enter__(self) -> "JobContext":
        self._previous = getattr(JobContext._local, "current", None)
        JobContext._local.current = self
        return self

    def __exit__(self, *args) -> None:
        JobContext._local.current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        current = getattr(cls._local, "current", None)
        if current is None:
            return {}
        return current.context.copy()


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """
    Log a message with the current job context merged with `extra`.
    """
    context = JobContext.get_current()
    context.update(extra)
    logger.log(level, message, extra=context)
