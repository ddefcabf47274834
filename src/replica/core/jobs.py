"""
Job descriptors for long-running replica operations.

Generate, sync and delta export run as jobs: they report progress in the
range [0, 100], collect diagnostic messages and end in a terminal result.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional


class JobKind(str, Enum):
    """Kind of long-running operation."""
    GENERATE = "generate"
    SYNC = "sync"
    EXPORT_DELTA = "export_delta"

    @property
    def label(self) -> str:
        """Human-readable operation name used in failure messages."""
        return _JOB_LABELS[self]


_JOB_LABELS = {
    JobKind.GENERATE: "Generate geodatabase",
    JobKind.SYNC: "Sync geodatabase",
    JobKind.EXPORT_DELTA: "Export delta geodatabase",
}


class JobStatus(str, Enum):
    """Status of a job."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MessageSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class JobMessage:
    """A diagnostic message emitted by a job."""
    message: str
    severity: MessageSeverity = MessageSeverity.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class JobResult:
    """
    Terminal result of a job.

    Attributes:
        status: SUCCEEDED or FAILED
        artifact: Whatever the operation produced (successful jobs)
        error_summary: One-line failure description (failed jobs)
        messages: Diagnostic messages in emission order
        error: The exception that failed the job, if any
    """
    status: JobStatus
    artifact: Any = None
    error_summary: Optional[str] = None
    messages: List[JobMessage] = field(default_factory=list)
    error: Optional[BaseException] = None

    @classmethod
    def succeeded(cls, artifact: Any, messages: List[JobMessage]) -> "JobResult":
        return cls(status=JobStatus.SUCCEEDED, artifact=artifact, messages=list(messages))

    @classmethod
    def failed(
        cls,
        error_summary: Optional[str],
        messages: List[JobMessage],
        error: Optional[BaseException] = None,
    ) -> "JobResult":
        return cls(
            status=JobStatus.FAILED,
            error_summary=error_summary,
            messages=list(messages),
            error=error,
        )

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    def diagnostics(self) -> List[str]:
        return [m.message for m in self.messages]


ProgressListener = Callable[[int], None]


class JobReporter:
    """
    Progress and diagnostics channel handed to a running operation.

    Progress is clamped to [0, 100] and never moves backwards, so listeners
    see a non-decreasing sequence. Listeners are invoked synchronously on
    the reporting thread, in emission order; delivery is serialized, so a
    listener added while a job reports sees the replayed history before any
    newer value.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._progress = 0
        self._messages: List[JobMessage] = []
        self._history: List[int] = []
        self._listeners: List[ProgressListener] = []

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def messages(self) -> List[JobMessage]:
        with self._lock:
            return list(self._messages)

    def report_progress(self, value: float) -> None:
        """Publish a progress value; lower values than the current one are ignored."""
        clamped = max(0, min(100, int(value)))
        with self._delivery_lock:
            with self._lock:
                if self._history and clamped <= self._progress:
                    return
                self._progress = clamped
                self._history.append(clamped)
                listeners = list(self._listeners)
            for listener in listeners:
                listener(clamped)

    def add_message(self, message: str, severity: MessageSeverity = MessageSeverity.INFO) -> None:
        with self._lock:
            self._messages.append(JobMessage(message=message, severity=severity))

    def add_listener(self, listener: ProgressListener) -> None:
        """Subscribe to progress; values published before subscription are replayed."""
        with self._delivery_lock:
            with self._lock:
                history = list(self._history)
                self._listeners.append(listener)
            for value in history:
                listener(value)
