"""
Job runner for long-running replica operations.

Runs one operation at a time on a worker thread and hands back a JobHandle
that streams progress and resolves to a terminal JobResult. The runner is
operation-agnostic: whether a job may start is decided by the lifecycle.
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from ..core.exceptions import ReplicaError
from ..core.jobs import (
    JobKind,
    JobMessage,
    JobReporter,
    JobResult,
    JobStatus,
    MessageSeverity,
    ProgressListener,
)
from ..core.logging import JobContext, log_with_context

logger = logging.getLogger(__name__)


CompletionHook = Callable[[JobResult], None]


class JobHandle:
    """
    Handle to a running job.

    Attributes:
        job_id: Unique identifier of the job
        kind: Operation kind
        started_at: When the job was submitted
    """

    def __init__(self, kind: JobKind, reporter: JobReporter):
        self.job_id = str(uuid.uuid4())
        self.kind = kind
        self.started_at = datetime.now(timezone.utc)
        self._reporter = reporter
        self._future: Optional[Future] = None
        self._result: Optional[JobResult] = None

    def __repr__(self) -> str:
        return f"JobHandle(kind={self.kind.value}, status={self.status.value}, progress={self.progress})"

    @property
    def status(self) -> JobStatus:
        if self._result is None:
            return JobStatus.RUNNING
        return self._result.status

    @property
    def progress(self) -> int:
        return self._reporter.progress

    @property
    def messages(self) -> List[JobMessage]:
        return self._reporter.messages

    @property
    def result(self) -> Optional[JobResult]:
        """Terminal result, or None while the job runs."""
        return self._result

    def add_progress_listener(self, listener: ProgressListener) -> None:
        """Subscribe to progress; values already emitted are replayed first."""
        self._reporter.add_listener(listener)

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def wait(self, timeout: Optional[float] = None) -> JobResult:
        """
        Block until the job finishes.

        Raises:
            concurrent.futures.TimeoutError if `timeout` elapses first
        """
        return self._future.result(timeout=timeout)


class JobRunner:
    """
    Single-worker executor for generate, sync and delta export jobs.

    Operations are called as `operation(reporter, *args)`. A ReplicaError
    raised by the operation fails the job with the error's message; any
    other exception is logged and fails the job as unexpected.
    """

    def __init__(self, thread_name_prefix: str = "replica-job"):
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=thread_name_prefix,
        )

    def run(
        self,
        kind: JobKind,
        operation: Callable[..., Any],
        *args: Any,
        on_finished: Optional[CompletionHook] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> JobHandle:
        """
        Start `operation` asynchronously.

        Args:
            kind: Operation kind (for logging and messages)
            operation: Callable receiving the reporter and `args`
            on_finished: Called on the worker thread with the result before
                the handle resolves; if it raises, the job resolves as failed
            on_progress: Progress listener attached before the job starts

        Returns:
            JobHandle for the running job
        """
        reporter = JobReporter()
        if on_progress is not None:
            reporter.add_listener(on_progress)

        handle = JobHandle(kind, reporter)
        handle._future = self._executor.submit(
            self._execute, handle, reporter, operation, args, on_finished
        )
        return handle

    def _execute(
        self,
        handle: JobHandle,
        reporter: JobReporter,
        operation: Callable[..., Any],
        args: tuple,
        on_finished: Optional[CompletionHook],
    ) -> JobResult:
        with JobContext(job_id=handle.job_id, job_kind=handle.kind.value):
            log_with_context(logger, logging.INFO, f"{handle.kind.label} job started")
            reporter.report_progress(0)

            try:
                artifact = operation(reporter, *args)
                reporter.report_progress(100)
                result = JobResult.succeeded(artifact, reporter.messages)
            except ReplicaError as e:
                if str(e):
                    reporter.add_message(str(e), MessageSeverity.ERROR)
                result = JobResult.failed(str(e) or None, reporter.messages, error=e)
            except Exception as e:
                logger.exception(f"{handle.kind.label} job raised an unexpected error")
                result = JobResult.failed(f"Unexpected error: {e}", reporter.messages, error=e)

            log_with_context(
                logger,
                logging.INFO if result.ok else logging.WARNING,
                f"{handle.kind.label} job {result.status.value}",
            )

            if on_finished is not None:
                try:
                    on_finished(result)
                except Exception as e:
                    logger.exception(f"Completion handler for {handle.kind.label} job failed")
                    result = JobResult.failed(
                        f"Could not apply job result: {e}", reporter.messages, error=e
                    )

            handle._result = result

        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
