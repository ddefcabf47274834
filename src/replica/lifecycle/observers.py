"""
Notification fan-out from the lifecycle to the UI collaborator.

Notifications are delivered on whichever thread produced them (job
completions arrive on the job worker thread); marshaling onto a UI thread
is the observer's concern.
"""

import logging
from typing import Callable, List, Optional

from ..core.models import LifecycleState

logger = logging.getLogger(__name__)


class LifecycleObserver:
    """
    Base class for lifecycle observers. Override the notifications you need.
    """

    def on_state_changed(self, state: LifecycleState) -> None:
        pass

    def on_progress_changed(self, progress: int) -> None:
        pass

    def on_operation_failed(self, message: str, diagnostics: List[str]) -> None:
        pass


class CallbackObserver(LifecycleObserver):
    """Observer built from plain callables."""

    def __init__(
        self,
        on_state_changed: Optional[Callable[[LifecycleState], None]] = None,
        on_progress_changed: Optional[Callable[[int], None]] = None,
        on_operation_failed: Optional[Callable[[str, List[str]], None]] = None,
    ):
        self._state_cb = on_state_changed
        self._progress_cb = on_progress_changed
        self._failed_cb = on_operation_failed

    def on_state_changed(self, state: LifecycleState) -> None:
        if self._state_cb:
            self._state_cb(state)

    def on_progress_changed(self, progress: int) -> None:
        if self._progress_cb:
            self._progress_cb(progress)

    def on_operation_failed(self, message: str, diagnostics: List[str]) -> None:
        if self._failed_cb:
            self._failed_cb(message, diagnostics)


class ObserverList:
    """
    Ordered set of observers.

    An exception raised by one observer is logged and does not stop the
    others from being notified.
    """

    def __init__(self):
        self._observers: List[LifecycleObserver] = []

    def __len__(self) -> int:
        return len(self._observers)

    def add(self, observer: LifecycleObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove(self, observer: LifecycleObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _dispatch(self, method: str, *args) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, method)(*args)
            except Exception:
                logger.exception(f"Observer {observer!r} failed in {method}")

    def state_changed(self, state: LifecycleState) -> None:
        self._dispatch("on_state_changed", state)

    def progress_changed(self, progress: int) -> None:
        self._dispatch("on_progress_changed", progress)

    def operation_failed(self, message: str, diagnostics: List[str]) -> None:
        self._dispatch("on_operation_failed", message, diagnostics)
