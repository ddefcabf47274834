"""
Replica lifecycle state machine.

Orchestrates generate -> edit -> sync -> (optional) export delta -> reload
for a single client session, keeping exactly one replica active and at most
one long-running job in flight.

States:
    NOT_READY  No usable replica (initial, or a delta replica is shown)
    EDITING    A feature is selected; the next tap places it
    READY      Replica available for edits, sync or delta export

Generate, sync, export delta and reload are mutually exclusive and
exclusive with EDITING. A request that violates this raises
IllegalTransition and leaves the session untouched.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional, Tuple, Union

from shapely.geometry import Point

from ..config.config_loader import ReplicaConfig
from ..core.exceptions import IllegalTransition, ReplicaError, SyncFailed
from ..core.jobs import JobKind, JobReporter, JobResult
from ..core.models import (
    Extent,
    GeometryKind,
    LayerInfo,
    LifecycleState,
    SyncLayerOption,
    SyncOutcome,
    SyncParameters,
)
from ..core.remote_client import RemoteDatasetClient
from ..editing.edit_buffer import CommitResult, EditBuffer
from ..runner.job_runner import JobHandle, JobRunner
from ..storage.replica import Replica
from ..storage.replica_store import ReplicaStore
from .observers import LifecycleObserver, ObserverList
from .session import ReplicaSession, TapOutcome

logger = logging.getLogger(__name__)

EXTENT_VIOLATION_MESSAGE = "Feature must be within extent of geodatabase."

Location = Union[Point, Tuple[float, float]]


def failure_message(kind: JobKind, result: JobResult) -> str:
    """
    Build the user-facing message for a failed job.

    Uses the error summary when there is one, otherwise the job's diagnostic
    messages. A failure with neither is reported as an unknown error; it is
    never treated as success.
    """
    message = f"{kind.label} job failed"
    if result.error_summary:
        return f"{message}: {result.error_summary}"
    diagnostics = [d for d in result.diagnostics() if d]
    if diagnostics:
        return message + "\n" + "\n".join(diagnostics)
    return f"{message}: unknown error"


class ReplicaLifecycle:
    """
    State machine for the offline editing workflow.

    Example:
        >>> lifecycle = ReplicaLifecycle(remote)
        >>> lifecycle.generate(extent).wait()
        >>> lifecycle.tap(Point(10, 10), units_per_pixel=0.5)   # select
        >>> lifecycle.tap(Point(12, 10), units_per_pixel=0.5)   # place
        >>> lifecycle.sync().wait()
    """

    def __init__(
        self,
        remote: RemoteDatasetClient,
        config: Optional[ReplicaConfig] = None,
        store: Optional[ReplicaStore] = None,
        runner: Optional[JobRunner] = None,
        edit_buffer: Optional[EditBuffer] = None,
    ):
        """
        Initialize the lifecycle.

        Args:
            remote: Remote feature dataset
            config: Configuration (defaults if not provided)
            store: Replica store (created from `remote` if not provided)
            runner: Job runner (a new single-worker runner if not provided)
            edit_buffer: Edit buffer (created over `store` if not provided)
        """
        self.remote = remote
        self.config = config or ReplicaConfig()
        self.store = store or ReplicaStore(remote)
        self.runner = runner or JobRunner()
        self.edit_buffer = edit_buffer or EditBuffer(self.store)
        self.session = ReplicaSession()

        self._observers = ObserverList()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self.session.state

    @property
    def active_replica(self) -> Optional[Replica]:
        return self.store.active

    @property
    def active_job(self) -> Optional[JobHandle]:
        return self.session.active_job

    @property
    def selection(self) -> List:
        return list(self.session.selection)

    def add_observer(self, observer: LifecycleObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: LifecycleObserver) -> None:
        self._observers.remove(observer)

    def preview_layers(self) -> List[LayerInfo]:
        """Remote point layers, shown before a replica exists."""
        return [
            layer for layer in self.remote.describe_layers()
            if layer.geometry_kind == GeometryKind.POINT
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: LifecycleState) -> None:
        if self.session.state == state:
            return
        logger.info(f"Lifecycle state {self.session.state.value} -> {state.value}")
        self.session.state = state
        self._observers.state_changed(state)

    def _set_progress(self, progress: int) -> None:
        self.session.progress = progress
        self._observers.progress_changed(progress)

    def _require(self, intent: str, allowed: Iterable[LifecycleState]) -> None:
        """Raise IllegalTransition unless `intent` may start now."""
        state = self.session.state
        if self.session.job_in_flight:
            raise IllegalTransition(
                f"Operation '{intent}' not permitted in current state: "
                f"{self.session.active_job.kind.label} job in progress",
                state=state.value,
                intent=intent,
            )
        if state not in allowed:
            raise IllegalTransition(
                f"Operation '{intent}' not permitted in current state {state.value}",
                state=state.value,
                intent=intent,
            )

    def _start_job(
        self,
        kind: JobKind,
        operation: Callable,
        args: tuple,
        on_success: Callable,
        on_failure: Callable[[JobResult], None],
    ) -> JobHandle:
        """
        Start a job and register it as the one in flight.

        Must be called with the lock held. The completion hook takes the
        same lock, so it cannot run before `active_job` is recorded.
        """
        def finished(result: JobResult) -> None:
            self._complete(kind, result, on_success, on_failure)

        handle = self.runner.run(
            kind,
            operation,
            *args,
            on_finished=finished,
            on_progress=self._set_progress,
        )
        self.session.active_job = handle
        return handle

    def _complete(
        self,
        kind: JobKind,
        result: JobResult,
        on_success: Callable,
        on_failure: Callable[[JobResult], None],
    ) -> None:
        with self._lock:
            self.session.active_job = None
            if not result.ok:
                on_failure(result)
                return
            try:
                on_success(result.artifact)
            except Exception as e:
                logger.error(f"Could not apply result of {kind.label} job: {e}")
                artifact = result.artifact
                if isinstance(artifact, Replica) and artifact is not self.store.active:
                    self.store.close(artifact)
                self._observers.operation_failed(
                    f"{kind.label} job failed: {e}", result.diagnostics()
                )
                raise

    def _report_failure(self, kind: JobKind, result: JobResult) -> None:
        message = failure_message(kind, result)
        logger.warning(message)
        self._observers.operation_failed(message, result.diagnostics())

    # ------------------------------------------------------------------
    # Generate
    # ------------------------------------------------------------------

    def generate(self, extent: Extent) -> JobHandle:
        """
        Generate a replica bounded by `extent` into the configured output
        directory.

        On success the replica becomes active and the state READY; on
        failure the state stays NOT_READY and observers are told why.

        Raises:
            IllegalTransition: Not in NOT_READY, or a job is in flight
        """
        with self._lock:
            self._require("generate", [LifecycleState.NOT_READY])
            destination = self.config.replica_path

            def on_success(replica: Replica) -> None:
                self.store.activate(replica)
                self.session.extent = replica.extent
                self.session.primary_path = replica.path
                self.session.selection = []
                self._set_state(LifecycleState.READY)

            def on_failure(result: JobResult) -> None:
                self._report_failure(JobKind.GENERATE, result)

            return self._start_job(
                JobKind.GENERATE,
                self._run_generate,
                (extent, destination),
                on_success,
                on_failure,
            )

    def _run_generate(self, reporter: JobReporter, extent: Extent, destination) -> Replica:
        return self.store.generate(extent, destination, reporter)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def tap(self, location: Location, units_per_pixel: float = 1.0) -> TapOutcome:
        """
        Handle a tap on the map.

        NOT_READY: ignored. READY: select features near the tap (tolerance
        is the configured pixel count times `units_per_pixel`) and enter
        EDITING if any matched. EDITING: move every selected feature to the
        tap; features the replica rejects stay unmodified, the selection is
        cleared and the state returns to READY regardless.

        Raises:
            IllegalTransition: A job is in flight
        """
        if not isinstance(location, Point):
            location = Point(location)

        with self._lock:
            if self.session.job_in_flight:
                raise IllegalTransition(
                    f"Operation 'tap' not permitted in current state: "
                    f"{self.session.active_job.kind.label} job in progress",
                    state=self.session.state.value,
                    intent="tap",
                )

            state = self.session.state
            if state == LifecycleState.NOT_READY:
                return TapOutcome(state=state, ignored=True)
            if state == LifecycleState.READY:
                return self._select_at(location, units_per_pixel)
            return self._commit_selection(location)

    def _select_at(self, location: Point, units_per_pixel: float) -> TapOutcome:
        tolerance = self.config.selection_tolerance_pixels * units_per_pixel
        envelope = Extent.around(location, tolerance)

        selected = []
        for table in self.store.active.operational_tables:
            selected.extend(table.query(envelope))

        if selected:
            self.session.selection = selected
            logger.info(f"Selected {len(selected)} feature(s) for editing")
            self._set_state(LifecycleState.EDITING)

        return TapOutcome(state=self.session.state, selected=selected)

    def _commit_selection(self, location: Point) -> TapOutcome:
        selection = self.session.selection
        self.session.selection = []
        outcome = TapOutcome(state=LifecycleState.READY)

        for feature in selection:
            if feature.table is None or feature.table.geometry_kind != GeometryKind.POINT:
                continue
            try:
                result = self.edit_buffer.commit(feature, location)
            except ReplicaError as e:
                logger.warning(f"Could not commit feature {feature.feature_id}: {e}")
                outcome.rejected.append(feature)
                self._observers.operation_failed(str(e), [])
                continue

            if result == CommitResult.SUCCESS:
                outcome.committed.append(feature)
            else:
                outcome.rejected.append(feature)
                self._observers.operation_failed(
                    EXTENT_VIOLATION_MESSAGE,
                    [
                        str(self.edit_buffer.last_error),
                        f"Feature {feature.feature_id} in layer {feature.layer_id} "
                        f"left at {feature.geometry.wkt}",
                    ],
                )

        self._set_state(LifecycleState.READY)
        return outcome

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def build_sync_parameters(self, replica: Replica) -> SyncParameters:
        """One layer option per table in the replica, policy from config."""
        return SyncParameters(
            direction=self.config.sync_direction,
            rollback_on_failure=self.config.rollback_on_failure,
            layer_options=[SyncLayerOption(table.layer_id) for table in replica.tables],
            conflict_policy=self.config.conflict_policy,
        )

    def sync(self) -> JobHandle:
        """
        Synchronize the active replica with the remote dataset.

        The state is READY after completion whether the job succeeded or
        failed; failed layers are reported through observers.

        Raises:
            IllegalTransition: Not READY, or a job is in flight
        """
        with self._lock:
            self._require("sync", [LifecycleState.READY])
            replica = self.store.active
            parameters = self.build_sync_parameters(replica)

            def on_success(outcome: SyncOutcome) -> None:
                self._set_progress(0)
                self._set_state(LifecycleState.READY)

            def on_failure(result: JobResult) -> None:
                self._report_failure(JobKind.SYNC, result)
                self._set_state(LifecycleState.READY)

            return self._start_job(
                JobKind.SYNC,
                self._run_sync,
                (replica, parameters),
                on_success,
                on_failure,
            )

    def _run_sync(
        self,
        reporter: JobReporter,
        replica: Replica,
        parameters: SyncParameters,
    ) -> SyncOutcome:
        outcome = self.remote.sync_replica(replica, parameters, reporter)
        failed = outcome.failed_layers
        if failed:
            raise SyncFailed(
                f"{len(failed)} of {len(outcome.layer_results)} layer(s) failed to sync",
                outcome=outcome,
            )
        return outcome

    # ------------------------------------------------------------------
    # Delta export / reload
    # ------------------------------------------------------------------

    def export_delta(self) -> JobHandle:
        """
        Export the active replica's unsynced changes as a delta replica.

        On success the primary replica is closed, the delta becomes the
        active (read-only) replica and the state is NOT_READY until the
        primary is reloaded. On failure the primary stays active.

        Raises:
            IllegalTransition: Not READY, or a job is in flight
        """
        with self._lock:
            self._require("export_delta", [LifecycleState.READY])
            replica = self.store.active
            destination = self.config.delta_path

            def on_success(delta: Replica) -> None:
                self.store.swap(replica, delta)
                self.session.delta_path = delta.path
                self.session.selection = []
                self._set_state(LifecycleState.NOT_READY)

            def on_failure(result: JobResult) -> None:
                self._report_failure(JobKind.EXPORT_DELTA, result)

            return self._start_job(
                JobKind.EXPORT_DELTA,
                self._run_export_delta,
                (replica, destination),
                on_success,
                on_failure,
            )

    def _run_export_delta(self, reporter: JobReporter, replica: Replica, destination) -> Replica:
        return self.store.export_delta(replica, destination, reporter)

    def reload(self) -> Replica:
        """
        Re-open the primary replica file and make it active again.

        Closes whatever replica (usually the delta) was active and returns
        the state to READY.

        Raises:
            IllegalTransition: No primary replica, EDITING, or a job in flight
            ReplicaNotFound / CorruptReplica: The primary file cannot be opened
        """
        with self._lock:
            self._require("reload", [LifecycleState.NOT_READY, LifecycleState.READY])
            if self.session.primary_path is None:
                raise IllegalTransition(
                    "Operation 'reload' not permitted in current state: no replica generated",
                    state=self.session.state.value,
                    intent="reload",
                )

            try:
                replica = self.store.open(self.session.primary_path)
            except ReplicaError as e:
                logger.error(f"Reload of {self.session.primary_path} failed: {e}")
                self._observers.operation_failed(f"Reload failed: {e}", [])
                raise

            self.store.activate(replica)
            self.session.selection = []
            self._set_state(LifecycleState.READY)
            return replica

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Wait for any running job, then close the active replica."""
        self.runner.shutdown(wait=True)
        with self._lock:
            self.store.close_all()
            self.remote.close()
