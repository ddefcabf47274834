"""
In-process feature service.

Provides a deterministic RemoteDatasetClient that keeps the "server" dataset
in memory. It needs no network and is used for tests and local demos.

Every server change is stamped with a global generation number; each
replica layer remembers the generation of its last successful sync, so a
sync pulls exactly the server changes the replica has not seen yet.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shapely.geometry import LineString, Point, Polygon
from shapely.geometry.base import BaseGeometry

from ..core.exceptions import ExportFailed, GenerationFailed, ReplicaError
from ..core.jobs import JobReporter, MessageSeverity
from ..core.models import (
    ConflictPolicy,
    DeltaArtifact,
    Extent,
    FeatureRecord,
    GeometryKind,
    LayerInfo,
    LayerSyncResult,
    ReplicaArtifact,
    SyncDirection,
    SyncOutcome,
    SyncParameters,
)
from ..core.remote_client import RemoteDatasetClient
from ..storage.replica import Replica
from ..storage.schema import create_replica_file

logger = logging.getLogger(__name__)


# Fixed synthetic dataset: one point, one polyline and one polygon layer
SYNTHETIC_LAYERS = [
    LayerInfo(0, "Wildfire Response Points", GeometryKind.POINT),
    LayerInfo(1, "Wildfire Response Lines", GeometryKind.POLYLINE),
    LayerInfo(2, "Wildfire Response Polygons", GeometryKind.POLYGON),
]

SYNTHETIC_FEATURES = [
    FeatureRecord(1, 0, Point(10, 10), {"description": "Staging area"}),
    FeatureRecord(2, 0, Point(40, 40), {"description": "Water source"}),
    FeatureRecord(3, 0, Point(150, 150), {"description": "Helibase"}),
    FeatureRecord(1, 1, LineString([(5, 5), (30, 30)]), {"description": "Dozer line"}),
    FeatureRecord(2, 1, LineString([(120, 120), (180, 160)]), {"description": "Hand line"}),
    FeatureRecord(1, 2, Polygon([(20, 20), (30, 20), (30, 30), (20, 30)]), {"description": "Burn area"}),
]


@dataclass
class ServiceFeature:
    """A feature as stored by the service."""
    feature_id: int
    layer_id: int
    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)
    generation: int = 0
    deleted: bool = False

    def to_record(self) -> FeatureRecord:
        return FeatureRecord(
            feature_id=self.feature_id,
            layer_id=self.layer_id,
            geometry=self.geometry,
            attributes=dict(self.attributes),
        )


@dataclass
class _LayerPlan:
    """Changes computed for one layer before anything is applied."""
    layer_id: int
    push: List[FeatureRecord] = field(default_factory=list)
    upserts: List[FeatureRecord] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)
    cleared: List[int] = field(default_factory=list)
    conflicts: int = 0
    advance_generation: bool = True


class LocalFeatureService(RemoteDatasetClient):
    """
    Deterministic in-memory feature service.

    Features:
    - Synthetic wildfire dataset (or custom layers/features)
    - Generation-stamped change tracking for bidirectional sync
    - Conflict resolution per ConflictPolicy
    - Failure simulation for generate, export and individual sync layers
    - Optional gate event that holds jobs open, for concurrency tests
    """

    def __init__(
        self,
        layers: Optional[List[LayerInfo]] = None,
        features: Optional[Iterable[FeatureRecord]] = None,
        fail_layers: Optional[Iterable[int]] = None,
        fail_generate: Optional[str] = None,
        fail_export: Optional[str] = None,
        gate: Optional[threading.Event] = None,
        simulate_latency_ms: int = 0,
    ):
        """
        Initialize the service.

        Args:
            layers: Layer descriptions (default: SYNTHETIC_LAYERS)
            features: Initial features (default: SYNTHETIC_FEATURES)
            fail_layers: Layer ids whose sync always fails
            fail_generate: If set, generate fails with this message
            fail_export: If set, delta export fails with this message
            gate: If set, jobs block until the event is set
            simulate_latency_ms: Delay per progress step
        """
        self._lock = threading.RLock()
        self._generation = 0
        self._layers: Dict[int, LayerInfo] = {}
        self._features: Dict[int, Dict[int, ServiceFeature]] = {}

        self.fail_layers = set(fail_layers or [])
        self.fail_generate = fail_generate
        self.fail_export = fail_export
        self.gate = gate
        self.simulate_latency_ms = simulate_latency_ms

        # Track requests for testing
        self.request_history: List[str] = []

        for layer in layers if layers is not None else SYNTHETIC_LAYERS:
            self.add_layer(layer)
        for feature in features if features is not None else SYNTHETIC_FEATURES:
            self.add_feature(feature.layer_id, feature.feature_id, feature.geometry, feature.attributes)

        logger.debug(
            f"LocalFeatureService initialized with {len(self._layers)} layers"
        )

    # ------------------------------------------------------------------
    # Server-side dataset
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def add_layer(self, layer: LayerInfo) -> None:
        with self._lock:
            self._layers[layer.layer_id] = layer
            self._features.setdefault(layer.layer_id, {})

    def _layer_features(self, layer_id: int) -> Dict[int, ServiceFeature]:
        if layer_id not in self._layers:
            raise KeyError(f"Layer {layer_id} does not exist on the service")
        return self._features[layer_id]

    def add_feature(
        self,
        layer_id: int,
        feature_id: int,
        geometry: BaseGeometry,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Create or replace a server feature (as another client would)."""
        with self._lock:
            self._layer_features(layer_id)[feature_id] = ServiceFeature(
                feature_id=feature_id,
                layer_id=layer_id,
                geometry=geometry,
                attributes=dict(attributes or {}),
                generation=self._next_generation(),
            )

    def update_feature(
        self,
        layer_id: int,
        feature_id: int,
        geometry: Optional[BaseGeometry] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            feature = self._layer_features(layer_id)[feature_id]
            if geometry is not None:
                feature.geometry = geometry
            if attributes is not None:
                feature.attributes = dict(attributes)
            feature.deleted = False
            feature.generation = self._next_generation()

    def delete_feature(self, layer_id: int, feature_id: int) -> None:
        with self._lock:
            feature = self._layer_features(layer_id)[feature_id]
            feature.deleted = True
            feature.generation = self._next_generation()

    def get_feature(self, layer_id: int, feature_id: int) -> Optional[FeatureRecord]:
        """Current server version of a feature (None if missing or deleted)."""
        with self._lock:
            feature = self._layer_features(layer_id).get(feature_id)
            if feature is None or feature.deleted:
                return None
            return feature.to_record()

    def features(self, layer_id: int) -> List[FeatureRecord]:
        with self._lock:
            return [
                f.to_record()
                for f in sorted(self._layer_features(layer_id).values(), key=lambda f: f.feature_id)
                if not f.deleted
            ]

    def _step(self, reporter: JobReporter, progress: float) -> None:
        if self.simulate_latency_ms > 0:
            time.sleep(self.simulate_latency_ms / 1000.0)
        reporter.report_progress(progress)

    def _wait_for_gate(self) -> None:
        if self.gate is not None:
            self.gate.wait()

    # ------------------------------------------------------------------
    # RemoteDatasetClient
    # ------------------------------------------------------------------

    def describe_layers(self) -> List[LayerInfo]:
        with self._lock:
            return [self._layers[layer_id] for layer_id in sorted(self._layers)]

    def generate_replica(
        self,
        extent: Extent,
        destination_path: Path,
        reporter: JobReporter,
    ) -> ReplicaArtifact:
        self.request_history.append("generate")
        self._wait_for_gate()

        if self.fail_generate:
            reporter.add_message(self.fail_generate, MessageSeverity.ERROR)
            raise GenerationFailed(self.fail_generate)

        with self._lock:
            generation = self._generation
            layers = [(layer, generation) for layer in self.describe_layers()]
            features = []
            for index, (layer, _) in enumerate(layers):
                layer_features = [
                    f.to_record()
                    for f in sorted(self._features[layer.layer_id].values(), key=lambda f: f.feature_id)
                    if not f.deleted and extent.contains(f.geometry)
                ]
                features.extend(layer_features)
                reporter.add_message(
                    f"Layer {layer.layer_id} ({layer.name}): {len(layer_features)} features"
                )
                self._step(reporter, (index + 1) / len(layers) * 90)

        count = create_replica_file(
            destination_path,
            replica_id=str(uuid.uuid4()),
            extent=extent,
            layers=layers,
            features=features,
        )
        reporter.add_message(f"Replica created with {count} features")
        return ReplicaArtifact(path=Path(destination_path), layer_count=len(layers), feature_count=count)

    def sync_replica(
        self,
        replica: Replica,
        parameters: SyncParameters,
        reporter: JobReporter,
    ) -> SyncOutcome:
        self.request_history.append("sync")
        self._wait_for_gate()

        layer_ids = parameters.layer_ids()
        results: Dict[int, LayerSyncResult] = {}
        plans: List[_LayerPlan] = []
        total = max(len(layer_ids), 1)

        with self._lock:
            for index, layer_id in enumerate(layer_ids):
                try:
                    plans.append(self._plan_layer(replica, layer_id, parameters))
                except Exception as e:
                    results[layer_id] = LayerSyncResult(layer_id, succeeded=False, error=str(e))
                    reporter.add_message(
                        f"Layer {layer_id}: sync failed: {e}", MessageSeverity.ERROR
                    )
                self._step(reporter, (index + 1) / total * 50)

            if parameters.rollback_on_failure and results:
                for plan in plans:
                    results[plan.layer_id] = LayerSyncResult(
                        plan.layer_id, succeeded=False, error="rolled back"
                    )
                    reporter.add_message(
                        f"Layer {plan.layer_id}: rolled back", MessageSeverity.WARNING
                    )
            else:
                for index, plan in enumerate(plans):
                    try:
                        results[plan.layer_id] = self._apply_plan(replica, plan)
                        result = results[plan.layer_id]
                        reporter.add_message(
                            f"Layer {plan.layer_id}: pushed {result.pushed}, pulled {result.pulled}, "
                            f"deleted {result.deleted}, conflicts {result.conflicts}"
                        )
                    except Exception as e:
                        logger.exception(f"Applying sync for layer {plan.layer_id} failed")
                        results[plan.layer_id] = LayerSyncResult(
                            plan.layer_id, succeeded=False, error=str(e)
                        )
                        reporter.add_message(
                            f"Layer {plan.layer_id}: sync failed: {e}", MessageSeverity.ERROR
                        )
                    self._step(reporter, 50 + (index + 1) / max(len(plans), 1) * 50)

        return SyncOutcome(layer_results=[results[layer_id] for layer_id in layer_ids])

    def _plan_layer(
        self,
        replica: Replica,
        layer_id: int,
        parameters: SyncParameters,
    ) -> _LayerPlan:
        """Work out pushes, pulls and conflicts for one layer without applying them."""
        if layer_id in self.fail_layers:
            raise ReplicaError(f"Simulated sync failure for layer {layer_id}")

        server_features = self._layer_features(layer_id)
        last_generation = replica.layer_generation(layer_id)
        pending = {f.feature_id: f for f in replica.pending_edits(layer_id)}
        remote_changes = {
            fid: f for fid, f in server_features.items() if f.generation > last_generation
        }

        push_enabled = parameters.direction in (SyncDirection.BIDIRECTIONAL, SyncDirection.UPLOAD)
        pull_enabled = parameters.direction in (SyncDirection.BIDIRECTIONAL, SyncDirection.DOWNLOAD)
        prefer_remote = parameters.conflict_policy == ConflictPolicy.PREFER_REMOTE

        plan = _LayerPlan(layer_id=layer_id, advance_generation=pull_enabled)

        for feature_id, local in pending.items():
            conflicted = feature_id in remote_changes
            if conflicted:
                plan.conflicts += 1
                if prefer_remote:
                    # The remote version is pulled below; the local edit is dropped
                    if pull_enabled:
                        plan.cleared.append(feature_id)
                    continue
            if push_enabled:
                plan.push.append(local)
                plan.cleared.append(feature_id)

        if pull_enabled:
            for feature_id, remote in sorted(remote_changes.items()):
                if feature_id in pending and not prefer_remote:
                    continue
                if remote.deleted or not replica.extent.contains(remote.geometry):
                    plan.deletes.append(feature_id)
                else:
                    plan.upserts.append(remote.to_record())

        return plan

    def _apply_plan(self, replica: Replica, plan: _LayerPlan) -> LayerSyncResult:
        features = self._layer_features(plan.layer_id)
        for local in plan.push:
            features[local.feature_id] = ServiceFeature(
                feature_id=local.feature_id,
                layer_id=plan.layer_id,
                geometry=local.geometry,
                attributes=dict(local.attributes),
                generation=self._next_generation(),
            )

        replica.apply_layer_sync(
            plan.layer_id,
            upserts=plan.upserts,
            deletes=plan.deletes,
            cleared_edits=plan.cleared,
            generation=self._generation if plan.advance_generation else None,
        )
        return LayerSyncResult(
            layer_id=plan.layer_id,
            succeeded=True,
            pushed=len(plan.push),
            pulled=len(plan.upserts),
            deleted=len(plan.deletes),
            conflicts=plan.conflicts,
        )

    def export_delta(
        self,
        replica: Replica,
        destination_path: Path,
        reporter: JobReporter,
    ) -> DeltaArtifact:
        self.request_history.append("export_delta")
        self._wait_for_gate()

        if self.fail_export:
            reporter.add_message(self.fail_export, MessageSeverity.ERROR)
            raise ExportFailed(self.fail_export)

        pending = replica.pending_edits()
        layers: List[Tuple[LayerInfo, int]] = [
            (
                LayerInfo(table.layer_id, table.name, table.geometry_kind),
                replica.layer_generation(table.layer_id),
            )
            for table in replica.tables
        ]
        self._step(reporter, 50)

        count = create_replica_file(
            destination_path,
            replica_id=str(uuid.uuid4()),
            extent=replica.extent,
            layers=layers,
            features=pending,
            is_delta=True,
            source_replica_id=replica.replica_id,
            pending_edits=[(f.layer_id, f.feature_id) for f in pending],
        )
        reporter.add_message(f"Delta replica created with {count} changed features")
        return DeltaArtifact(path=Path(destination_path), feature_count=count)
