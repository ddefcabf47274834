"""
Core data models for the replica framework.

Spatial value objects, layer descriptions, feature records and the
parameters/results exchanged with the remote dataset during sync.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from shapely.geometry import Point, box
from shapely.geometry.base import BaseGeometry

if TYPE_CHECKING:
    from ..storage.feature_table import FeatureTable


class LifecycleState(str, Enum):
    """Phase of the offline editing workflow."""
    NOT_READY = "not_ready"  # No usable replica, or a delta is being inspected
    EDITING = "editing"      # A feature is selected and awaits its new location
    READY = "ready"          # Replica available for edits, sync or delta export


class GeometryKind(str, Enum):
    """Geometry kind of a feature table."""
    POINT = "point"
    MULTIPOINT = "multipoint"
    POLYLINE = "polyline"
    POLYGON = "polygon"
    UNKNOWN = "unknown"

    @classmethod
    def from_geometry(cls, geometry: BaseGeometry) -> "GeometryKind":
        """Map a shapely geometry to its kind."""
        return _GEOM_TYPE_TO_KIND.get(geometry.geom_type, cls.UNKNOWN)


_GEOM_TYPE_TO_KIND = {
    "Point": GeometryKind.POINT,
    "MultiPoint": GeometryKind.MULTIPOINT,
    "LineString": GeometryKind.POLYLINE,
    "MultiLineString": GeometryKind.POLYLINE,
    "Polygon": GeometryKind.POLYGON,
    "MultiPolygon": GeometryKind.POLYGON,
}


@dataclass(frozen=True)
class Extent:
    """
    Axis-aligned bounding rectangle in the dataset's coordinate space.

    Containment is boundary-inclusive: a point lying exactly on an edge
    is inside the extent.

    Attributes:
        xmin: Minimum x coordinate
        ymin: Minimum y coordinate
        xmax: Maximum x coordinate
        ymax: Maximum y coordinate
    """
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self):
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(
                f"Invalid extent: ({self.xmin}, {self.ymin}, {self.xmax}, {self.ymax})"
            )

    @classmethod
    def around(cls, location: Point, tolerance: float) -> "Extent":
        """Square envelope of half-width `tolerance` centred on `location`."""
        return cls(
            location.x - tolerance,
            location.y - tolerance,
            location.x + tolerance,
            location.y + tolerance,
        )

    @classmethod
    def from_bounds(cls, bounds) -> "Extent":
        """Create from a (minx, miny, maxx, maxy) tuple such as shapely `bounds`."""
        xmin, ymin, xmax, ymax = bounds
        return cls(xmin, ymin, xmax, ymax)

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def center(self) -> Point:
        return Point((self.xmin + self.xmax) / 2.0, (self.ymin + self.ymax) / 2.0)

    def expand(self, factor: float) -> "Extent":
        """
        Scale the extent around its centre.

        A factor below 1 shrinks the rectangle; the map view uses 0.8 to
        derive the generate extent from the visible area.
        """
        if factor <= 0:
            raise ValueError(f"Expand factor must be positive, got {factor}")
        half_w = self.width * factor / 2.0
        half_h = self.height * factor / 2.0
        c = self.center
        return Extent(c.x - half_w, c.y - half_h, c.x + half_w, c.y + half_h)

    def to_polygon(self):
        """Shapely polygon for this extent."""
        return box(self.xmin, self.ymin, self.xmax, self.ymax)

    def contains(self, geometry: BaseGeometry) -> bool:
        """True if the geometry lies entirely within the extent."""
        return self.to_polygon().covers(geometry)

    def intersects(self, geometry: BaseGeometry) -> bool:
        return self.to_polygon().intersects(geometry)

    def to_dict(self) -> Dict[str, float]:
        return {"xmin": self.xmin, "ymin": self.ymin, "xmax": self.xmax, "ymax": self.ymax}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Extent":
        return cls(
            float(data["xmin"]), float(data["ymin"]),
            float(data["xmax"]), float(data["ymax"]),
        )


@dataclass(frozen=True)
class LayerInfo:
    """
    Description of one remote layer.

    Attributes:
        layer_id: Remote layer identifier (used as the sync layer option key)
        name: Layer name
        geometry_kind: Geometry kind of the layer's features
    """
    layer_id: int
    name: str
    geometry_kind: GeometryKind


@dataclass
class FeatureRecord:
    """
    One spatial feature belonging to exactly one feature table.

    Attributes:
        feature_id: Stable feature identifier within its layer
        layer_id: Remote layer identifier of the owning table
        geometry: Shapely geometry
        attributes: Attribute values keyed by field name
        table: Owning feature table (None for features not yet stored)
    """
    feature_id: int
    layer_id: int
    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)
    table: Optional["FeatureTable"] = field(default=None, compare=False, repr=False)


class SyncDirection(str, Enum):
    """Direction for sync operations."""
    BIDIRECTIONAL = "bidirectional"
    UPLOAD = "upload"
    DOWNLOAD = "download"


class ConflictPolicy(str, Enum):
    """How to resolve a feature edited both locally and remotely."""
    PREFER_LOCAL = "prefer_local"
    PREFER_REMOTE = "prefer_remote"


@dataclass(frozen=True)
class SyncLayerOption:
    """Per-layer sync configuration keyed by remote layer id."""
    layer_id: int


@dataclass
class SyncParameters:
    """
    Parameters for a sync job.

    Attributes:
        direction: Which way edits flow
        rollback_on_failure: Undo every layer if any layer fails
        layer_options: Layers to sync; layers without an option are skipped
        conflict_policy: Resolution for features changed on both sides
    """
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    rollback_on_failure: bool = False
    layer_options: List[SyncLayerOption] = field(default_factory=list)
    conflict_policy: ConflictPolicy = ConflictPolicy.PREFER_LOCAL

    def layer_ids(self) -> List[int]:
        return [option.layer_id for option in self.layer_options]


@dataclass
class LayerSyncResult:
    """Outcome of syncing a single layer."""
    layer_id: int
    succeeded: bool
    pushed: int = 0
    pulled: int = 0
    deleted: int = 0
    conflicts: int = 0
    error: Optional[str] = None


@dataclass
class SyncOutcome:
    """Per-layer results of a sync job."""
    layer_results: List[LayerSyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(result.succeeded for result in self.layer_results)

    @property
    def failed_layers(self) -> List[LayerSyncResult]:
        return [result for result in self.layer_results if not result.succeeded]

    def get(self, layer_id: int) -> Optional[LayerSyncResult]:
        for result in self.layer_results:
            if result.layer_id == layer_id:
                return result
        return None


@dataclass(frozen=True)
class ReplicaArtifact:
    """File produced by a generate job."""
    path: Path
    layer_count: int = 0
    feature_count: int = 0


@dataclass(frozen=True)
class DeltaArtifact:
    """File produced by a delta export job."""
    path: Path
    feature_count: int = 0
