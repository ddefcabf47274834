"""
Feature table handle for one layer of a replica.
"""

import logging
import sqlite3
from typing import TYPE_CHECKING, List, Optional

from shapely import wkb
from shapely.geometry.base import BaseGeometry

from ..core.exceptions import ExtentViolation, ReplicaError
from ..core.models import Extent, FeatureRecord, GeometryKind
from .schema import is_extent_violation, row_to_feature, utc_now

if TYPE_CHECKING:
    from .replica import Replica


logger = logging.getLogger(__name__)


class FeatureTable:
    """
    A layer's features inside a replica file.

    Attributes:
        replica: Owning replica
        layer_id: Remote layer identifier (sync layer option key)
        name: Layer name
        geometry_kind: Geometry kind of the layer
    """

    def __init__(self, replica: "Replica", layer_id: int, name: str, geometry_kind: GeometryKind):
        self.replica = replica
        self.layer_id = layer_id
        self.name = name
        self.geometry_kind = geometry_kind
        self.loaded = False
        self.feature_count = 0

    def __repr__(self) -> str:
        return f"FeatureTable(layer_id={self.layer_id}, name={self.name!r}, kind={self.geometry_kind.value})"

    def load(self) -> "FeatureTable":
        """Load table metadata (feature count)."""
        row = self.replica.connection.execute(
            "SELECT COUNT(*) AS n FROM features WHERE layer_id = ?",
            (self.layer_id,),
        ).fetchone()
        self.feature_count = row["n"]
        self.loaded = True
        logger.debug(f"Loaded table {self.name} ({self.feature_count} features)")
        return self

    def _attach(self, feature: FeatureRecord) -> FeatureRecord:
        feature.table = self
        return feature

    def features(self) -> List[FeatureRecord]:
        """All features of the table, ordered by id."""
        rows = self.replica.connection.execute(
            "SELECT * FROM features WHERE layer_id = ? ORDER BY feature_id",
            (self.layer_id,),
        ).fetchall()
        return [self._attach(row_to_feature(row)) for row in rows]

    def get_feature(self, feature_id: int) -> Optional[FeatureRecord]:
        row = self.replica.connection.execute(
            "SELECT * FROM features WHERE layer_id = ? AND feature_id = ?",
            (self.layer_id, feature_id),
        ).fetchone()
        if row is None:
            return None
        return self._attach(row_to_feature(row))

    def query(self, envelope: Extent) -> List[FeatureRecord]:
        """
        Features whose geometry intersects `envelope`.

        The bounding-box columns prefilter candidates; shapely decides the
        exact intersection.
        """
        rows = self.replica.connection.execute("""
            SELECT * FROM features
            WHERE layer_id = ?
              AND maxx >= ? AND minx <= ?
              AND maxy >= ? AND miny <= ?
            ORDER BY feature_id
        """, (
            self.layer_id,
            envelope.xmin, envelope.xmax,
            envelope.ymin, envelope.ymax,
        )).fetchall()
        matches = []
        for row in rows:
            feature = row_to_feature(row)
            if envelope.intersects(feature.geometry):
                matches.append(self._attach(feature))
        return matches

    def update_geometry(self, feature_id: int, geometry: BaseGeometry) -> None:
        """
        Store a new geometry and record the local edit in one transaction.

        Raises:
            ExtentViolation: The storage backend rejected the geometry
            ReplicaError: The replica is read-only, the geometry kind does not
                match the layer, or the feature is missing
        """
        if self.replica.read_only:
            raise ReplicaError(f"Replica {self.replica.path} is read-only")
        kind = GeometryKind.from_geometry(geometry)
        if kind != self.geometry_kind:
            raise ReplicaError(
                f"Layer {self.layer_id} stores {self.geometry_kind.value} geometry, got {kind.value}"
            )

        conn = self.replica.connection
        minx, miny, maxx, maxy = geometry.bounds
        try:
            with conn:
                cursor = conn.execute("""
                    UPDATE features
                    SET geometry = ?, minx = ?, miny = ?, maxx = ?, maxy = ?
                    WHERE layer_id = ? AND feature_id = ?
                """, (
                    wkb.dumps(geometry), minx, miny, maxx, maxy,
                    self.layer_id, feature_id,
                ))
                if cursor.rowcount == 0:
                    raise ReplicaError(
                        f"Feature {feature_id} not found in layer {self.layer_id}"
                    )
                conn.execute("""
                    INSERT OR REPLACE INTO local_edits (layer_id, feature_id, edited_at)
                    VALUES (?, ?, ?)
                """, (self.layer_id, feature_id, utc_now()))
        except sqlite3.IntegrityError as e:
            if is_extent_violation(e):
                raise ExtentViolation(
                    f"Feature {feature_id} must be within extent of geodatabase",
                    feature_id=feature_id,
                    layer_id=self.layer_id,
                ) from e
            raise
