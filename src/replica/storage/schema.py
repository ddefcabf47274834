"""
On-disk format of replica files.

A replica is a single SQLite database. Geometry is stored as WKB next to
its bounding box; triggers reject any feature whose bounding box leaves
the replica extent, so the storage backend itself enforces the bound.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from shapely import wkb

from ..core.models import Extent, FeatureRecord, LayerInfo

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

EXTENT_VIOLATION_MESSAGE = "geometry outside replica extent"

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS replica_meta (
        replica_id TEXT NOT NULL,
        xmin REAL NOT NULL,
        ymin REAL NOT NULL,
        xmax REAL NOT NULL,
        ymax REAL NOT NULL,
        is_delta INTEGER NOT NULL DEFAULT 0,
        source_replica_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS layers (
        layer_id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        geometry_kind TEXT NOT NULL,
        sync_generation INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS features (
        layer_id INTEGER NOT NULL REFERENCES layers (layer_id),
        feature_id INTEGER NOT NULL,
        geometry BLOB NOT NULL,
        minx REAL NOT NULL,
        miny REAL NOT NULL,
        maxx REAL NOT NULL,
        maxy REAL NOT NULL,
        attributes TEXT,
        PRIMARY KEY (layer_id, feature_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_features_bbox
    ON features (layer_id, minx, maxx, miny, maxy)
    """,
    """
    CREATE TABLE IF NOT EXISTS local_edits (
        layer_id INTEGER NOT NULL,
        feature_id INTEGER NOT NULL,
        edited_at TEXT NOT NULL,
        PRIMARY KEY (layer_id, feature_id)
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS features_extent_insert
    BEFORE INSERT ON features
    WHEN NEW.minx < (SELECT xmin FROM replica_meta)
      OR NEW.miny < (SELECT ymin FROM replica_meta)
      OR NEW.maxx > (SELECT xmax FROM replica_meta)
      OR NEW.maxy > (SELECT ymax FROM replica_meta)
    BEGIN
        SELECT RAISE(ABORT, '{EXTENT_VIOLATION_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS features_extent_update
    BEFORE UPDATE OF geometry, minx, miny, maxx, maxy ON features
    WHEN NEW.minx < (SELECT xmin FROM replica_meta)
      OR NEW.miny < (SELECT ymin FROM replica_meta)
      OR NEW.maxx > (SELECT xmax FROM replica_meta)
      OR NEW.maxy > (SELECT ymax FROM replica_meta)
    BEGIN
        SELECT RAISE(ABORT, '{EXTENT_VIOLATION_MESSAGE}');
    END
    """,
]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def connect(path: Path, read_only: bool = False) -> sqlite3.Connection:
    """
    Open a SQLite connection to a replica file.

    Connections may be created on the job worker thread and used from the
    caller thread afterwards, hence check_same_thread=False.
    """
    if read_only:
        conn = sqlite3.connect(
            f"{Path(path).resolve().as_uri()}?mode=ro",
            uri=True,
            check_same_thread=False,
        )
    else:
        conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def is_extent_violation(error: sqlite3.IntegrityError) -> bool:
    return EXTENT_VIOLATION_MESSAGE in str(error)


def feature_row(feature: FeatureRecord) -> Tuple:
    """Column values for inserting/updating a feature row."""
    minx, miny, maxx, maxy = feature.geometry.bounds
    return (
        feature.layer_id,
        feature.feature_id,
        wkb.dumps(feature.geometry),
        minx, miny, maxx, maxy,
        json.dumps(feature.attributes) if feature.attributes else None,
    )


def row_to_feature(row: sqlite3.Row) -> FeatureRecord:
    return FeatureRecord(
        feature_id=row["feature_id"],
        layer_id=row["layer_id"],
        geometry=wkb.loads(bytes(row["geometry"])),
        attributes=json.loads(row["attributes"]) if row["attributes"] else {},
    )


def upsert_features(conn: sqlite3.Connection, features: Iterable[FeatureRecord]) -> int:
    """Insert or replace feature rows; the caller owns the transaction."""
    count = 0
    for feature in features:
        conn.execute("""
            INSERT INTO features (
                layer_id, feature_id, geometry, minx, miny, maxx, maxy, attributes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (layer_id, feature_id) DO UPDATE SET
                geometry = excluded.geometry,
                minx = excluded.minx,
                miny = excluded.miny,
                maxx = excluded.maxx,
                maxy = excluded.maxy,
                attributes = excluded.attributes
        """, feature_row(feature))
        count += 1
    return count


def create_replica_file(
    path: Path,
    replica_id: str,
    extent: Extent,
    layers: List[Tuple[LayerInfo, int]],
    features: Iterable[FeatureRecord],
    is_delta: bool = False,
    source_replica_id: Optional[str] = None,
    pending_edits: Optional[Iterable[Tuple[int, int]]] = None,
) -> int:
    """
    Write a new replica file, replacing any file already at `path`.

    Args:
        path: Destination file
        replica_id: Identifier of the replica
        extent: Spatial bound enforced by the file's triggers
        layers: (layer description, sync generation) pairs
        features: Features to store; all must lie within `extent`
        is_delta: Mark the file as a delta replica
        source_replica_id: Replica a delta was exported from
        pending_edits: (layer_id, feature_id) pairs recorded as local edits

    Returns:
        Number of features written

    Raises:
        sqlite3.IntegrityError if a feature falls outside the extent
    """
    path = Path(path)
    if path.exists():
        path.unlink()

    conn = connect(path)
    try:
        with conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.execute(f"PRAGMA user_version = {FORMAT_VERSION}")
            conn.execute("""
                INSERT INTO replica_meta (
                    replica_id, xmin, ymin, xmax, ymax,
                    is_delta, source_replica_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                replica_id,
                extent.xmin, extent.ymin, extent.xmax, extent.ymax,
                1 if is_delta else 0,
                source_replica_id,
                utc_now(),
            ))
            for layer, generation in layers:
                conn.execute("""
                    INSERT INTO layers (layer_id, name, geometry_kind, sync_generation)
                    VALUES (?, ?, ?, ?)
                """, (layer.layer_id, layer.name, layer.geometry_kind.value, generation))
            count = upsert_features(conn, features)
            for layer_id, feature_id in pending_edits or []:
                conn.execute("""
                    INSERT OR REPLACE INTO local_edits (layer_id, feature_id, edited_at)
                    VALUES (?, ?, ?)
                """, (layer_id, feature_id, utc_now()))
    finally:
        conn.close()

    logger.debug(f"Wrote replica file {path} ({count} features, delta={is_delta})")
    return count
