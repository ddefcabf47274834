"""
Replica handle: an opened replica file and its feature tables.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import CorruptReplica, ReplicaClosed, ReplicaNotFound
from ..core.models import Extent, FeatureRecord, GeometryKind
from .feature_table import FeatureTable
from .schema import connect, row_to_feature, upsert_features

logger = logging.getLogger(__name__)


class Replica:
    """
    A local, on-disk copy of a subset of remote feature tables.

    A delta replica is structurally identical but holds only features
    changed locally since the last successful sync; it is opened read-only.
    Use ReplicaStore to open, close and swap replicas.
    """

    def __init__(self, path: Path, connection: sqlite3.Connection, read_only: bool = False):
        self.path = Path(path)
        self.read_only = read_only
        self._conn: Optional[sqlite3.Connection] = connection
        self._tables: Dict[int, FeatureTable] = {}

        meta = self._read_meta()
        self.replica_id: str = meta["replica_id"]
        self.extent = Extent(meta["xmin"], meta["ymin"], meta["xmax"], meta["ymax"])
        self.is_delta = bool(meta["is_delta"])
        self.source_replica_id: Optional[str] = meta["source_replica_id"]
        self.created_at = datetime.fromisoformat(meta["created_at"])

        for row in connection.execute(
            "SELECT layer_id, name, geometry_kind FROM layers ORDER BY layer_id"
        ):
            self._tables[row["layer_id"]] = FeatureTable(
                self, row["layer_id"], row["name"], GeometryKind(row["geometry_kind"])
            )

    @classmethod
    def open(cls, path: Path, read_only: bool = False) -> "Replica":
        """
        Open a replica file.

        Raises:
            ReplicaNotFound: The file does not exist
            CorruptReplica: The file is not a replica database
        """
        path = Path(path)
        if not path.is_file():
            raise ReplicaNotFound(f"Replica file not found: {path}")

        try:
            conn = connect(path, read_only=read_only)
        except sqlite3.Error as e:
            raise CorruptReplica(f"Cannot open replica {path}: {e}") from e

        try:
            replica = cls(path, conn, read_only=read_only)
        except (sqlite3.DatabaseError, KeyError, TypeError, ValueError) as e:
            conn.close()
            raise CorruptReplica(f"Replica {path} cannot be parsed: {e}") from e

        logger.debug(f"Opened replica {path} (delta={replica.is_delta}, read_only={read_only})")
        return replica

    def _read_meta(self) -> sqlite3.Row:
        row = self._conn.execute("SELECT * FROM replica_meta").fetchone()
        if row is None:
            raise ValueError("replica_meta is empty")
        return row

    def __repr__(self) -> str:
        return f"Replica(path={str(self.path)!r}, delta={self.is_delta}, closed={self.closed})"

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _check_open(self) -> None:
        if self._conn is None:
            raise ReplicaClosed(f"Replica {self.path} is closed")

    @property
    def connection(self) -> sqlite3.Connection:
        self._check_open()
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed replica {self.path}")

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    @property
    def tables(self) -> List[FeatureTable]:
        self._check_open()
        return list(self._tables.values())

    @property
    def operational_tables(self) -> List[FeatureTable]:
        """Tables exposed for editing: point tables only."""
        return [t for t in self.tables if t.geometry_kind == GeometryKind.POINT]

    def get_table(self, layer_id: int) -> FeatureTable:
        self._check_open()
        try:
            return self._tables[layer_id]
        except KeyError:
            raise KeyError(f"Replica {self.path} has no layer {layer_id}") from None

    def load_tables(self) -> List[FeatureTable]:
        """Load every feature table."""
        return [table.load() for table in self.tables]

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def layer_generation(self, layer_id: int) -> int:
        row = self.connection.execute(
            "SELECT sync_generation FROM layers WHERE layer_id = ?", (layer_id,)
        ).fetchone()
        if row is None:
            raise KeyError(f"Replica {self.path} has no layer {layer_id}")
        return row["sync_generation"]

    def pending_edits(self, layer_id: Optional[int] = None) -> List[FeatureRecord]:
        """Features with local edits not yet synced, optionally for one layer."""
        sql = """
            SELECT f.* FROM features f
            JOIN local_edits e
              ON e.layer_id = f.layer_id AND e.feature_id = f.feature_id
        """
        params: tuple = ()
        if layer_id is not None:
            sql += " WHERE f.layer_id = ?"
            params = (layer_id,)
        sql += " ORDER BY f.layer_id, f.feature_id"
        features = []
        for row in self.connection.execute(sql, params):
            feature = row_to_feature(row)
            feature.table = self._tables.get(feature.layer_id)
            features.append(feature)
        return features

    def pending_edit_count(self) -> int:
        return self.connection.execute("SELECT COUNT(*) AS n FROM local_edits").fetchone()["n"]

    def apply_layer_sync(
        self,
        layer_id: int,
        upserts: Iterable[FeatureRecord] = (),
        deletes: Iterable[int] = (),
        cleared_edits: Iterable[int] = (),
        generation: Optional[int] = None,
    ) -> None:
        """
        Apply one layer's sync result in a single transaction.

        Args:
            layer_id: Layer being synced
            upserts: Remote features to write locally
            deletes: Feature ids to remove locally
            cleared_edits: Feature ids whose local edits are now synced
            generation: New sync generation for the layer (None keeps it)
        """
        conn = self.connection
        with conn:
            upsert_features(conn, upserts)
            for feature_id in deletes:
                conn.execute(
                    "DELETE FROM features WHERE layer_id = ? AND feature_id = ?",
                    (layer_id, feature_id),
                )
                conn.execute(
                    "DELETE FROM local_edits WHERE layer_id = ? AND feature_id = ?",
                    (layer_id, feature_id),
                )
            for feature_id in cleared_edits:
                conn.execute(
                    "DELETE FROM local_edits WHERE layer_id = ? AND feature_id = ?",
                    (layer_id, feature_id),
                )
            if generation is not None:
                conn.execute(
                    "UPDATE layers SET sync_generation = ? WHERE layer_id = ?",
                    (generation, layer_id),
                )
        table = self._tables.get(layer_id)
        if table is not None and table.loaded:
            table.load()
