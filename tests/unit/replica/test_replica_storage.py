"""
Unit tests for the replica file format, Replica handles and feature tables.
"""

import sqlite3

import pytest
from shapely.geometry import LineString, Point

from replica.core.exceptions import (
    CorruptReplica,
    ExtentViolation,
    ReplicaClosed,
    ReplicaError,
    ReplicaNotFound,
)
from replica.core.models import Extent, FeatureRecord, GeometryKind, LayerInfo
from replica.storage import Replica, create_replica_file


LAYERS = [
    (LayerInfo(0, "Points", GeometryKind.POINT), 3),
    (LayerInfo(1, "Lines", GeometryKind.POLYLINE), 3),
]

EXTENT = Extent(0, 0, 100, 100)


@pytest.fixture
def replica_path(tmp_path):
    path = tmp_path / "replica.geodatabase"
    create_replica_file(
        path,
        replica_id="r-1",
        extent=EXTENT,
        layers=LAYERS,
        features=[
            FeatureRecord(1, 0, Point(10, 10), {"name": "a"}),
            FeatureRecord(2, 0, Point(20, 20)),
        ],
    )
    return path


@pytest.fixture
def replica(replica_path):
    replica = Replica.open(replica_path)
    replica.load_tables()
    yield replica
    replica.close()


class TestCreateReplicaFile:
    """Tests for writing replica files."""

    def test_returns_feature_count(self, tmp_path):
        count = create_replica_file(
            tmp_path / "r.geodatabase", "r", EXTENT, LAYERS,
            [FeatureRecord(1, 0, Point(1, 1))],
        )

        assert count == 1

    def test_rejects_feature_outside_extent(self, tmp_path):
        with pytest.raises(sqlite3.IntegrityError):
            create_replica_file(
                tmp_path / "r.geodatabase", "r", EXTENT, LAYERS,
                [FeatureRecord(1, 0, Point(150, 10))],
            )

    def test_replaces_existing_file(self, replica_path):
        create_replica_file(replica_path, "r-2", EXTENT, LAYERS, [])

        replica = Replica.open(replica_path)
        try:
            assert replica.replica_id == "r-2"
            assert replica.get_table(0).load().feature_count == 0
        finally:
            replica.close()


class TestReplicaOpen:
    """Tests for opening replica files."""

    def test_open_reads_metadata(self, replica):
        assert replica.replica_id == "r-1"
        assert replica.extent == EXTENT
        assert replica.is_delta is False
        assert replica.source_replica_id is None

    def test_tables_and_kinds(self, replica):
        assert [t.layer_id for t in replica.tables] == [0, 1]
        assert replica.get_table(1).geometry_kind == GeometryKind.POLYLINE
        assert [t.layer_id for t in replica.operational_tables] == [0]

    def test_load_tables_counts_features(self, replica):
        assert replica.get_table(0).feature_count == 2
        assert replica.get_table(1).feature_count == 0
        assert all(t.loaded for t in replica.tables)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ReplicaNotFound):
            Replica.open(tmp_path / "missing.geodatabase")

    def test_not_a_database(self, tmp_path):
        path = tmp_path / "garbage.geodatabase"
        path.write_bytes(b"this is not sqlite" * 100)

        with pytest.raises(CorruptReplica):
            Replica.open(path)

    def test_database_without_replica_schema(self, tmp_path):
        path = tmp_path / "other.geodatabase"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE unrelated (x INTEGER)")
        conn.commit()
        conn.close()

        with pytest.raises(CorruptReplica):
            Replica.open(path)

    def test_unknown_layer(self, replica):
        with pytest.raises(KeyError):
            replica.get_table(42)

    def test_use_after_close(self, replica_path):
        replica = Replica.open(replica_path)
        replica.close()

        assert replica.closed
        with pytest.raises(ReplicaClosed):
            replica.tables
        with pytest.raises(ReplicaClosed):
            replica.pending_edit_count()


class TestFeatureTable:
    """Tests for feature queries and geometry updates."""

    def test_features_are_bound_to_table(self, replica):
        table = replica.get_table(0)
        features = table.features()

        assert [f.feature_id for f in features] == [1, 2]
        assert all(f.table is table for f in features)
        assert features[0].attributes == {"name": "a"}

    def test_query_by_envelope(self, replica):
        table = replica.get_table(0)

        matches = table.query(Extent.around(Point(11, 11), 2))

        assert [f.feature_id for f in matches] == [1]

    def test_query_misses(self, replica):
        assert replica.get_table(0).query(Extent.around(Point(60, 60), 2)) == []

    def test_update_geometry_records_edit(self, replica):
        table = replica.get_table(0)

        table.update_geometry(1, Point(30, 30))

        assert table.get_feature(1).geometry.equals(Point(30, 30))
        assert [f.feature_id for f in replica.pending_edits()] == [1]
        assert replica.pending_edit_count() == 1

    def test_update_outside_extent_is_rejected(self, replica):
        table = replica.get_table(0)

        with pytest.raises(ExtentViolation) as exc_info:
            table.update_geometry(1, Point(101, 50))

        assert exc_info.value.feature_id == 1
        assert exc_info.value.layer_id == 0
        assert table.get_feature(1).geometry.equals(Point(10, 10))
        assert replica.pending_edit_count() == 0

    def test_update_on_extent_boundary_is_accepted(self, replica):
        table = replica.get_table(0)

        table.update_geometry(2, Point(100, 0))

        assert table.get_feature(2).geometry.equals(Point(100, 0))

    def test_update_with_wrong_geometry_kind(self, replica):
        table = replica.get_table(0)

        with pytest.raises(ReplicaError, match="point"):
            table.update_geometry(1, LineString([(1, 1), (2, 2)]))

        assert table.get_feature(1).geometry.equals(Point(10, 10))
        assert replica.pending_edit_count() == 0

    def test_update_missing_feature(self, replica):
        with pytest.raises(ReplicaError):
            replica.get_table(0).update_geometry(99, Point(5, 5))

    def test_update_read_only(self, replica_path):
        replica = Replica.open(replica_path, read_only=True)
        try:
            with pytest.raises(ReplicaError):
                replica.get_table(0).update_geometry(1, Point(5, 5))
        finally:
            replica.close()


class TestApplyLayerSync:
    """Tests for applying a layer's sync result."""

    def test_applies_changes_in_one_transaction(self, replica):
        replica.get_table(0).update_geometry(1, Point(30, 30))

        replica.apply_layer_sync(
            0,
            upserts=[FeatureRecord(3, 0, Point(50, 50))],
            deletes=[2],
            cleared_edits=[1],
            generation=9,
        )

        table = replica.get_table(0)
        assert [f.feature_id for f in table.features()] == [1, 3]
        assert table.feature_count == 2
        assert replica.pending_edit_count() == 0
        assert replica.layer_generation(0) == 9

    def test_failed_apply_changes_nothing(self, replica):
        with pytest.raises(sqlite3.IntegrityError):
            replica.apply_layer_sync(
                0,
                upserts=[FeatureRecord(3, 0, Point(500, 50))],
                deletes=[2],
                generation=9,
            )

        assert [f.feature_id for f in replica.get_table(0).features()] == [1, 2]
        assert replica.layer_generation(0) == 3

    def test_generation_kept_when_none(self, replica):
        replica.apply_layer_sync(0, generation=None)

        assert replica.layer_generation(0) == 3
