"""
Unit tests for the edit buffer.
"""

import pytest
from shapely.geometry import Point

from replica.core.exceptions import ReplicaClosed, ReplicaError
from replica.core.models import FeatureRecord
from replica.editing import CommitResult, EditBuffer


class TestEditBuffer:
    """Tests for committing feature edits to the active replica."""

    def test_commit_inside_extent(self, store, generated_replica):
        buffer = EditBuffer(store)
        feature = generated_replica.get_table(0).get_feature(1)

        result = buffer.commit(feature, Point(12, 10))

        assert result == CommitResult.SUCCESS
        assert feature.geometry.equals(Point(12, 10))
        stored = generated_replica.get_table(0).get_feature(1)
        assert stored.geometry.equals(Point(12, 10))
        assert [f.feature_id for f in generated_replica.pending_edits(0)] == [1]

    def test_commit_outside_extent_leaves_feature_unchanged(self, store, generated_replica):
        buffer = EditBuffer(store)
        feature = generated_replica.get_table(0).get_feature(1)

        result = buffer.commit(feature, Point(150, 10))

        assert result == CommitResult.EXTENT_VIOLATION
        assert feature.geometry.equals(Point(10, 10))
        assert generated_replica.get_table(0).get_feature(1).geometry.equals(Point(10, 10))
        assert buffer.last_error is not None
        assert buffer.last_error.feature_id == 1
        assert generated_replica.pending_edit_count() == 0

    def test_success_clears_last_error(self, store, generated_replica):
        buffer = EditBuffer(store)
        feature = generated_replica.get_table(0).get_feature(1)

        buffer.commit(feature, Point(150, 10))
        buffer.commit(feature, Point(15, 15))

        assert buffer.last_error is None

    def test_unbound_feature(self, store, generated_replica):
        buffer = EditBuffer(store)

        with pytest.raises(ReplicaError):
            buffer.commit(FeatureRecord(1, 0, Point(10, 10)), Point(12, 12))

    def test_feature_of_superseded_replica(self, store, generated_replica, extent, tmp_path):
        buffer = EditBuffer(store)
        feature = generated_replica.get_table(0).get_feature(1)

        replacement = store.generate(extent, tmp_path / "other.geodatabase")
        store.activate(replacement)

        with pytest.raises(ReplicaClosed):
            buffer.commit(feature, Point(12, 12))
