"""
Unit tests for the in-process feature service.

These tests verify generate, sync and delta export against replica files
written to a temporary directory.
"""

import pytest
from shapely.geometry import Point

from replica.core.exceptions import GenerationFailed
from replica.core.jobs import JobReporter, MessageSeverity
from replica.core.models import (
    ConflictPolicy,
    Extent,
    GeometryKind,
    SyncDirection,
    SyncLayerOption,
    SyncParameters,
)
from replica.remote import LocalFeatureService, SYNTHETIC_LAYERS


def all_layers(replica, **kwargs) -> SyncParameters:
    return SyncParameters(
        layer_options=[SyncLayerOption(t.layer_id) for t in replica.tables],
        **kwargs,
    )


class TestServiceDataset:
    """Tests for the server-side dataset helpers."""

    def test_describe_layers(self, service):
        layers = service.describe_layers()

        assert layers == SYNTHETIC_LAYERS
        assert layers[0].geometry_kind == GeometryKind.POINT

    def test_changes_bump_generation(self, service):
        before = service.generation

        service.add_feature(0, 10, Point(5, 5))
        service.update_feature(0, 10, geometry=Point(6, 6))
        service.delete_feature(0, 10)

        assert service.generation == before + 3
        assert service.get_feature(0, 10) is None
        assert [f.feature_id for f in service.features(0)] == [1, 2, 3]

    def test_unknown_layer(self, service):
        with pytest.raises(KeyError):
            service.add_feature(99, 1, Point(0, 0))


class TestGenerateReplica:
    """Tests for generate_replica."""

    def test_generate_filters_by_extent(self, service, tmp_path, reporter):
        artifact = service.generate_replica(
            Extent(0, 0, 100, 100), tmp_path / "r.geodatabase", reporter
        )

        assert artifact.layer_count == 3
        assert artifact.feature_count == 4
        assert service.request_history == ["generate"]

    def test_generate_failure(self, tmp_path, reporter):
        service = LocalFeatureService(fail_generate="Quota exceeded")

        with pytest.raises(GenerationFailed):
            service.generate_replica(Extent(0, 0, 1, 1), tmp_path / "r.geodatabase", reporter)

        assert reporter.messages[0].severity == MessageSeverity.ERROR
        assert not (tmp_path / "r.geodatabase").exists()


class TestSyncReplica:
    """Tests for sync_replica."""

    def test_push_local_edit(self, service, generated_replica, reporter):
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        assert outcome.succeeded
        assert outcome.get(0).pushed == 1
        assert service.get_feature(0, 1).geometry.equals(Point(12, 10))
        assert generated_replica.pending_edit_count() == 0

    def test_pull_remote_changes(self, service, generated_replica, reporter):
        service.update_feature(0, 2, geometry=Point(41, 41))
        service.add_feature(0, 7, Point(70, 70), {"description": "New"})

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        table = generated_replica.get_table(0)
        assert outcome.get(0).pulled == 2
        assert table.get_feature(2).geometry.equals(Point(41, 41))
        assert table.get_feature(7).attributes == {"description": "New"}
        assert table.feature_count == 3

    def test_remote_delete_and_move_out_of_extent(self, service, generated_replica, reporter):
        service.delete_feature(0, 1)
        service.update_feature(0, 2, geometry=Point(140, 140))

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        assert outcome.get(0).deleted == 2
        assert generated_replica.get_table(0).features() == []

    def test_second_sync_pulls_nothing(self, service, generated_replica, reporter):
        service.update_feature(0, 2, geometry=Point(41, 41))
        service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), JobReporter())

        assert all(r.pulled == 0 and r.pushed == 0 for r in outcome.layer_results)

    def test_layers_without_option_are_skipped(self, service, generated_replica, reporter):
        service.update_feature(1, 1, attributes={"description": "Widened"})

        outcome = service.sync_replica(
            generated_replica,
            SyncParameters(layer_options=[SyncLayerOption(0)]),
            reporter,
        )

        assert [r.layer_id for r in outcome.layer_results] == [0]
        assert generated_replica.get_table(1).get_feature(1).attributes == {"description": "Dozer line"}

    def test_partial_failure_without_rollback(self, generated_replica, service, reporter):
        service.fail_layers = {2}
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        assert not outcome.succeeded
        assert [r.layer_id for r in outcome.failed_layers] == [2]
        assert outcome.get(0).succeeded
        assert service.get_feature(0, 1).geometry.equals(Point(12, 10))
        assert any(
            "Layer 2" in m.message and m.severity == MessageSeverity.ERROR
            for m in reporter.messages
        )

    def test_partial_failure_with_rollback(self, generated_replica, service, reporter):
        service.fail_layers = {2}
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))
        generation = generated_replica.layer_generation(0)

        outcome = service.sync_replica(
            generated_replica,
            all_layers(generated_replica, rollback_on_failure=True),
            reporter,
        )

        assert outcome.failed_layers == outcome.layer_results
        assert outcome.get(0).error == "rolled back"
        assert service.get_feature(0, 1).geometry.equals(Point(10, 10))
        assert generated_replica.pending_edit_count() == 1
        assert generated_replica.layer_generation(0) == generation

    def test_conflict_prefer_local(self, service, generated_replica, reporter):
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))
        service.update_feature(0, 1, geometry=Point(8, 8))

        outcome = service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        assert outcome.get(0).conflicts == 1
        assert service.get_feature(0, 1).geometry.equals(Point(12, 10))
        assert generated_replica.get_table(0).get_feature(1).geometry.equals(Point(12, 10))

    def test_conflict_prefer_remote(self, service, generated_replica, reporter):
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))
        service.update_feature(0, 1, geometry=Point(8, 8))

        outcome = service.sync_replica(
            generated_replica,
            all_layers(generated_replica, conflict_policy=ConflictPolicy.PREFER_REMOTE),
            reporter,
        )

        assert outcome.get(0).conflicts == 1
        assert outcome.get(0).pushed == 0
        assert service.get_feature(0, 1).geometry.equals(Point(8, 8))
        assert generated_replica.get_table(0).get_feature(1).geometry.equals(Point(8, 8))
        assert generated_replica.pending_edit_count() == 0

    def test_upload_only(self, service, generated_replica, reporter):
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))
        service.update_feature(0, 2, geometry=Point(41, 41))
        generation = generated_replica.layer_generation(0)

        outcome = service.sync_replica(
            generated_replica,
            all_layers(generated_replica, direction=SyncDirection.UPLOAD),
            reporter,
        )

        assert outcome.get(0).pushed == 1
        assert outcome.get(0).pulled == 0
        assert generated_replica.get_table(0).get_feature(2).geometry.equals(Point(40, 40))
        assert generated_replica.layer_generation(0) == generation

    def test_download_only_keeps_local_edits(self, service, generated_replica, reporter):
        generated_replica.get_table(0).update_geometry(1, Point(12, 10))
        service.update_feature(0, 2, geometry=Point(41, 41))

        outcome = service.sync_replica(
            generated_replica,
            all_layers(generated_replica, direction=SyncDirection.DOWNLOAD),
            reporter,
        )

        assert outcome.get(0).pushed == 0
        assert outcome.get(0).pulled == 1
        assert service.get_feature(0, 1).geometry.equals(Point(10, 10))
        assert generated_replica.pending_edit_count() == 1

    def test_progress_reaches_hundred(self, service, generated_replica, reporter):
        seen = []
        reporter.add_listener(seen.append)

        service.sync_replica(generated_replica, all_layers(generated_replica), reporter)

        assert seen == sorted(seen)
        assert seen[-1] == 100


class TestExportDelta:
    """Tests for export_delta."""

    def test_delta_contains_pending_edits(self, service, generated_replica, tmp_path, reporter):
        generated_replica.get_table(0).update_geometry(2, Point(45, 45))

        artifact = service.export_delta(generated_replica, tmp_path / "d.geodatabase", reporter)

        assert artifact.feature_count == 1
        assert artifact.path.is_file()

    def test_delta_after_sync_is_empty(self, service, generated_replica, tmp_path, reporter):
        generated_replica.get_table(0).update_geometry(2, Point(45, 45))
        service.sync_replica(generated_replica, all_layers(generated_replica), JobReporter())

        artifact = service.export_delta(generated_replica, tmp_path / "d.geodatabase", reporter)

        assert artifact.feature_count == 0
