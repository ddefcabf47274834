"""
Edit buffer for committing local feature edits to the active replica.
"""

import logging
from enum import Enum
from typing import Optional

from shapely.geometry.base import BaseGeometry

from ..core.exceptions import ExtentViolation, ReplicaClosed, ReplicaError
from ..core.models import FeatureRecord
from ..storage.replica_store import ReplicaStore

logger = logging.getLogger(__name__)


class CommitResult(str, Enum):
    """Outcome of committing a single feature edit."""
    SUCCESS = "success"
    EXTENT_VIOLATION = "extent_violation"


class EditBuffer:
    """
    Applies in-flight geometry edits to the active replica's tables.

    Each commit is a single-feature transaction; there is no multi-feature
    atomicity. Retry decisions belong to the caller.
    """

    def __init__(self, store: ReplicaStore):
        self.store = store
        self.last_error: Optional[ExtentViolation] = None

    def commit(self, feature: FeatureRecord, new_geometry: BaseGeometry) -> CommitResult:
        """
        Store `new_geometry` for `feature`.

        On success the feature object's geometry is updated in place. On an
        extent violation the feature and its stored row are left unchanged.

        Raises:
            ReplicaClosed: The feature's replica is not the active replica
            ReplicaError: The feature has no table or the replica is read-only
        """
        table = feature.table
        if table is None:
            raise ReplicaError(f"Feature {feature.feature_id} is not bound to a table")

        active = self.store.active
        if active is None or table.replica is not active or active.closed:
            raise ReplicaClosed(
                f"Feature {feature.feature_id} belongs to a replica that is no longer active"
            )

        try:
            table.update_geometry(feature.feature_id, new_geometry)
        except ExtentViolation as e:
            self.last_error = e
            logger.warning(
                f"Rejected edit of feature {feature.feature_id} in layer "
                f"{table.layer_id}: outside replica extent"
            )
            return CommitResult.EXTENT_VIOLATION

        feature.geometry = new_geometry
        self.last_error = None
        logger.debug(f"Committed feature {feature.feature_id} in layer {table.layer_id}")
        return CommitResult.SUCCESS
