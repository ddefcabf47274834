"""
Remote dataset client interface.

The remote feature service is an external collaborator: it describes its
layers and performs generate, sync and delta export as long-running
operations that report through a JobReporter.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, List

from .jobs import JobReporter
from .models import (
    DeltaArtifact,
    Extent,
    LayerInfo,
    ReplicaArtifact,
    SyncOutcome,
    SyncParameters,
)

if TYPE_CHECKING:
    from ..storage.replica import Replica


class RemoteDatasetClient(ABC):
    """
    Abstract base class for remote feature datasets.

    Implementations run on the JobRunner worker thread and must report
    progress through the supplied reporter. Failures are signalled by
    raising; partial sync failures are returned in the SyncOutcome.
    """

    @abstractmethod
    def describe_layers(self) -> List[LayerInfo]:
        """Return the dataset's layers with their geometry kinds."""
        pass

    @abstractmethod
    def generate_replica(
        self,
        extent: Extent,
        destination_path: Path,
        reporter: JobReporter,
    ) -> ReplicaArtifact:
        """
        Materialize a replica bounded by `extent` at `destination_path`.

        Raises:
            Exception if the remote job fails
        """
        pass

    @abstractmethod
    def sync_replica(
        self,
        replica: "Replica",
        parameters: SyncParameters,
        reporter: JobReporter,
    ) -> SyncOutcome:
        """
        Synchronize the replica's layers named in `parameters`.

        Per-layer failures are reported in the outcome and the job's
        diagnostic messages rather than raised.
        """
        pass

    @abstractmethod
    def export_delta(
        self,
        replica: "Replica",
        destination_path: Path,
        reporter: JobReporter,
    ) -> DeltaArtifact:
        """
        Write a delta replica holding only features changed since the last
        successful sync.
        """
        pass

    def get_name(self) -> str:
        """Return the client name/identifier."""
        return type(self).__name__

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
