"""
Replica store: owns replica files and the currently active replica.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from ..core.exceptions import (
    CorruptReplica,
    ExportFailed,
    GenerationFailed,
    ReplicaError,
    ReplicaNotFound,
)
from ..core.jobs import JobReporter
from ..core.models import Extent
from ..core.remote_client import RemoteDatasetClient
from .replica import Replica

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".partial"


class ReplicaStore:
    """
    Owns replica files on durable storage.

    Generated and exported files are first written to a staging file next
    to the destination and renamed into place only after the remote job
    succeeds, so a failed job never leaves a partially populated replica
    at the destination path.

    At most one replica is active; `swap` replaces it atomically.
    """

    def __init__(self, remote: RemoteDatasetClient):
        """
        Initialize the store.

        Args:
            remote: Remote dataset used to generate replicas and export deltas
        """
        self.remote = remote
        self._active: Optional[Replica] = None
        self._lock = threading.RLock()

    @property
    def active(self) -> Optional[Replica]:
        return self._active

    @staticmethod
    def _staging_path(destination: Path) -> Path:
        return destination.with_name(destination.name + STAGING_SUFFIX)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def generate(
        self,
        extent: Extent,
        destination_path: Path,
        reporter: Optional[JobReporter] = None,
    ) -> Replica:
        """
        Generate a replica bounded by `extent` at `destination_path`.

        The returned replica has every table loaded; its operational tables
        are the point tables.

        Raises:
            GenerationFailed: The remote job failed, the destination directory
                cannot be created, or the result is not a replica of `extent`
        """
        reporter = reporter or JobReporter()
        destination = Path(destination_path)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GenerationFailed(
                f"Cannot create replica directory {destination.parent}: {e}"
            ) from e

        staging = self._staging_path(destination)
        self._discard(staging)

        logger.info(f"Generating replica at {destination} for extent {extent.to_dict()}")
        try:
            artifact = self.remote.generate_replica(extent, staging, reporter)
            os.replace(artifact.path, destination)
        except GenerationFailed:
            raise
        except Exception as e:
            raise GenerationFailed(str(e) or type(e).__name__) from e
        finally:
            self._discard(staging)

        try:
            replica = self.open(destination)
        except (ReplicaNotFound, CorruptReplica) as e:
            raise GenerationFailed(f"Generated replica is unusable: {e}") from e

        if replica.extent != extent:
            replica.close()
            raise GenerationFailed(
                f"Generated replica extent {replica.extent.to_dict()} "
                f"does not match requested extent {extent.to_dict()}"
            )

        logger.info(
            f"Generated replica {replica.replica_id}: {len(replica.tables)} tables, "
            f"{len(replica.operational_tables)} operational"
        )
        return replica

    def export_delta(
        self,
        replica: Replica,
        destination_path: Path,
        reporter: Optional[JobReporter] = None,
    ) -> Replica:
        """
        Export the replica's unsynced changes and open the delta read-only.

        The source replica is left open; the caller swaps it out.

        Raises:
            ExportFailed: The remote export failed or produced an unusable file
        """
        reporter = reporter or JobReporter()
        destination = Path(destination_path)
        destination.parent.mkdir(parents=True, exist_ok=True)

        staging = self._staging_path(destination)
        self._discard(staging)

        logger.info(f"Exporting delta of {replica.path} to {destination}")
        try:
            artifact = self.remote.export_delta(replica, staging, reporter)
            os.replace(artifact.path, destination)
        except ExportFailed:
            raise
        except Exception as e:
            raise ExportFailed(str(e) or type(e).__name__) from e
        finally:
            self._discard(staging)

        try:
            return self.open(destination, read_only=True)
        except (ReplicaNotFound, CorruptReplica) as e:
            raise ExportFailed(f"Exported delta is unusable: {e}") from e

    def open(self, path: Path, read_only: bool = False) -> Replica:
        """
        Open a previously generated or exported replica and load its tables.

        Raises:
            ReplicaNotFound: The file is missing
            CorruptReplica: The file cannot be parsed
        """
        replica = Replica.open(path, read_only=read_only)
        try:
            replica.load_tables()
        except Exception as e:
            replica.close()
            raise CorruptReplica(f"Cannot load tables of {path}: {e}") from e
        return replica

    def close(self, replica: Replica) -> None:
        """Release the replica; later use of the handle raises ReplicaClosed."""
        with self._lock:
            if replica is self._active:
                self._active = None
            replica.close()

    def swap(self, old: Optional[Replica], new: Replica) -> None:
        """
        Make `new` the active replica and close `old`.

        `new` must already be open and loaded, so the swap itself cannot
        fail half-way.
        """
        if new.closed:
            raise ReplicaError(f"Cannot activate closed replica {new.path}")
        with self._lock:
            self._active = new
            if old is not None and old is not new:
                old.close()
        logger.info(f"Active replica is now {new.path} (delta={new.is_delta})")

    def activate(self, replica: Replica) -> None:
        """Swap `replica` in for whatever is currently active."""
        with self._lock:
            self.swap(self._active, replica)

    def close_all(self) -> None:
        with self._lock:
            if self._active is not None:
                self.close(self._active)
