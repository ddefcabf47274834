"""
Core abstractions for the replica framework.
"""

from .models import (
    LifecycleState, GeometryKind, Extent, LayerInfo, FeatureRecord,
    SyncDirection, ConflictPolicy, SyncLayerOption, SyncParameters,
    LayerSyncResult, SyncOutcome, ReplicaArtifact, DeltaArtifact,
)
from .jobs import JobKind, JobStatus, JobMessage, JobResult, JobReporter, MessageSeverity
from .exceptions import (
    ReplicaError, GenerationFailed, SyncFailed, ExportFailed, ExtentViolation,
    ReplicaNotFound, CorruptReplica, ReplicaClosed, IllegalTransition,
    ReplicaConfigError,
)
from .remote_client import RemoteDatasetClient

__all__ = [
    # Models
    "LifecycleState",
    "GeometryKind",
    "Extent",
    "LayerInfo",
    "FeatureRecord",
    "SyncDirection",
    "ConflictPolicy",
    "SyncLayerOption",
    "SyncParameters",
    "LayerSyncResult",
    "SyncOutcome",
    "ReplicaArtifact",
    "DeltaArtifact",
    # Jobs
    "JobKind",
    "JobStatus",
    "JobMessage",
    "JobResult",
    "JobReporter",
    "MessageSeverity",
    # Exceptions
    "ReplicaError",
    "GenerationFailed",
    "SyncFailed",
    "ExportFailed",
    "ExtentViolation",
    "ReplicaNotFound",
    "CorruptReplica",
    "ReplicaClosed",
    "IllegalTransition",
    "ReplicaConfigError",
    # Interfaces
    "RemoteDatasetClient",
]
