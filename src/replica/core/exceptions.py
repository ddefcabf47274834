"""
Custom exceptions for the replica framework.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import SyncOutcome


class ReplicaError(Exception):
    """Base exception for all replica errors."""
    pass


class GenerationFailed(ReplicaError):
    """
    Generating a replica failed.

    Raised when:
    - The remote generate job fails
    - The destination directory is missing and cannot be created
    - The generated file cannot be moved into place
    """
    pass


class SyncFailed(ReplicaError):
    """
    One or more layers failed to sync.

    Layers that synced successfully are not rolled back; the per-layer
    results are available on `outcome`.
    """

    def __init__(self, message: str, outcome: Optional["SyncOutcome"] = None):
        super().__init__(message)
        self.outcome = outcome


class ExportFailed(ReplicaError):
    """Exporting a delta replica failed."""
    pass


class ExtentViolation(ReplicaError):
    """A feature's new geometry falls outside the replica's extent."""

    def __init__(self, message: str, feature_id: Optional[int] = None, layer_id: Optional[int] = None):
        super().__init__(message)
        self.feature_id = feature_id
        self.layer_id = layer_id


class ReplicaNotFound(ReplicaError):
    """The replica file does not exist."""
    pass


class CorruptReplica(ReplicaError):
    """The replica file cannot be parsed as a replica."""
    pass


class ReplicaClosed(ReplicaError):
    """A replica handle was used after it was closed or superseded."""
    pass


class IllegalTransition(ReplicaError):
    """
    An intent arrived in a state that forbids it.

    Raised when:
    - A job is requested while another job runs
    - A job or reload is requested while a feature edit is pending
    - Sync or delta export is requested without a replica ready
    """

    def __init__(self, message: str, state: Optional[str] = None, intent: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.intent = intent


class ReplicaConfigError(ReplicaError):
    """
    Error in replica configuration.

    Raised when a configuration value is not one of the accepted values.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []
