"""
Session state owned by the replica lifecycle.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from ..core.models import Extent, FeatureRecord, LifecycleState

if TYPE_CHECKING:
    from ..runner.job_runner import JobHandle


@dataclass
class ReplicaSession:
    """
    Mutable state of the single client session.

    Attributes:
        state: Current lifecycle state
        extent: Extent of the primary replica (fixed once generated)
        primary_path: File of the primary replica
        delta_path: File of the most recently exported delta replica
        selection: Features selected for relocation while editing
        active_job: The job in flight, if any
        progress: Last progress value reported to observers
    """
    state: LifecycleState = LifecycleState.NOT_READY
    extent: Optional[Extent] = None
    primary_path: Optional[Path] = None
    delta_path: Optional[Path] = None
    selection: List[FeatureRecord] = field(default_factory=list)
    active_job: Optional["JobHandle"] = None
    progress: int = 0

    @property
    def job_in_flight(self) -> bool:
        return self.active_job is not None


@dataclass
class TapOutcome:
    """
    Result of a tap on the map.

    Attributes:
        state: Lifecycle state after the tap
        ignored: True if the tap arrived while no replica was editable
        selected: Features selected by this tap
        committed: Features moved to the tapped location
        rejected: Features left unmodified (e.g. outside the replica extent)
    """
    state: LifecycleState
    ignored: bool = False
    selected: List[FeatureRecord] = field(default_factory=list)
    committed: List[FeatureRecord] = field(default_factory=list)
    rejected: List[FeatureRecord] = field(default_factory=list)
