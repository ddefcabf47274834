"""
Replica file storage: file format, replica handles and the replica store.
"""

from .feature_table import FeatureTable
from .replica import Replica
from .replica_store import ReplicaStore
from .schema import create_replica_file

__all__ = [
    "FeatureTable",
    "Replica",
    "ReplicaStore",
    "create_replica_file",
]
