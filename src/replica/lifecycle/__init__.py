"""
Replica lifecycle: the state machine driving generate, edit, sync, delta
export and reload for one client session.
"""

from .observers import LifecycleObserver, CallbackObserver, ObserverList
from .session import ReplicaSession, TapOutcome
from .state_machine import ReplicaLifecycle, failure_message

__all__ = [
    "LifecycleObserver",
    "CallbackObserver",
    "ObserverList",
    "ReplicaSession",
    "TapOutcome",
    "ReplicaLifecycle",
    "failure_message",
]
