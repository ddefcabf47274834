"""
Configuration module.
"""

from .config_loader import ReplicaConfig, DEFAULT_CONFIG

__all__ = [
    "ReplicaConfig",
    "DEFAULT_CONFIG",
]
