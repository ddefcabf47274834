"""
Remote dataset client implementations.
"""

from .local_service import (
    LocalFeatureService,
    ServiceFeature,
    SYNTHETIC_FEATURES,
    SYNTHETIC_LAYERS,
)

__all__ = [
    "LocalFeatureService",
    "ServiceFeature",
    "SYNTHETIC_FEATURES",
    "SYNTHETIC_LAYERS",
]
