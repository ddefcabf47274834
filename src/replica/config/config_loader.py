"""
Configuration loader for the replica framework.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.exceptions import ReplicaConfigError
from ..core.logging import configure_logging
from ..core.models import ConflictPolicy, SyncDirection


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "output_dir": "Replicas",
        "replica_file": "replica.geodatabase",
        "delta_file": "delta.geodatabase",
    },
    "editing": {
        # Selection radius in screen pixels, projected with units-per-pixel
        "selection_tolerance_pixels": 15,
    },
    "sync": {
        "direction": "bidirectional",
        "rollback_on_failure": False,
        "conflict_policy": "prefer_local",
    },
    "logging": {
        "level": "INFO",
        "structured": False,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ReplicaConfig:
    """
    Configuration for the replica framework.

    Loads a YAML file on top of built-in defaults and applies environment
    overrides (REPLICA_OUTPUT_DIR, REPLICA_LOG_LEVEL).
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)

        Raises:
            FileNotFoundError: config_path does not exist
            ReplicaConfigError: A value is not one of the accepted values
        """
        self.config_path = Path(config_path) if config_path else None
        loaded = self._load_config() if self.config_path else {}
        self.config = _merge(DEFAULT_CONFIG, loaded)
        self._apply_env_overrides()
        self._validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplicaConfig":
        """Build a configuration from an in-memory mapping."""
        config = cls()
        config.config = _merge(DEFAULT_CONFIG, data)
        config._apply_env_overrides()
        config._validate()
        return config

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        return config or {}

    def _apply_env_overrides(self) -> None:
        output_dir = os.environ.get("REPLICA_OUTPUT_DIR")
        if output_dir:
            self.config.setdefault("storage", {})["output_dir"] = output_dir

        log_level = os.environ.get("REPLICA_LOG_LEVEL")
        if log_level:
            self.config.setdefault("logging", {})["level"] = log_level

    def _validate(self) -> None:
        problems = []

        direction = self.get("sync.direction")
        if direction not in [d.value for d in SyncDirection]:
            problems.append(f"sync.direction: unknown value {direction!r}")

        policy = self.get("sync.conflict_policy")
        if policy not in [p.value for p in ConflictPolicy]:
            problems.append(f"sync.conflict_policy: unknown value {policy!r}")

        tolerance = self.get("editing.selection_tolerance_pixels")
        if not isinstance(tolerance, (int, float)) or tolerance <= 0:
            problems.append(
                f"editing.selection_tolerance_pixels: must be a positive number, got {tolerance!r}"
            )

        for key in ("sync.rollback_on_failure", "logging.structured"):
            value = self.get(key)
            if not isinstance(value, bool):
                problems.append(f"{key}: must be true or false, got {value!r}")

        level = str(self.get("logging.level", "INFO")).upper()
        if not isinstance(logging.getLevelName(level), int):
            problems.append(f"logging.level: unknown level {level!r}")

        if problems:
            raise ReplicaConfigError("Invalid replica configuration", problems=problems)

    def get_storage_config(self) -> Dict[str, Any]:
        return self.config.get("storage", {})

    def get_editing_config(self) -> Dict[str, Any]:
        return self.config.get("editing", {})

    def get_sync_config(self) -> Dict[str, Any]:
        return self.config.get("sync", {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config.get("logging", {})

    @property
    def output_dir(self) -> Path:
        return Path(self.get("storage.output_dir"))

    @property
    def replica_path(self) -> Path:
        """Primary replica file."""
        return self.output_dir / self.get("storage.replica_file")

    @property
    def delta_path(self) -> Path:
        """Delta replica file."""
        return self.output_dir / self.get("storage.delta_file")

    @property
    def selection_tolerance_pixels(self) -> float:
        return float(self.get("editing.selection_tolerance_pixels"))

    @property
    def sync_direction(self) -> SyncDirection:
        return SyncDirection(self.get("sync.direction"))

    @property
    def conflict_policy(self) -> ConflictPolicy:
        return ConflictPolicy(self.get("sync.conflict_policy"))

    @property
    def rollback_on_failure(self) -> bool:
        return self.get("sync.rollback_on_failure", False)

    @property
    def log_level(self) -> int:
        return logging.getLevelName(str(self.get("logging.level", "INFO")).upper())

    def configure_logging(self, stream=None) -> logging.Logger:
        """Install the package log handler according to the logging section."""
        return configure_logging(
            level=self.log_level,
            structured=self.get("logging.structured", False),
            stream=stream,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default
