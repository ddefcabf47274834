"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from replica.config import ReplicaConfig
from replica.core.jobs import JobReporter
from replica.core.models import Extent
from replica.remote import LocalFeatureService
from replica.storage import ReplicaStore


logger = logging.getLogger(__name__)


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clear_replica_env(monkeypatch):
    """Environment overrides must not leak into tests."""
    monkeypatch.delenv("REPLICA_OUTPUT_DIR", raising=False)
    monkeypatch.delenv("REPLICA_LOG_LEVEL", raising=False)


@pytest.fixture
def extent() -> Extent:
    """Extent covering the western part of the synthetic dataset."""
    return Extent(0, 0, 100, 100)


@pytest.fixture
def service() -> LocalFeatureService:
    """In-process feature service with the synthetic dataset."""
    return LocalFeatureService()


@pytest.fixture
def reporter() -> JobReporter:
    return JobReporter()


@pytest.fixture
def config(tmp_path) -> ReplicaConfig:
    """Configuration writing replicas under the test's temporary directory."""
    return ReplicaConfig.from_dict({"storage": {"output_dir": str(tmp_path / "Replicas")}})


@pytest.fixture
def store(service) -> ReplicaStore:
    store = ReplicaStore(service)
    yield store
    store.close_all()


@pytest.fixture
def generated_replica(store, extent, tmp_path):
    """A generated, active replica of the synthetic dataset."""
    replica = store.generate(extent, tmp_path / "replica.geodatabase")
    store.activate(replica)
    return replica
