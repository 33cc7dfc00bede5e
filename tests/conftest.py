"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from skillpath.graph.skill_graph import SkillGraph  # noqa: E402
from skillpath.graph.stores import InMemoryGraphStore  # noqa: E402
from skillpath.learning.state_store import InMemoryLearnerStateStore  # noqa: E402
from skillpath.services.learner_service import LearnerService  # noqa: E402

NOTEBOOK_ID = "nb-networking"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite in memory)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath) or "learning" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def notebook_id():
    return NOTEBOOK_ID


@pytest.fixture
def chain_records():
    """A -> B -> C, one Bloom level apart."""
    return {
        "skills": [
            {"id": "A", "name": "IP addressing", "notebook_id": NOTEBOOK_ID, "bloom_level": 1, "estimated_minutes": 20},
            {"id": "B", "name": "Subnetting", "notebook_id": NOTEBOOK_ID, "bloom_level": 2, "estimated_minutes": 30},
            {"id": "C", "name": "VLSM design", "notebook_id": NOTEBOOK_ID, "bloom_level": 3, "estimated_minutes": 40},
        ],
        "prerequisites": [
            {"from_skill_id": "A", "to_skill_id": "B", "strength": "required"},
            {"from_skill_id": "B", "to_skill_id": "C", "strength": "required"},
        ],
    }


@pytest.fixture
def chain_graph(chain_records):
    """SkillGraph for the A -> B -> C chain."""
    return SkillGraph.from_records(chain_records["skills"], chain_records["prerequisites"])


@pytest.fixture
def test_settings():
    """Settings with fast retries and no .env influence."""
    return Settings(
        _env_file=None,
        store_timeout_ms=1000,
        store_retry_attempts=3,
        store_backoff_base_ms=0,
        text_generator_timeout_ms=200,
    )


@pytest.fixture
def graph_store(chain_records):
    """In-memory graph store holding the chain graph."""
    return InMemoryGraphStore(chain_records["skills"], chain_records["prerequisites"])


@pytest.fixture
def state_store():
    return InMemoryLearnerStateStore()


@pytest.fixture
def service(graph_store, state_store, test_settings):
    """LearnerService over in-memory stores."""
    return LearnerService(graph_store, state_store, settings=test_settings)
