"""
Shared pytest fixtures for fleetheal tests

Includes:
    - Run context isolation
    - Fixed clock and recording sleep
    - In-memory and file-backed state stores
"""

import pytest

from fleetheal.core.logging import clear_run_context
from fleetheal.storage.state import InMemoryStateStore, JsonStateStore
from helpers import FixedClock, RecordingSleep

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_run_context():
    clear_run_context()
    yield
    clear_run_context()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def memory_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def json_state(tmp_path) -> JsonStateStore:
    return JsonStateStore(tmp_path / "state")
