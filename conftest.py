import shutil
from pathlib import Path

import pytest

from backend import variables
from tavern_vars.manager import VariableManager
from tavern_vars.persistence import MemoryPersistence
from tavern_vars.store import ScopeRegistry

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture(autouse=True)
def clean_test_data(monkeypatch):
    """Wipe and re-init data-tests/ before every test."""
    monkeypatch.delenv("MACRO_MAX_PASSES", raising=False)
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    variables.init_variables(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def registry() -> ScopeRegistry:
    """A registry with an empty global scope."""
    reg = ScopeRegistry()
    reg.init_global()
    return reg


@pytest.fixture
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture
def manager(persistence) -> VariableManager:
    return VariableManager(persistence)
