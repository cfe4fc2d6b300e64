"""Process-wide VariableManager used by the HTTP routes.

init_variables() is called once by create_app(); routes call manager().
"""

from pathlib import Path

from tavern_vars import config
from tavern_vars.locks import LockManager
from tavern_vars.manager import VariableManager
from tavern_vars.persistence import JsonFilePersistence
from tavern_vars.store import ScopeRegistry

_manager: VariableManager | None = None
_data_dir: Path | None = None


def build_manager(
    data_dir: Path,
    registry: ScopeRegistry | None = None,
    locks: LockManager | None = None,
) -> VariableManager:
    """Create a manager persisting under data_dir, configured from config.json/env."""
    settings = config.get_config(data_dir)
    return VariableManager(
        JsonFilePersistence(data_dir),
        registry=registry,
        locks=locks,
        tags=config.tag_config(settings),
        max_passes=settings["macro_max_passes"],
        register_overwrite=settings["register_overwrite"],
    )


def init_variables(data_dir: Path) -> VariableManager:
    global _manager, _data_dir
    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)
    _manager = build_manager(data_dir)
    return _manager


def manager() -> VariableManager:
    assert _manager is not None, "Call init_variables() before using the API"
    return _manager


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_variables() before using the API"
    return _data_dir


def reload_manager() -> VariableManager:
    """Rebuild the manager after a settings change, keeping live scopes."""
    global _manager
    old = manager()
    _manager = build_manager(data_dir(), registry=old.registry, locks=old.locks)
    return _manager
