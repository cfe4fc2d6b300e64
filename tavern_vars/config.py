"""Settings for the variable subsystem.

get_config() returns defaults merged with a stored <data_dir>/config.json,
then environment overrides (MACRO_MAX_PASSES). update_config() applies
partial updates: tags are merged key by key, scalars overwritten.

The host is expected to call dotenv.load_dotenv() before reading settings
(backend/app.py and main.py do); this module only reads os.environ.
"""

import json
import os
from pathlib import Path
from typing import Any

from .models import TagConfig

_CONFIG_DEFAULTS: dict[str, Any] = {
    "macro_max_passes": None,
    "register_overwrite": True,
    "tags": TagConfig().model_dump(),
}

DEFAULT_DATA_DIR = Path("data")


def data_dir_from_env(default: Path | None = None) -> Path:
    return Path(os.getenv("DATA_DIR", str(default or DEFAULT_DATA_DIR)))


def _config_path(data_dir: Path) -> Path:
    return Path(data_dir) / "config.json"


def _stored_config(data_dir: Path) -> dict[str, Any]:
    config: dict[str, Any] = {
        "macro_max_passes": _CONFIG_DEFAULTS["macro_max_passes"],
        "register_overwrite": _CONFIG_DEFAULTS["register_overwrite"],
        "tags": dict(_CONFIG_DEFAULTS["tags"]),
    }
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text(encoding="utf-8"))
        if "macro_max_passes" in stored:
            config["macro_max_passes"] = stored["macro_max_passes"]
        if "register_overwrite" in stored:
            config["register_overwrite"] = bool(stored["register_overwrite"])
        if isinstance(stored.get("tags"), dict):
            config["tags"].update(
                {k: v for k, v in stored["tags"].items() if k in config["tags"]}
            )
    return config


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env."""
    config = _stored_config(data_dir)
    env_passes = os.getenv("MACRO_MAX_PASSES", "")
    if env_passes.strip():
        config["macro_max_passes"] = int(env_passes)
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into the stored config and persist. Returns full config."""
    config = _stored_config(data_dir)
    if "macro_max_passes" in fields:
        passes = fields["macro_max_passes"]
        config["macro_max_passes"] = int(passes) if passes is not None else None
    if "register_overwrite" in fields:
        config["register_overwrite"] = bool(fields["register_overwrite"])
    if isinstance(fields.get("tags"), dict):
        config["tags"].update(
            {k: v for k, v in fields["tags"].items() if k in config["tags"]}
        )
    path = _config_path(data_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2))
    return get_config(data_dir)


def tag_config(config: dict[str, Any]) -> TagConfig:
    return TagConfig(**config["tags"])
