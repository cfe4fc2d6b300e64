import json

import pytest

from tavern_vars import config


def test_defaults(tmp_path):
    cfg = config.get_config(tmp_path)
    assert cfg["macro_max_passes"] is None
    assert cfg["register_overwrite"] is True
    assert cfg["tags"]["set_var"] == "setVar"
    assert cfg["tags"]["batch_item"] == "var"


def test_update_merges_tags_and_persists(tmp_path):
    cfg = config.update_config(tmp_path, {"tags": {"set_var": "set", "bogus": "x"}, "macro_max_passes": 50})
    assert cfg["tags"]["set_var"] == "set"
    assert cfg["tags"]["register_var"] == "registerVar"
    assert "bogus" not in cfg["tags"]
    assert cfg["macro_max_passes"] == 50

    stored = json.loads((tmp_path / "config.json").read_text())
    assert stored["tags"]["set_var"] == "set"
    assert config.get_config(tmp_path) == cfg


def test_partial_update_keeps_other_fields(tmp_path):
    config.update_config(tmp_path, {"register_overwrite": False})
    cfg = config.update_config(tmp_path, {"macro_max_passes": 10})
    assert cfg["register_overwrite"] is False
    assert cfg["macro_max_passes"] == 10


def test_env_overrides_stored_passes(tmp_path, monkeypatch):
    config.update_config(tmp_path, {"macro_max_passes": 50})
    monkeypatch.setenv("MACRO_MAX_PASSES", "5")
    assert config.get_config(tmp_path)["macro_max_passes"] == 5
    # env value is not written back
    config.update_config(tmp_path, {"register_overwrite": False})
    stored = json.loads((tmp_path / "config.json").read_text())
    assert stored["macro_max_passes"] == 50


def test_invalid_passes_rejected(tmp_path):
    with pytest.raises(ValueError):
        config.update_config(tmp_path, {"macro_max_passes": "many"})


def test_tag_config(tmp_path):
    config.update_config(tmp_path, {"tags": {"set_var": "set"}})
    tags = config.tag_config(config.get_config(tmp_path))
    assert tags.set_var == "set"
    assert tags.unregister_var == "unregisterVar"


def test_data_dir_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    assert config.data_dir_from_env() == tmp_path
