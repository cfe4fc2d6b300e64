from tavern_vars.manager import VariableManager
from tavern_vars.persistence import JsonFilePersistence, MemoryPersistence, resource_filename


def test_resource_filename():
    assert resource_filename("global") == "global.json"
    assert resource_filename("character:alice") == "character_alice.json"
    assert resource_filename("character:艾莉") == "character_艾莉.json"
    assert resource_filename("character:../etc/passwd") == "character_..%2Fetc%2Fpasswd.json"


def test_resource_filename_is_one_to_one():
    ids = ["alice/bob", "alice bob", "alice_bob", "alice%2Fbob", "alice%20bob"]
    names = {resource_filename(f"character:{ident}") for ident in ids}
    assert len(names) == len(ids)
    assert all("/" not in name for name in names)


async def test_json_file_round_trip(tmp_path):
    persistence = JsonFilePersistence(tmp_path)
    assert await persistence.load("global") is None

    await persistence.save("global", '{"variables": []}')
    await persistence.save("character:alice", '{"variables": [{"name": "低"}]}')

    assert (tmp_path / "variables" / "global.json").is_file()
    assert (tmp_path / "variables" / "character_alice.json").is_file()
    assert await persistence.load("character:alice") == '{"variables": [{"name": "低"}]}'


async def test_similar_character_ids_keep_separate_state(tmp_path):
    manager = VariableManager(JsonFilePersistence(tmp_path))
    await manager.init_scope("alice/bob", {"variables": {"hp": {"type": "number", "value": 3}}})
    await manager.init_scope("alice bob", {"variables": {"mp": {"type": "number", "value": 7}}})

    await manager.teardown_scope("alice/bob")
    await manager.init_scope("alice/bob")

    state = manager.variable_state("alice/bob")
    assert [v["name"] for v in state["variables"]] == ["hp"]
    assert len(list((tmp_path / "variables").iterdir())) == 2


async def test_json_file_delete(tmp_path):
    persistence = JsonFilePersistence(tmp_path)
    await persistence.save("global", "{}")
    assert await persistence.delete("global") is True
    assert await persistence.delete("global") is False
    assert await persistence.load("global") is None


async def test_memory_persistence():
    persistence = MemoryPersistence()
    await persistence.save("global", "{}")
    assert await persistence.load("global") == "{}"
    assert persistence.blobs == {"global": "{}"}
    assert await persistence.delete("global") is True
    assert await persistence.load("global") is None
