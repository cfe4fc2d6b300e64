import pytest

from tavern_vars import paths
from tavern_vars.errors import MalformedPath, PathNotFound


# ── parse_path ───────────────────────────────────────────────


def test_parse_path_splits_on_dots():
    assert paths.parse_path("ToDoList.chapterList.0") == ("ToDoList", "chapterList", "0")


def test_parse_path_accepts_sequences():
    assert paths.parse_path(["a", "b"]) == ("a", "b")


@pytest.mark.parametrize("bad", ["", "a..b", ".a", "a.", " . "])
def test_parse_path_rejects_empty_segments(bad):
    with pytest.raises(MalformedPath):
        paths.parse_path(bad)


def test_is_index():
    assert paths.is_index("0")
    assert paths.is_index("12")
    assert not paths.is_index("-1")
    assert not paths.is_index("name")
    assert not paths.is_index("١")  # non-ASCII digit


# ── read ─────────────────────────────────────────────────────


TREE = {
    "hero": {"name": "Arin", "items": ["sword", {"kind": "potion", "count": 2}]},
    "empty": None,
}


def test_read_nested_object_and_array():
    assert paths.read(TREE, "hero.name") == "Arin"
    assert paths.read(TREE, "hero.items.0") == "sword"
    assert paths.read(TREE, "hero.items.1.count") == 2


def test_read_stored_none_is_not_missing():
    assert paths.read(TREE, "empty") is None


def test_read_absent_returns_missing():
    assert paths.read(TREE, "hero.age") is paths.MISSING
    assert paths.read(TREE, "hero.items.5") is paths.MISSING
    assert paths.read(TREE, "hero.items.first") is paths.MISSING
    assert paths.read(TREE, "hero.name.first") is paths.MISSING


def test_missing_is_falsy_singleton():
    assert not paths.MISSING
    assert paths.MISSING is type(paths.MISSING)()


def test_read_or_raise():
    assert paths.read_or_raise(TREE, "hero.name") == "Arin"
    with pytest.raises(PathNotFound) as exc:
        paths.read_or_raise(TREE, "hero.age")
    assert exc.value.path == "hero.age"


# ── write ────────────────────────────────────────────────────


def test_write_vivifies_objects_and_arrays():
    assert paths.write(None, "a.b.0", "x") == {"a": {"b": ["x"]}}


def test_write_pads_arrays_with_none():
    assert paths.write([], "2", "x") == [None, None, "x"]


def test_write_replaces_scalar_with_container():
    assert paths.write({"a": 5}, "a.b", 1) == {"a": {"b": 1}}


def test_write_key_on_array_converts_to_object():
    result = paths.write({"a": ["x", "y"]}, "a.name", "z")
    assert result == {"a": {"0": "x", "1": "y", "name": "z"}}


def test_write_rejects_index_above_limit():
    assert len(paths.write([], str(paths.MAX_INDEX), "x")) == paths.MAX_INDEX + 1
    with pytest.raises(MalformedPath):
        paths.write({"b": []}, f"b.{paths.MAX_INDEX + 1}", "x")
    with pytest.raises(MalformedPath):
        paths.write(None, "5000000", "x")


def test_write_numeric_segment_on_object_is_a_key():
    assert paths.write({"a": {}}, "a.0", "x") == {"a": {"0": "x"}}


def test_write_does_not_mutate_input():
    tree = {"hero": {"items": ["sword"]}}
    result = paths.write(tree, "hero.items.1", "shield")
    assert tree == {"hero": {"items": ["sword"]}}
    assert result == {"hero": {"items": ["sword", "shield"]}}


@pytest.mark.parametrize("tree, path, value", [
    ({}, "a", 1),
    (TREE, "hero.items.1.count", 3),
    (TREE, "hero.items.4", {"kind": "map"}),
    ([1, 2], "x.y", [True]),
    ("scalar", "deep.0.path", "低"),
])
def test_write_then_read_round_trip(tree, path, value):
    assert paths.read(paths.write(tree, path, value), path) == value
