import pytest

from tavern_vars.macros import MacroEngine, find_macro, has_macros
from tavern_vars.models import ConditionBranch, Table, TableColumn, Variable
from tavern_vars.paths import MISSING
from tavern_vars.store import ScopeRegistry


@pytest.fixture
def engine(registry) -> MacroEngine:
    store = registry.get(None)
    store.set("goodwill", 10)
    store.set("scoreTable", {"desc": {"10": "低", "80": "高"}})
    store.set("hero", {"name": "Arin", "items": ["sword", "shield"]})
    return MacroEngine(registry)


# ── Scanner ──────────────────────────────────────────────────


def test_find_macro_matches_nested_span():
    text = "x ${a.${b}} y"
    span = find_macro(text)
    assert text[span.start:span.end] == "${a.${b}}"
    assert span.body == "a.${b}"
    [inner] = span.nested
    assert text[inner.start:inner.end] == "${b}"


def test_find_macro_skips_unclosed_outer():
    text = "${a ${b}"
    span = find_macro(text)
    assert text[span.start:span.end] == "${b}"


def test_find_macro_unclosed():
    assert find_macro("price ${ unclosed") is None
    assert not has_macros("no macros here")


# ── Resolution ───────────────────────────────────────────────


@pytest.mark.parametrize("text", [
    "",
    "plain narrative",
    "cost: $5 {ok} and }{ braces",
    "unclosed ${goodwill",
])
def test_text_without_complete_macros_is_unchanged(engine, text):
    assert engine.resolve(text) == text


def test_simple_and_sub_path(engine):
    assert engine.resolve("Goodwill ${goodwill}, ${hero.name} holds ${hero.items.1}") == (
        "Goodwill 10, Arin holds shield"
    )


def test_nested_macro_resolves_inner_first(engine):
    assert engine.resolve("${scoreTable.desc.${goodwill}}") == "低"


def test_nested_value_with_brace_stays_one_segment(engine, registry):
    store = registry.get(None)
    store.set("k", "a}b")
    store.set("t", {"a}b": "right", "a": "wrong"})
    assert engine.resolve("${t.${k}}") == "right"
    result = engine.resolve_with_report("[${t.${k}}]")
    assert result.text == "[right]"
    assert result.passes == 2


def test_absent_renders_empty(engine):
    assert engine.resolve("[${nothing}][${hero.age}][${hero.items.9}]") == "[][][]"


def test_structures_render_as_json(engine):
    assert engine.resolve("${hero.items}") == '["sword","shield"]'


def test_values_containing_macros_expand_transitively(engine, registry):
    store = registry.get(None)
    store.set("greeting", "Hello ${hero.name}")
    assert engine.resolve("${greeting}!") == "Hello Arin!"


def test_self_reference_is_bounded(engine, registry):
    registry.get(None).set("loop", "${loop}")
    result = engine.resolve_with_report("a ${loop} b")
    assert result.text == "a  b"
    assert result.passes == len("a ${loop} b") + 16
    assert "exceeded" in result.errors[0]


def test_max_passes_caps_budget(registry):
    store = registry.get(None)
    store.set("x", 1)
    store.set("y", 2)
    result = MacroEngine(registry, max_passes=1).resolve_with_report("${x} ${y}")
    assert result.text == "1 "
    assert len(result.errors) == 1


def test_resolve_path(engine):
    assert engine.resolve_path("hero.items.0") == "sword"
    assert engine.resolve_path("hero.age") is MISSING
    assert engine.resolve_path("hero", "ghost") is MISSING


# ── Hidden variables, visibility, branches ───────────────────


def test_hidden_variable_threshold(engine, registry):
    store = registry.get(None)
    store.set_hidden("secret", "goodwill >= 80", "the map")
    store.set("goodwill", 80)
    assert engine.resolve("${secret}") == "the map"
    store.set("goodwill", 79)
    assert engine.resolve("${secret}") == ""


def test_hidden_variable_sub_path(engine, registry):
    store = registry.get(None)
    store.set_hidden("vault", "goodwill > 5", {"code": 1234})
    assert engine.resolve("${vault.code}") == "1234"


def test_invisible_root_hides_sub_paths(engine, registry):
    store = registry.get(None)
    store.set("diary", {"page": "a confession"}, visibility="goodwill >= 50")
    assert engine.resolve("[${diary}][${diary.page}]") == "[][]"
    store.set("goodwill", 50)
    assert engine.resolve("${diary.page}") == "a confession"


def test_conditional_branches(engine, registry):
    store = registry.get(None)
    store.set("hp", 5)
    store.add(Variable(name="status", value="unknown", branches=[
        ConditionBranch(condition="hp <= 0", value="dead"),
        ConditionBranch(condition="hp < 3", value="wounded"),
        ConditionBranch(value="healthy"),
    ]))
    assert engine.resolve("${status}") == "healthy"
    store.set("hp", 2)
    assert engine.resolve("${status}") == "wounded"
    store.set("hp", 0)
    assert engine.resolve("${status}") == "dead"


def test_branches_without_else_fall_back_to_value(engine, registry):
    store = registry.get(None)
    store.add(Variable(name="title", value="stranger", branches=[
        ConditionBranch(condition="goodwill > 50", value="friend"),
    ]))
    assert engine.resolve("${title}") == "stranger"


# ── Scopes ───────────────────────────────────────────────────


def test_character_scope_falls_back_to_global(engine, registry):
    alice = registry.init_character("alice")
    alice.set("goodwill", 80)
    assert engine.resolve("${goodwill} ${hero.name}", "alice") == "80 Arin"
    assert engine.resolve("${scoreTable.desc.${goodwill}}", "alice") == "高"


def test_no_scope_reads_global_only(engine, registry):
    registry.init_character("alice").set("mood", "calm")
    assert engine.resolve("[${mood}]") == "[]"


def test_unknown_scope_leaves_text(engine):
    result = engine.resolve_with_report("${goodwill}", "ghost")
    assert result.text == "${goodwill}"
    assert result.errors == ["Unknown scope: character:ghost"]


def test_empty_registry_resolves_to_empty():
    assert MacroEngine(ScopeRegistry()).resolve("a${b}c") == "ac"


# ── Tables ───────────────────────────────────────────────────


@pytest.fixture
def quests(registry) -> Table:
    return registry.get(None).add_table(Table(
        name="quests",
        columns=[TableColumn(name="title"), TableColumn(name="reward", type="object")],
        rows=[
            {"title": "Find the cat", "reward": {"gold": 5}},
            {"title": "Slay the rat"},
        ],
    ))


def test_table_column_reads_first_row(engine, quests):
    assert engine.resolve("${quests.title}") == "Find the cat"
    assert engine.resolve("${quests.reward.0.gold}") == "5"


def test_table_row_by_index_or_variable(engine, registry, quests):
    assert engine.resolve("${quests.title.1}") == "Slay the rat"
    registry.get(None).set("current", 1)
    assert engine.resolve("${quests.title.current}") == "Slay the rat"
    assert engine.resolve("${quests.title.${current}}") == "Slay the rat"


def test_table_missing_cells_render_empty(engine, registry, quests):
    registry.get(None).set("mood", "calm")
    assert engine.resolve("[${quests.reward.1}][${quests.title.5}][${quests.nope}][${quests.title.mood}]") == "[][][][]"


def test_whole_table_renders_rows(engine, quests):
    assert engine.resolve_path("quests") == quests.rows
