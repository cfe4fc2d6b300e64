"""Tests for tavern_vars.conditions."""

import pytest

from tavern_vars.conditions import compile_condition, evaluate, is_visible
from tavern_vars.errors import MalformedCondition
from tavern_vars.store import GLOBAL, VariableStore


@pytest.fixture
def store() -> VariableStore:
    s = VariableStore(GLOBAL)
    s.set("goodwill", 85)
    s.set("mood", "happy")
    s.set("day", 3)
    s.set("flags", {"met_elder": True, "visited": ["inn", "forge"]})
    s.set("debug", False)
    return s


class TestEvaluate:
    def test_threshold(self, store) -> None:
        assert evaluate("goodwill >= 80", store)
        store.set("goodwill", 79)
        assert not evaluate("goodwill >= 80", store)

    def test_boolean_operators(self, store) -> None:
        assert evaluate("mood == 'happy' and day > 2", store)
        assert evaluate('mood == "sad" or day == 3', store)
        assert not evaluate("not flags.met_elder", store)

    def test_js_spellings(self, store) -> None:
        assert evaluate("mood === 'happy' && day !== 4", store)
        assert evaluate("debug || goodwill > 50", store)
        assert evaluate("!debug", store)

    def test_operators_inside_strings_are_kept(self, store) -> None:
        store.set("mood", "yay!")
        assert evaluate('mood == "yay!"', store)
        store.set("mood", "a && b || c")
        assert evaluate("mood === 'a && b || c' && !debug", store)

    def test_paths_and_subscripts(self, store) -> None:
        assert evaluate("flags.met_elder", store)
        assert evaluate("'inn' in flags.visited", store)
        assert evaluate("flags['visited'][1] == 'forge'", store)

    def test_arithmetic(self, store) -> None:
        assert evaluate("goodwill + day * 2 == 91", store)
        assert evaluate("day % 2 == 1", store)
        assert evaluate("-day < 0", store)

    def test_literal_names(self, store) -> None:
        assert evaluate("debug == false", store)
        assert evaluate("null == None", store)

    def test_unknown_variable_is_false(self, store) -> None:
        assert not evaluate("trust > 3", store)
        assert not evaluate("flags.missing", store)

    def test_type_error_is_false(self, store) -> None:
        assert not evaluate("mood > 3", store)

    def test_malformed_is_false(self, store) -> None:
        assert not evaluate("goodwill >>> 3", store)

    def test_not_cached_between_calls(self, store) -> None:
        condition = compile_condition("day > 5")
        assert not condition(store)
        store.set("day", 6)
        assert condition(store)


class TestCompile:
    @pytest.mark.parametrize("expr", [
        "goodwill >=",
        "__import__('os').system('ls')",
        "[x for x in flags]",
        "lambda: 1",
        "goodwill ** 2 > 1",
    ])
    def test_rejects_syntax_outside_subset(self, expr) -> None:
        with pytest.raises(MalformedCondition):
            compile_condition(expr)

    def test_cached(self) -> None:
        assert compile_condition("day > 1") is compile_condition("day > 1")


class TestIsVisible:
    def test_no_predicate_is_visible(self, store) -> None:
        assert is_visible("goodwill", store)

    def test_expression_predicate(self, store) -> None:
        store.set("secret_name", "Vel", visibility="goodwill >= 90")
        assert not is_visible("secret_name", store)
        store.set("goodwill", 95)
        assert is_visible("secret_name", store)

    def test_programmatic_predicate_takes_precedence(self, store) -> None:
        store.set("secret_name", "Vel", visibility="goodwill >= 90")
        store.set_visibility_fn("secret_name", lambda s: s.get("day").value == 3)
        assert is_visible("secret_name", store)

    def test_raising_predicate_is_hidden(self, store) -> None:
        store.set_visibility_fn("mood", lambda s: 1 / 0)
        assert not is_visible("mood", store)
