"""Test value utilities."""

import pytest

from typeflow.nodes.base import CombineWith, Condition
from typeflow.nodes.values import (
    delete_nested_value,
    evaluate_condition,
    get_nested_value,
    matches_conditions,
    replace_template_placeholders,
    set_nested_value,
    to_js_string,
)


@pytest.mark.unit
class TestNestedValues:
    """Test nested path access."""

    def test_get_nested_value(self):
        data = {"user": {"profile": {"name": "Ada"}}, "tags": ["a", "b"]}

        assert get_nested_value(data, "user.profile.name") == "Ada"
        assert get_nested_value(data, "$json.user.profile.name") == "Ada"
        assert get_nested_value(data, "tags.1") == "b"
        assert get_nested_value(data, "$json") is data

    def test_get_missing_path_returns_none(self):
        data = {"user": {"name": "Ada"}}

        assert get_nested_value(data, "user.email") is None
        assert get_nested_value(data, "account.id") is None
        assert get_nested_value(data, "user.name.first") is None

    def test_set_creates_intermediate_maps(self):
        data = {}
        set_nested_value(data, "a.b.c", 1)
        assert data == {"a": {"b": {"c": 1}}}

    def test_set_replaces_non_map_intermediate(self):
        data = {"a": 5}
        set_nested_value(data, "a.b", 1)
        assert data == {"a": {"b": 1}}

    def test_set_then_get_round_trip(self):
        data = {"keep": True}
        set_nested_value(data, "x.y.z", [1, 2])
        assert get_nested_value(data, "x.y.z") == [1, 2]
        assert data["keep"] is True

    def test_delete_nested_value(self):
        data = {"a": {"b": 1, "c": 2}}

        assert delete_nested_value(data, "a.b") is True
        assert data == {"a": {"c": 2}}
        assert delete_nested_value(data, "a.missing") is False
        assert delete_nested_value(data, "x.y") is False


@pytest.mark.unit
class TestStringForm:
    """Test comparison string coercion."""

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (3.0, "3"),
        (2.5, "2.5"),
        (7, "7"),
        ([1, "a"], "1,a"),
    ])
    def test_to_js_string(self, value, expected):
        assert to_js_string(value) == expected


@pytest.mark.unit
class TestConditions:
    """Test condition evaluation."""

    def test_equality_compares_string_forms(self):
        assert evaluate_condition(100, "equals", "100") is True
        assert evaluate_condition(100.0, "equals", "100") is True
        assert evaluate_condition(None, "equals", "") is True
        assert evaluate_condition("a", "notEquals", "b") is True

    def test_numeric_operators(self):
        assert evaluate_condition(5, "greaterThan", 3) is True
        assert evaluate_condition("5", "lessThan", "10") is True
        assert evaluate_condition("abc", "greaterThan", 1) is False
        assert evaluate_condition(3, "greaterThanOrEqual", 3) is True

    def test_text_operators(self):
        assert evaluate_condition("hello world", "contains", "lo w") is True
        assert evaluate_condition("hello", "startsWith", "he") is True
        assert evaluate_condition("hello", "endsWith", "lo") is True
        assert evaluate_condition("hello", "notContains", "z") is True

    def test_empty_and_boolean_operators(self):
        assert evaluate_condition(None, "isEmpty", None) is True
        assert evaluate_condition("", "isEmpty", None) is True
        assert evaluate_condition("x", "isNotEmpty", None) is True
        assert evaluate_condition("true", "isTrue", None) is True
        assert evaluate_condition(False, "isFalse", None) is True

    def test_invalid_regex_is_false(self):
        assert evaluate_condition("abc", "regex", "^a.c$") is True
        assert evaluate_condition("abc", "regex", "(") is False

    def test_and_filter_equals_sequential_filters(self):
        items = [
            {"score": 100, "active": True},
            {"score": 100, "active": False},
            {"score": 40, "active": True},
        ]
        first = Condition(field="score", operator="greaterThan", value=50)
        second = Condition(field="active", operator="isTrue")

        combined = [item for item in items if matches_conditions(item, [first, second])]
        sequential = [
            item for item in items
            if matches_conditions(item, [first]) and matches_conditions(item, [second])
        ]

        assert combined == sequential == [items[0]]

    def test_or_combination(self):
        conditions = [
            Condition(field="a", operator="equals", value=1),
            Condition(field="b", operator="equals", value=2),
        ]
        assert matches_conditions({"a": 0, "b": 2}, conditions, CombineWith.OR) is True
        assert matches_conditions({"a": 0, "b": 2}, conditions, CombineWith.AND) is False


@pytest.mark.unit
class TestTemplatePlaceholders:
    """Test literal placeholder substitution."""

    def test_replace_known_keys(self):
        result = replace_template_placeholders("/users/{{id}}?q={{ name }}", {"id": 7, "name": "x"})
        assert result == "/users/7?q=x"

    def test_unknown_keys_are_left_untouched(self):
        assert replace_template_placeholders("{{missing}}", {}) == "{{missing}}"
