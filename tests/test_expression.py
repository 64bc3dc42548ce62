"""Test expression evaluation."""

import pytest

from typeflow.executor.data import ExecutionItem
from typeflow.nodes.expression import ExpressionEvaluator


@pytest.fixture
def items():
    return [
        ExecutionItem(json={"id": 1, "user": {"name": "Ada"}}),
        ExecutionItem(json={"id": 2, "user": {"name": "Grace"}}),
    ]


@pytest.fixture
def evaluator():
    return ExpressionEvaluator({"Fetch": [ExecutionItem(json={"status": "ok"})]})


@pytest.mark.unit
class TestExpressionEvaluator:
    """Test the reference syntax."""

    def test_json_reference_returns_raw_value(self, evaluator, items):
        assert evaluator.resolve("={{ $json.id }}", items[0], items) == 1
        assert evaluator.resolve("={{ $json.user }}", items[0], items) == {"name": "Ada"}

    def test_embedded_expression_is_stringified(self, evaluator, items):
        result = evaluator.resolve("=Hello {{ $json.user.name }} #{{ $json.id }}", items[1], items)
        assert result == "Hello Grace #2"

    def test_input_accessors(self, evaluator, items):
        assert evaluator.resolve("={{ $input.first().json.id }}", items[1], items) == 1
        assert evaluator.resolve("={{ $input.last().json.user.name }}", items[0], items) == "Grace"
        assert evaluator.resolve("={{ $input.length }}", items[0], items) == 2
        assert len(evaluator.resolve("={{ $input.all() }}", items[0], items)) == 2

    def test_node_reference(self, evaluator, items):
        assert evaluator.resolve('={{ $node["Fetch"].json.status }}', items[0], items) == "ok"

    def test_unknown_references_resolve_to_none(self, evaluator, items):
        assert evaluator.resolve('={{ $node["Missing"].json.status }}', items[0], items) is None
        assert evaluator.resolve("={{ $json.nope.deeper }}", items[0], items) is None
        assert evaluator.resolve("={{ $json.id + 1 }}", items[0], items) is None

    def test_literals(self, evaluator):
        assert evaluator.resolve("={{ 'text' }}") == "text"
        assert evaluator.resolve("={{ 42 }}") == 42
        assert evaluator.resolve("={{ true }}") is True

    def test_non_expressions_pass_through(self, evaluator, items):
        assert evaluator.resolve("plain {{ $json.id }}", items[0], items) == "plain {{ $json.id }}"
        assert evaluator.resolve(5) == 5

    def test_containers_are_resolved_recursively(self, evaluator, items):
        value = {"a": "={{ $json.id }}", "b": ["={{ $json.user.name }}", "x"]}
        assert evaluator.resolve(value, items[0], items) == {"a": 1, "b": ["Ada", "x"]}
