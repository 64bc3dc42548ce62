"""Expression evaluation for node parameters.

Supports the editor's reference syntax, e.g. ``={{ $json.user.name }}``,
``{{ $input.first().json.id }}``, ``{{ $input.length }}`` or
``{{ $node["Fetch"].json.status }}``. Only references and literals are
evaluated; there is no arbitrary code execution.
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..executor.data import ExecutionItem
from .values import get_nested_value, to_js_string

logger = structlog.get_logger()

EXPRESSION_MARKER = "="

_ROOT = re.compile(r"\$(json|input|node)")
_ACCESSOR = re.compile(
    r"""\s*(?:
        \.\s*(?P<name>[A-Za-z_$][\w$]*)\s*(?P<call>\(\s*\))?
        |
        \[\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<index>-?\d+))\s*\]
    )""",
    re.VERBOSE,
)
_NUMBER = re.compile(r"-?\d+(\.\d+)?")


class _InputView:
    def __init__(self, items: Sequence[ExecutionItem], item: Optional[ExecutionItem]):
        self.items = items
        self.item = item


class _NodeView:
    def __init__(self, node_outputs: Dict[str, List[ExecutionItem]]):
        self.node_outputs = node_outputs


class ExpressionEvaluator:
    """Resolves ``{{ ... }}`` references against an item and its run."""

    EXPRESSION_PATTERN = re.compile(r"\{\{(.+?)\}\}")

    def __init__(self, node_outputs: Optional[Dict[str, List[ExecutionItem]]] = None):
        self.node_outputs = node_outputs or {}
        self.logger = logger.bind(component="expression_evaluator")

    @staticmethod
    def is_expression(value: Any) -> bool:
        return isinstance(value, str) and value.startswith(EXPRESSION_MARKER)

    def resolve(
        self,
        value: Any,
        item: Optional[ExecutionItem] = None,
        items: Sequence[ExecutionItem] = (),
    ) -> Any:
        """Resolve ``value`` if it is an expression string, recursing into containers."""
        if self.is_expression(value):
            return self.evaluate_template(value[len(EXPRESSION_MARKER):], item, items)
        if isinstance(value, dict):
            return {key: self.resolve(element, item, items) for key, element in value.items()}
        if isinstance(value, list):
            return [self.resolve(element, item, items) for element in value]
        return value

    def evaluate_template(
        self,
        template: str,
        item: Optional[ExecutionItem] = None,
        items: Sequence[ExecutionItem] = (),
    ) -> Any:
        """Evaluate every ``{{ }}`` in ``template``.

        A template that is exactly one expression yields the raw value;
        otherwise the results are stringified into the surrounding text.
        """
        whole = self.EXPRESSION_PATTERN.fullmatch(template.strip())
        if whole:
            return self.evaluate(whole.group(1), item, items)

        def replace(match: "re.Match[str]") -> str:
            return to_js_string(self.evaluate(match.group(1), item, items))

        return self.EXPRESSION_PATTERN.sub(replace, template)

    def evaluate(
        self,
        expression: str,
        item: Optional[ExecutionItem] = None,
        items: Sequence[ExecutionItem] = (),
    ) -> Any:
        """Evaluate a single reference or literal. Unknown references give ``None``."""
        expression = expression.strip()
        literal = self._literal(expression)
        if literal is not _MISSING:
            return literal

        root = _ROOT.match(expression)
        if not root:
            if item is not None:
                return get_nested_value(item.json, expression)
            return None

        if root.group(1) == "json":
            value: Any = item.json if item is not None else {}
        elif root.group(1) == "input":
            value = _InputView(items, item)
        else:
            value = _NodeView(self.node_outputs)

        position = root.end()
        while position < len(expression):
            accessor = _ACCESSOR.match(expression, position)
            if not accessor:
                self.logger.debug("Unsupported expression", expression=expression)
                return None
            position = accessor.end()
            value = self._step(value, accessor)
            if value is None:
                return None

        if isinstance(value, _InputView):
            return [entry.to_dict() for entry in value.items]
        if isinstance(value, _NodeView):
            return None
        return value

    def _step(self, value: Any, accessor: "re.Match[str]") -> Any:
        name = accessor.group("name")
        is_call = accessor.group("call") is not None
        key = name if name is not None else (
            accessor.group("dq") if accessor.group("dq") is not None else accessor.group("sq")
        )
        index = accessor.group("index")

        if isinstance(value, _InputView):
            return self._input_step(value, key, is_call)
        if isinstance(value, _NodeView):
            node_items = value.node_outputs.get(key) if key is not None else None
            if not node_items:
                return None
            return node_items[0].to_dict()
        if is_call:
            return None

        if index is not None:
            if isinstance(value, list):
                position = int(index)
                return value[position] if -len(value) <= position < len(value) else None
            key = index
        if isinstance(value, dict):
            return value.get(key)
        if isinstance(value, (list, str)) and key == "length":
            return len(value)
        return None

    @staticmethod
    def _input_step(view: _InputView, key: Optional[str], is_call: bool) -> Any:
        if key == "length" and not is_call:
            return len(view.items)
        if key == "item" and not is_call:
            return view.item.to_dict() if view.item is not None else None
        if not is_call:
            return None
        if key == "first":
            return view.items[0].to_dict() if view.items else None
        if key == "last":
            return view.items[-1].to_dict() if view.items else None
        if key == "all":
            return [entry.to_dict() for entry in view.items]
        return None

    @staticmethod
    def _literal(expression: str) -> Any:
        if len(expression) >= 2 and expression[0] == expression[-1] and expression[0] in "'\"":
            return expression[1:-1]
        if _NUMBER.fullmatch(expression):
            return json.loads(expression)
        if expression in ("true", "false"):
            return expression == "true"
        if expression == "null":
            return None
        return _MISSING


_MISSING = object()
