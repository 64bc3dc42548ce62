"""Value utilities shared by node executors.

Nested path access, the string/number coercions used by condition
evaluation, and literal ``{{key}}`` template substitution.
"""

import json
import math
import re
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .base import CombineWith, Condition

JSON_PREFIX = "$json."

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

_NON_NUMERIC_WORDS = {"nan", "+nan", "-nan", "inf", "+inf", "-inf"}


def _normalize_path(path: str) -> Optional[str]:
    if path == "$json":
        return None
    if path.startswith(JSON_PREFIX):
        return path[len(JSON_PREFIX):]
    return path


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """Walk dot-separated segments; ``default`` as soon as a step is missing."""
    normalized = _normalize_path(path)
    if normalized is None:
        return obj

    current = obj
    for key in normalized.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return default
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            if not -len(current) <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def set_nested_value(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Set ``value`` at ``path``, creating intermediate maps as needed."""
    keys = path.split(".")
    current = obj
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def delete_nested_value(obj: Dict[str, Any], path: str) -> bool:
    """Remove the terminal key at ``path``. Returns whether it existed."""
    keys = path.split(".")
    current: Any = obj
    for key in keys[:-1]:
        if not isinstance(current, dict) or key not in current:
            return False
        current = current[key]
    if isinstance(current, dict) and keys[-1] in current:
        del current[keys[-1]]
        return True
    return False


def to_js_string(value: Any) -> str:
    """String form used for comparisons and template output.

    ``None`` becomes an empty string, booleans are lower-case, integral
    floats drop their fractional part, lists are comma-joined and maps are
    JSON-encoded.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(to_js_string(element) for element in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


def to_number(value: Any) -> float:
    """Numeric coercion; anything non-numeric becomes NaN."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in _NON_NUMERIC_WORDS:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def is_number(value: Any) -> bool:
    """True for real numeric values (booleans excluded)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(field_value: Any, operator: str, compare_value: Any) -> bool:
    """Evaluate one condition. Never raises."""
    text = to_js_string(field_value)
    compare = to_js_string(compare_value)

    if operator in ("equals", "equal"):
        return text == compare
    if operator in ("notEquals", "notEqual"):
        return text != compare
    if operator == "contains":
        return compare in text
    if operator == "notContains":
        return compare not in text
    if operator == "startsWith":
        return text.startswith(compare)
    if operator == "endsWith":
        return text.endswith(compare)
    if operator == "greaterThan":
        return to_number(field_value) > to_number(compare_value)
    if operator == "lessThan":
        return to_number(field_value) < to_number(compare_value)
    if operator == "greaterThanOrEqual":
        return to_number(field_value) >= to_number(compare_value)
    if operator == "lessThanOrEqual":
        return to_number(field_value) <= to_number(compare_value)
    if operator == "isEmpty":
        return field_value is None or text == ""
    if operator == "isNotEmpty":
        return field_value is not None and text != ""
    if operator == "isTrue":
        return field_value is True or text == "true"
    if operator == "isFalse":
        return field_value is False or text == "false"
    if operator == "regex":
        try:
            return re.search(compare, text) is not None
        except re.error:
            return False
    return text == compare


def matches_conditions(
    payload: Dict[str, Any],
    conditions: Iterable[Condition],
    combine_with: CombineWith = CombineWith.AND,
) -> bool:
    """Evaluate conditions against an item payload."""
    results = [
        evaluate_condition(
            get_nested_value(payload, condition.field),
            condition.operator,
            condition.value,
        )
        for condition in conditions
    ]
    if combine_with == CombineWith.AND:
        return all(results)
    return any(results)


def replace_template_placeholders(
    template: str,
    data: Mapping[str, Any],
    serialize: Callable[[Any], str] = to_js_string,
) -> str:
    """Substitute literal ``{{key}}`` placeholders from a flat map.

    Placeholders whose key is not in ``data`` are left untouched.
    """
    def replace(match: "re.Match[str]") -> str:
        key = match.group(1).strip()
        if key in data:
            return serialize(data[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)
