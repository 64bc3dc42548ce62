"""Data transformation nodes.

Each executor is a pure function of its input items and typed config and
never mutates the items it receives.
"""

import copy
import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..executor.data import ExecutionItem
from .base import (
    AggregateConfig,
    DateOperation,
    DateTimeConfig,
    EditFieldsConfig,
    FieldAssignment,
    FilterConfig,
    LimitConfig,
    MergeConfig,
    RemoveDuplicatesConfig,
    SplitOutConfig,
    SummarizeConfig,
)
from .dates import add_to_date, extract_from_date, format_date, parse_date, to_iso_string, utc_now
from .expression import ExpressionEvaluator
from .values import (
    delete_nested_value,
    get_nested_value,
    is_number,
    matches_conditions,
    set_nested_value,
    to_js_string,
    to_number,
)

Items = List[ExecutionItem]

_MISSING = object()


def execute_filter(items: Items, config: FilterConfig) -> Items:
    """Keep items matching the conditions; no conditions keeps everything."""
    if not config.conditions:
        return list(items)
    return [
        item for item in items
        if matches_conditions(item.json, config.conditions, config.combine_with)
    ]


def execute_limit(items: Items, config: LimitConfig) -> Items:
    if config.max_items == 0:
        return []
    if config.keep_first:
        return list(items[:config.max_items])
    return list(items[-config.max_items:])


def _dedupe_key(value: Any) -> str:
    return json.dumps(value, sort_keys=False, separators=(",", ":"), default=str)


def execute_remove_duplicates(items: Items, config: RemoveDuplicatesConfig) -> Items:
    """Drop items whose key was already seen, keeping first occurrences."""
    seen = set()
    result = []
    for item in items:
        if config.compare_all or not config.field_to_compare:
            key = _dedupe_key(item.json)
        else:
            key = _dedupe_key(get_nested_value(item.json, config.field_to_compare))
        if key not in seen:
            seen.add(key)
            result.append(item)
    return result


def execute_aggregate(items: Items, config: AggregateConfig) -> Items:
    if config.field_to_aggregate:
        values = [get_nested_value(item.json, config.field_to_aggregate) for item in items]
    else:
        values = [copy.deepcopy(item.json) for item in items]
    return [ExecutionItem(json={config.output_field_name: values})]


def _sum(values: List[Any]) -> float:
    total = 0.0
    for value in values:
        number = to_number(value)
        if number == number:  # NaN counts as zero
            total += number
    return total


def _numeric(values: List[Any]) -> List[float]:
    return [value for value in values if is_number(value) and value == value]


def _tidy(number: float) -> Any:
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def execute_summarize(items: Items, config: SummarizeConfig) -> Items:
    """Reduce all items to one summary item."""
    if not config.operations:
        return [ExecutionItem(json={"count": len(items)})]

    summary: Dict[str, Any] = {}
    for operation in config.operations:
        output_field = operation.output_field or operation.type
        if operation.field:
            values = [get_nested_value(item.json, operation.field) for item in items]
        else:
            values = [item.json for item in items]

        if operation.type == "count":
            summary[output_field] = len(items)
        elif operation.type == "sum":
            summary[output_field] = _tidy(_sum(values))
        elif operation.type == "average":
            summary[output_field] = _sum(values) / len(items) if items else 0
        elif operation.type == "min":
            numbers = _numeric(values)
            summary[output_field] = min(numbers) if numbers else None
        elif operation.type == "max":
            numbers = _numeric(values)
            summary[output_field] = max(numbers) if numbers else None
        elif operation.type == "concat":
            summary[output_field] = ", ".join(to_js_string(value) for value in values)

    return [ExecutionItem(json=summary)]


def execute_split_out(items: Items, config: SplitOutConfig) -> Items:
    """Emit one item per element of an array field."""
    if not config.field_to_split:
        return list(items)

    result = []
    for index, item in enumerate(items):
        elements = get_nested_value(item.json, config.field_to_split)
        if not isinstance(elements, list):
            result.append(item)
            continue
        for element in elements:
            if config.include_other_fields:
                payload = copy.deepcopy(item.json)
                set_nested_value(payload, config.field_to_split, copy.deepcopy(element))
            elif isinstance(element, dict):
                payload = copy.deepcopy(element)
            else:
                payload = {"value": element}
            result.append(ExecutionItem(json=payload, paired_item={"item": index}))
    return result


def execute_merge(items: Items, config: MergeConfig) -> Items:
    """Combine the items gathered from every inbound connection."""
    if config.mode == "combine":
        if config.combine_mode == "mergeByPosition":
            midpoint = len(items) // 2
            merged = [
                ExecutionItem(json={
                    **copy.deepcopy(items[index].json),
                    **copy.deepcopy(items[midpoint + index].json),
                })
                for index in range(midpoint)
            ]
            return merged if merged else list(items)
        if config.combine_mode == "mergeByKey" and config.join_field:
            by_key: Dict[str, Dict[str, Any]] = {}
            for item in items:
                key = to_js_string(get_nested_value(item.json, config.join_field))
                by_key[key] = {**by_key.get(key, {}), **copy.deepcopy(item.json)}
            return [ExecutionItem(json=payload) for payload in by_key.values()]
        return list(items)

    if config.mode == "chooseBranch":
        return list(items[:1])

    # append, multiplex and unknown modes pass everything through
    return list(items)


def _coerce_field_value(assignment: FieldAssignment, value: Any) -> Any:
    if assignment.type == "number":
        return _tidy(to_number(value))
    if assignment.type == "boolean":
        if isinstance(value, bool):
            return value
        return to_js_string(value) == "true"
    if assignment.type in ("object", "array"):
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def execute_edit_fields(
    items: Items,
    config: EditFieldsConfig,
    evaluator: Optional[ExpressionEvaluator] = None,
) -> Items:
    """Apply set, remove and rename operations, in that order, to item copies."""
    evaluator = evaluator or ExpressionEvaluator()
    result = []
    for item in items:
        payload: Dict[str, Any] = {} if config.keep_only_set else copy.deepcopy(item.json)

        for assignment in config.fields:
            value = evaluator.resolve(assignment.value, item, items)
            set_nested_value(payload, assignment.name, _coerce_field_value(assignment, value))

        for path in config.remove_fields:
            delete_nested_value(payload, path)

        for rename in config.rename_fields:
            value = get_nested_value(payload, rename.from_, default=_MISSING)
            if value is not _MISSING:
                delete_nested_value(payload, rename.from_)
                set_nested_value(payload, rename.to, value)

        result.append(ExecutionItem(json=payload, binary=item.binary, paired_item=item.paired_item))
    return result


def execute_date_time(
    items: Items,
    config: DateTimeConfig,
    clock: Callable[[], datetime] = utc_now,
) -> Items:
    """Write a date computation to ``output_field`` on a copy of each item."""
    result = []
    for item in items:
        moment = clock()
        if config.input_field:
            raw = get_nested_value(item.json, config.input_field)
            if raw not in (None, ""):
                moment = parse_date(raw)

        if config.operation == DateOperation.NOW:
            value: Any = to_iso_string(clock())
        elif config.operation == DateOperation.FORMAT:
            value = format_date(moment, config.format)
        elif config.operation in (DateOperation.ADD, DateOperation.SUBTRACT):
            amount = config.amount if config.operation == DateOperation.ADD else -config.amount
            value = to_iso_string(add_to_date(moment, amount, config.unit))
        else:
            value = extract_from_date(moment, config.extract_part)

        payload = copy.deepcopy(item.json)
        set_nested_value(payload, config.output_field, value)
        result.append(ExecutionItem(json=payload, binary=item.binary, paired_item=item.paired_item))
    return result
