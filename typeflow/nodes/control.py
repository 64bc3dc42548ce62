"""Control flow nodes: triggers, routing, error handling and waiting."""

from typing import Dict, List, Optional

from ..executor.context import NodeExecutionContext
from ..executor.data import ExecutionItem
from ..executor.errors import UserThrownError
from .base import (
    ConditionGroup,
    IfConfig,
    NodeConfig,
    SwitchConfig,
    ThrowErrorConfig,
    TryCatchConfig,
    WaitConfig,
    WaitUnit,
)
from .values import matches_conditions

Items = List[ExecutionItem]
Routed = Dict[str, Items]

ELSE_OUTPUT = "else"
FALLBACK_OUTPUT = "fallback"
TRUE_OUTPUT = "true"
FALSE_OUTPUT = "false"
SUCCESS_OUTPUT = "success"
ERROR_OUTPUT = "error"

WAIT_UNIT_MS = {
    WaitUnit.MILLISECONDS: 1,
    WaitUnit.SECONDS: 1000,
    WaitUnit.MINUTES: 60 * 1000,
    WaitUnit.HOURS: 60 * 60 * 1000,
    WaitUnit.DAYS: 24 * 60 * 60 * 1000,
}


def if_outputs(config: IfConfig) -> List[str]:
    if config.is_legacy:
        return [TRUE_OUTPUT, FALSE_OUTPUT]
    ports = [branch.id for branch in config.branches]
    if config.else_enabled:
        ports.append(ELSE_OUTPUT)
    return ports


def switch_outputs(config: SwitchConfig) -> List[str]:
    ports = [case.id for case in config.cases]
    if config.fallback_enabled:
        ports.append(FALLBACK_OUTPUT)
    return ports


def try_catch_outputs(config: TryCatchConfig) -> List[str]:
    return [SUCCESS_OUTPUT, ERROR_OUTPUT]


def _route_first_match(
    items: Items,
    groups: List[ConditionGroup],
    fallback: Optional[str] = None,
) -> Routed:
    outputs: Routed = {group.id: [] for group in groups}
    if fallback:
        outputs[fallback] = []

    for index, item in enumerate(items):
        target = fallback
        for group in groups:
            if not group.conditions:
                continue
            if matches_conditions(item.json, group.conditions, group.combine_with):
                target = group.id
                break
        if target is not None:
            outputs[target].append(
                ExecutionItem(json=item.json, binary=item.binary, paired_item={"item": index})
            )
    return outputs


def execute_if(items: Items, config: IfConfig) -> Routed:
    """Route each item to the first matching branch, else ``else`` (or drop it)."""
    if config.is_legacy:
        if not config.conditions:
            return {TRUE_OUTPUT: list(items), FALSE_OUTPUT: []}
        outputs: Routed = {TRUE_OUTPUT: [], FALSE_OUTPUT: []}
        for item in items:
            port = TRUE_OUTPUT if matches_conditions(
                item.json, config.conditions, config.combine_with
            ) else FALSE_OUTPUT
            outputs[port].append(item)
        return outputs

    return _route_first_match(
        items, config.branches, ELSE_OUTPUT if config.else_enabled else None
    )


def execute_switch(items: Items, config: SwitchConfig) -> Routed:
    """First-match-wins over cases, with an optional ``fallback`` output."""
    return _route_first_match(
        items, config.cases, FALLBACK_OUTPUT if config.fallback_enabled else None
    )


def execute_throw_error(items: Items, config: ThrowErrorConfig) -> Items:
    raise UserThrownError(config.error_message, config.error_type)


def execute_noop(items: Items, config: NodeConfig) -> Items:
    return list(items)


def execute_trigger(items: Items, config: NodeConfig, context: NodeExecutionContext) -> Items:
    """Emit the run's trigger payload, or one empty item when there is none."""
    if context.trigger_items:
        return [item.copy() for item in context.trigger_items]
    return [ExecutionItem()]


def execute_try_catch(
    items: Items,
    config: TryCatchConfig,
    context: NodeExecutionContext,
) -> Routed:
    """Send the current items to ``success``, or failed items to ``error``.

    On failure, every item the failing node(s) received is emitted on
    ``error`` annotated with the failure; a failing node that had no input
    contributes one item carrying only the error.
    """
    if not context.scope_failures:
        return {SUCCESS_OUTPUT: list(items), ERROR_OUTPUT: []}

    error_items = []
    for failure in context.scope_failures:
        details = {
            "message": failure.error,
            "type": failure.error_type,
            "nodeId": failure.node_id,
            "nodeLabel": failure.label,
        }
        for item in failure.input_items or [ExecutionItem()]:
            failed = item.copy()
            failed.json["error"] = details
            error_items.append(failed)
    return {SUCCESS_OUTPUT: [], ERROR_OUTPUT: error_items}


def wait_duration_ms(config: WaitConfig, max_ms: int) -> float:
    """Delay in milliseconds, capped at ``max_ms``."""
    return min(config.amount * WAIT_UNIT_MS[config.unit], max_ms)


async def execute_wait(items: Items, config: WaitConfig, context: NodeExecutionContext) -> Items:
    delay_ms = wait_duration_ms(config, context.services.wait_max_ms)
    context.logger.info("Waiting", delay_ms=delay_ms)
    await context.services.sleep(delay_ms / 1000)
    return list(items)
