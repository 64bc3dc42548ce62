"""Node type registry.

Maps every ``NodeKind`` to its config model, executor and output ports.
The table is checked for exhaustiveness at import time, so adding a kind
without an executor fails loudly.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import ValidationError

from ..executor.data import MAIN_OUTPUT
from ..executor.errors import WorkflowValidationError
from . import control, http, subworkflow, transform
from .base import (
    AggregateConfig,
    DateTimeConfig,
    EditFieldsConfig,
    ExecuteWorkflowConfig,
    FilterConfig,
    HttpRequestConfig,
    IfConfig,
    LimitConfig,
    MergeConfig,
    NodeConfig,
    NodeKind,
    NoopConfig,
    RemoveDuplicatesConfig,
    SplitOutConfig,
    SummarizeConfig,
    SwitchConfig,
    ThrowErrorConfig,
    TriggerConfig,
    TryCatchConfig,
    WaitConfig,
    WorkflowInputConfig,
    WorkflowOutputConfig,
)


def _single_output(config: NodeConfig) -> List[str]:
    return [MAIN_OUTPUT]


@dataclass(frozen=True)
class NodeType:
    """How to configure and execute one node kind.

    ``needs_context`` executors take ``(items, config, context)``; the rest
    are pure ``(items, config)`` functions. ``pass_evaluator`` executors
    receive the run's expression evaluator as a third argument.
    """

    kind: NodeKind
    config_model: Type[NodeConfig]
    executor: Callable[..., Any]
    outputs: Callable[[Any], List[str]] = _single_output
    needs_context: bool = False
    pass_evaluator: bool = False

    def parse_config(self, raw: Optional[Dict[str, Any]]) -> NodeConfig:
        return self.config_model.model_validate(raw or {})


def _trigger(kind: NodeKind) -> NodeType:
    return NodeType(kind, TriggerConfig, control.execute_trigger, needs_context=True)


NODE_TYPES: Dict[NodeKind, NodeType] = {
    NodeKind.TRIGGER: _trigger(NodeKind.TRIGGER),
    NodeKind.MANUAL_TRIGGER: _trigger(NodeKind.MANUAL_TRIGGER),
    NodeKind.SCHEDULE_TRIGGER: _trigger(NodeKind.SCHEDULE_TRIGGER),
    NodeKind.CHAT_TRIGGER: _trigger(NodeKind.CHAT_TRIGGER),
    NodeKind.WEBHOOK: _trigger(NodeKind.WEBHOOK),
    NodeKind.WORKFLOW_INPUT: NodeType(
        NodeKind.WORKFLOW_INPUT, WorkflowInputConfig,
        subworkflow.execute_workflow_input, needs_context=True,
    ),
    NodeKind.WORKFLOW_OUTPUT: NodeType(
        NodeKind.WORKFLOW_OUTPUT, WorkflowOutputConfig, subworkflow.execute_workflow_output,
    ),
    NodeKind.EXECUTE_WORKFLOW: NodeType(
        NodeKind.EXECUTE_WORKFLOW, ExecuteWorkflowConfig,
        subworkflow.execute_subworkflow, needs_context=True,
    ),
    NodeKind.NOOP: NodeType(NodeKind.NOOP, NoopConfig, control.execute_noop),
    NodeKind.FILTER: NodeType(NodeKind.FILTER, FilterConfig, transform.execute_filter),
    NodeKind.LIMIT: NodeType(NodeKind.LIMIT, LimitConfig, transform.execute_limit),
    NodeKind.REMOVE_DUPLICATES: NodeType(
        NodeKind.REMOVE_DUPLICATES, RemoveDuplicatesConfig, transform.execute_remove_duplicates,
    ),
    NodeKind.AGGREGATE: NodeType(NodeKind.AGGREGATE, AggregateConfig, transform.execute_aggregate),
    NodeKind.SUMMARIZE: NodeType(NodeKind.SUMMARIZE, SummarizeConfig, transform.execute_summarize),
    NodeKind.SPLIT_OUT: NodeType(NodeKind.SPLIT_OUT, SplitOutConfig, transform.execute_split_out),
    NodeKind.MERGE: NodeType(NodeKind.MERGE, MergeConfig, transform.execute_merge),
    NodeKind.EDIT_FIELDS: NodeType(
        NodeKind.EDIT_FIELDS, EditFieldsConfig, transform.execute_edit_fields,
        pass_evaluator=True,
    ),
    NodeKind.DATE_TIME: NodeType(NodeKind.DATE_TIME, DateTimeConfig, transform.execute_date_time),
    NodeKind.WAIT: NodeType(NodeKind.WAIT, WaitConfig, control.execute_wait, needs_context=True),
    NodeKind.HTTP_REQUEST: NodeType(
        NodeKind.HTTP_REQUEST, HttpRequestConfig, http.execute_http_request, needs_context=True,
    ),
    NodeKind.IF: NodeType(NodeKind.IF, IfConfig, control.execute_if, outputs=control.if_outputs),
    NodeKind.SWITCH: NodeType(
        NodeKind.SWITCH, SwitchConfig, control.execute_switch, outputs=control.switch_outputs,
    ),
    NodeKind.TRY_CATCH: NodeType(
        NodeKind.TRY_CATCH, TryCatchConfig, control.execute_try_catch,
        outputs=control.try_catch_outputs, needs_context=True,
    ),
    NodeKind.THROW_ERROR: NodeType(
        NodeKind.THROW_ERROR, ThrowErrorConfig, control.execute_throw_error,
    ),
}

_missing = set(NodeKind) - set(NODE_TYPES)
if _missing:
    raise RuntimeError(
        f"No executor registered for node kinds: {sorted(kind.value for kind in _missing)}"
    )


def get_node_type(kind: NodeKind) -> NodeType:
    return NODE_TYPES[kind]


def parse_node_config(kind: NodeKind, raw: Optional[Dict[str, Any]], node_label: str) -> NodeConfig:
    """Validate a node's raw config, reporting failures as workflow validation errors."""
    try:
        return NODE_TYPES[kind].parse_config(raw)
    except ValidationError as e:
        errors = [
            f"{node_label}: {'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise WorkflowValidationError(
            f"Invalid configuration for node '{node_label}'", validation_errors=errors
        ) from e
