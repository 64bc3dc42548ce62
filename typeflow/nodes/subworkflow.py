"""Workflow composition nodes: WorkflowInput, WorkflowOutput and ExecuteWorkflow."""

from typing import Any, List

from ..executor.context import NodeExecutionContext
from ..executor.data import ExecutionItem
from ..executor.errors import SubworkflowError, WorkflowInputValidationError
from .base import ExecuteWorkflowConfig, SubworkflowMode, WorkflowInputConfig, WorkflowOutputConfig
from .control import execute_trigger
from .values import get_nested_value, is_number, set_nested_value

Items = List[ExecutionItem]

_TYPE_CHECKS = {
    "string": lambda value: isinstance(value, str),
    "number": is_number,
    "boolean": lambda value: isinstance(value, bool),
    "object": lambda value: isinstance(value, dict),
    "array": lambda value: isinstance(value, list),
}


def _type_matches(expected: str, value: Any) -> bool:
    check = _TYPE_CHECKS.get(expected)
    return check is None or check(value)


def validate_input_item(item: ExecutionItem, config: WorkflowInputConfig) -> List[str]:
    errors = []
    for schema_field in config.fields:
        value = get_nested_value(item.json, schema_field.name)
        if value is None:
            if schema_field.required:
                errors.append(f"Missing required field '{schema_field.name}'")
            continue
        if not _type_matches(schema_field.type, value):
            errors.append(
                f"Field '{schema_field.name}' must be of type {schema_field.type}, "
                f"got {type(value).__name__}"
            )
    return errors


def execute_workflow_input(
    items: Items,
    config: WorkflowInputConfig,
    context: NodeExecutionContext,
) -> Items:
    """Emit the caller's payload after checking it against the declared fields."""
    output = execute_trigger(items, config, context)
    errors = []
    for index, item in enumerate(output):
        errors.extend(f"item {index}: {error}" for error in validate_input_item(item, config))
    if errors:
        raise WorkflowInputValidationError(
            f"Workflow input validation failed: {errors[0]}", field_errors=errors
        )
    return output


def execute_workflow_output(items: Items, config: WorkflowOutputConfig) -> Items:
    """Pass items through, projected onto the declared fields if any."""
    if not config.fields:
        return list(items)
    projected = []
    for item in items:
        payload: dict = {}
        for schema_field in config.fields:
            set_nested_value(payload, schema_field.name, get_nested_value(item.json, schema_field.name))
        projected.append(ExecutionItem(json=payload, paired_item=item.paired_item))
    return projected


async def execute_subworkflow(
    items: Items,
    config: ExecuteWorkflowConfig,
    context: NodeExecutionContext,
) -> Items:
    """Run another workflow once for all items, or once per item."""
    run = context.services.run_subworkflow
    if run is None:
        raise SubworkflowError("Sub-workflow execution is not available", config.workflow_id)

    if config.mode == SubworkflowMode.FOREACH:
        batches = [[item] for item in items]
    else:
        batches = [list(items)]

    output: Items = []
    for index, batch in enumerate(batches):
        context.logger.info(
            "Executing sub-workflow",
            child_workflow_id=config.workflow_id,
            mode=config.mode.value,
            batch=index,
            item_count=len(batch),
        )
        result = await run(config.workflow_id, batch, context)
        if not result.success:
            raise SubworkflowError(
                f"Subworkflow failed: {result.error or result.status.value}",
                config.workflow_id,
            )
        for child_item in result.final_output or [ExecutionItem(json={"success": True})]:
            if config.mode == SubworkflowMode.FOREACH:
                child_item = ExecutionItem(
                    json=child_item.json, binary=child_item.binary, paired_item={"item": index}
                )
            output.append(child_item)
    return output
