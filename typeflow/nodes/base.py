"""Node kinds and their typed configuration models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class NodeKind(str, Enum):
    """Closed set of node types the engine can execute."""
    TRIGGER = "trigger"
    MANUAL_TRIGGER = "manualTrigger"
    SCHEDULE_TRIGGER = "scheduleTrigger"
    CHAT_TRIGGER = "chatTrigger"
    WEBHOOK = "webhook"
    WORKFLOW_INPUT = "workflowInput"
    WORKFLOW_OUTPUT = "workflowOutput"
    EXECUTE_WORKFLOW = "executeWorkflow"
    NOOP = "noop"
    FILTER = "filter"
    LIMIT = "limit"
    REMOVE_DUPLICATES = "removeDuplicates"
    AGGREGATE = "aggregate"
    SUMMARIZE = "summarize"
    SPLIT_OUT = "splitOut"
    MERGE = "merge"
    EDIT_FIELDS = "editFields"
    DATE_TIME = "dateTime"
    WAIT = "wait"
    HTTP_REQUEST = "httpRequest"
    IF = "if"
    SWITCH = "switch"
    TRY_CATCH = "tryCatch"
    THROW_ERROR = "throwError"

    @property
    def is_trigger(self) -> bool:
        return self in TRIGGER_KINDS


TRIGGER_KINDS = frozenset({
    NodeKind.TRIGGER,
    NodeKind.MANUAL_TRIGGER,
    NodeKind.SCHEDULE_TRIGGER,
    NodeKind.CHAT_TRIGGER,
    NodeKind.WEBHOOK,
    NodeKind.WORKFLOW_INPUT,
})


class CombineWith(str, Enum):
    AND = "and"
    OR = "or"


class ConfigModel(BaseModel):
    """Base for config structures; accepts camelCase keys from the editor."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NodeConfig(ConfigModel):
    """Base for per-kind node configuration."""

    continue_on_fail: bool = False


class Condition(ConfigModel):
    field: str = ""
    operator: str = "equals"
    value: Any = ""


class FilterConfig(NodeConfig):
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: CombineWith = CombineWith.AND


class LimitConfig(NodeConfig):
    max_items: int = Field(default=10, ge=0)
    keep_first: bool = True


class RemoveDuplicatesConfig(NodeConfig):
    field_to_compare: Optional[str] = None
    compare_all: bool = False


class AggregateConfig(NodeConfig):
    field_to_aggregate: Optional[str] = None
    output_field_name: str = "data"


class SummarizeOperation(ConfigModel):
    type: str = "count"
    field: Optional[str] = None
    output_field: Optional[str] = None


class SummarizeConfig(NodeConfig):
    operations: List[SummarizeOperation] = Field(default_factory=list)


class SplitOutConfig(NodeConfig):
    field_to_split: Optional[str] = None
    include_other_fields: bool = True


class MergeConfig(NodeConfig):
    mode: str = "append"
    combine_mode: Optional[str] = None
    join_field: Optional[str] = None


class FieldAssignment(ConfigModel):
    name: str
    value: Any = None
    type: str = "string"


class FieldRename(ConfigModel):
    from_: str = Field(alias="from")
    to: str


class EditFieldsConfig(NodeConfig):
    fields: List[FieldAssignment] = Field(default_factory=list)
    remove_fields: List[str] = Field(default_factory=list)
    rename_fields: List[FieldRename] = Field(default_factory=list)
    keep_only_set: bool = False


class DateOperation(str, Enum):
    NOW = "now"
    FORMAT = "format"
    ADD = "add"
    SUBTRACT = "subtract"
    EXTRACT = "extract"


class DateUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class DateTimeConfig(NodeConfig):
    operation: DateOperation = DateOperation.NOW
    input_field: Optional[str] = None
    output_field: str = "date"
    format: Optional[str] = None
    amount: float = 0
    unit: DateUnit = DateUnit.DAYS
    extract_part: str = "year"


class WaitUnit(str, Enum):
    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class WaitConfig(NodeConfig):
    amount: float = Field(default=1, ge=0, validation_alias=AliasChoices("amount", "waitTime"))
    unit: WaitUnit = WaitUnit.SECONDS


class BodyType(str, Enum):
    JSON = "json"
    FORM = "form"
    RAW = "raw"


class HttpRequestConfig(NodeConfig):
    url: str
    method: str = "GET"
    headers: Dict[str, Any] = Field(default_factory=dict)
    query_parameters: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    body_type: BodyType = BodyType.JSON
    timeout: Optional[float] = Field(default=None, gt=0, description="Timeout in milliseconds")
    full_response: bool = False
    never_error: bool = False

    @field_validator("method")
    @classmethod
    def upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("url")
    @classmethod
    def require_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("URL is required")
        return value


class TriggerConfig(NodeConfig):
    webhook_path: Optional[str] = None
    cron_expression: Optional[str] = None


class SchemaField(ConfigModel):
    name: str
    type: str = "any"
    required: bool = True
    description: Optional[str] = None


class WorkflowInputConfig(NodeConfig):
    fields: List[SchemaField] = Field(default_factory=list)


class WorkflowOutputConfig(NodeConfig):
    fields: List[SchemaField] = Field(default_factory=list)


class SubworkflowMode(str, Enum):
    ONCE = "once"
    FOREACH = "foreach"


class ExecuteWorkflowConfig(NodeConfig):
    workflow_id: str
    mode: SubworkflowMode = SubworkflowMode.ONCE


class TryCatchScope(str, Enum):
    PREDECESSORS = "predecessors"
    BRANCH = "branch"


class TryCatchConfig(NodeConfig):
    scope: TryCatchScope = TryCatchScope.PREDECESSORS


class ThrowErrorConfig(NodeConfig):
    error_message: str = "An error occurred"
    error_type: str = "Error"


class ConditionGroup(ConfigModel):
    """A named branch or case: conditions combined by and/or."""

    id: str
    name: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: CombineWith = CombineWith.AND


class IfConfig(NodeConfig):
    branches: List[ConditionGroup] = Field(default_factory=list)
    else_enabled: bool = True
    # Legacy single-condition-set form with "true"/"false" outputs
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: CombineWith = CombineWith.AND

    @property
    def is_legacy(self) -> bool:
        return not self.branches


class SwitchConfig(NodeConfig):
    cases: List[ConditionGroup] = Field(default_factory=list)
    fallback_enabled: bool = True


class NoopConfig(NodeConfig):
    pass
