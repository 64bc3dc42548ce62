"""Workflow definition models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..executor.errors import WorkflowValidationError
from ..nodes.base import NodeKind


class DefinitionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NodePosition(DefinitionModel):
    x: float = 0
    y: float = 0


class NodeDefinition(DefinitionModel):
    """A configured processing step."""

    id: str
    type: NodeKind
    label: str
    position: NodePosition = Field(default_factory=NodePosition)
    config: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int = 0


class Connection(DefinitionModel):
    """Directed edge from a node's output port to another node's input port."""

    id: Optional[str] = None
    source_node_id: str
    target_node_id: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    data_mapping: Optional[Dict[str, str]] = None


class WorkflowDefinition(DefinitionModel):
    """Read-only graph definition consumed by a run."""

    id: Optional[str] = None
    organization_id: Optional[str] = None
    name: str = "Untitled workflow"
    is_active: bool = True
    nodes: List[NodeDefinition] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Parse and structurally validate a definition document."""
        try:
            definition = cls.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
            raise WorkflowValidationError(
                "Workflow definition is malformed", validation_errors=errors
            ) from e
        definition.validate_structure()
        return definition

    def structure_errors(self) -> List[str]:
        errors = []
        seen_ids = set()
        seen_labels: Dict[str, str] = {}
        for node in self.nodes:
            if node.id in seen_ids:
                errors.append(f"Duplicate node id '{node.id}'")
            seen_ids.add(node.id)

            label_key = node.label.strip().lower()
            if label_key in seen_labels:
                errors.append(
                    f"Duplicate node label '{node.label}' "
                    f"(conflicts with '{seen_labels[label_key]}')"
                )
            else:
                seen_labels[label_key] = node.label

        for connection in self.connections:
            for end in (connection.source_node_id, connection.target_node_id):
                if end not in seen_ids:
                    errors.append(
                        f"Connection {connection.source_node_id} -> "
                        f"{connection.target_node_id} references unknown node '{end}'"
                    )
        return errors

    def validate_structure(self) -> None:
        """Raise WorkflowValidationError for duplicate ids/labels or dangling edges."""
        errors = self.structure_errors()
        if errors:
            raise WorkflowValidationError(
                f"Workflow validation failed: {errors[0]}", validation_errors=errors
            )

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def breakpoints(self) -> List[str]:
        """Breakpoints saved with the definition by the editor."""
        return list(self.metadata.get("breakpoints") or [])
