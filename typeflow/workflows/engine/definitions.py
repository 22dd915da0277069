from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from typeflow.workflows.engine.constants import (
    CONDITIONAL_KINDS,
    CUSTOM_NODE_PREFIX,
    TRIGGER_KINDS,
    ExecutionConfig,
    NodeKind,
)


class PairedItem(BaseModel):
    item: int


class ExecutionItem(BaseModel):
    """
    Standard unit of data passed between nodes.

    A node's input and output are always an ordered list of items.
    `json` is always present (possibly empty); binary payloads stay separate.
    """
    model_config = ConfigDict(populate_by_name=True)

    json_data: Dict[str, Any] = Field(default_factory=dict, alias="json")
    binary_data: Optional[Dict[str, Any]] = Field(None, alias="binary")
    paired_item: Optional[PairedItem] = Field(None, alias="pairedItem")

    @field_validator("json_data", mode="before")
    @classmethod
    def _json_never_null(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def make_item(json_data: Optional[Dict[str, Any]] = None) -> ExecutionItem:
    return ExecutionItem(json=json_data if json_data is not None else {})


def empty_items() -> List[ExecutionItem]:
    """The single empty item a node receives when nothing flows into it."""
    return [make_item()]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class Position(BaseModel):
    x: float = 0
    y: float = 0


class Node(_CamelModel):
    id: str
    type: str
    label: Optional[str] = None
    position: Position = Field(default_factory=Position)
    config: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int = 0

    @field_validator("config", mode="before")
    @classmethod
    def _config_never_null(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def kind(self) -> NodeKind:
        if self.type.startswith(CUSTOM_NODE_PREFIX):
            return NodeKind.CUSTOM
        try:
            return NodeKind(self.type)
        except ValueError:
            return NodeKind.EXTERNAL

    @property
    def is_trigger(self) -> bool:
        return self.kind in TRIGGER_KINDS

    @property
    def is_conditional(self) -> bool:
        return self.kind in CONDITIONAL_KINDS

    @property
    def display_label(self) -> str:
        return self.label or f"Node {self.id[:ExecutionConfig.UNNAMED_LABEL_ID_LENGTH]}"


class Connection(_CamelModel):
    id: str
    source_node_id: str
    target_node_id: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class WorkflowDefinition(_CamelModel):
    """Read-only snapshot of a workflow as the engine sees it."""
    id: str
    organization_id: str
    name: str = ""
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("nodes")
    @classmethod
    def _order_nodes(cls, nodes: List[Node]) -> List[Node]:
        # stable: equal execution_order keeps definition order
        return sorted(nodes, key=lambda n: n.execution_order)

    @property
    def type_definitions(self) -> Optional[str]:
        value = (self.metadata or {}).get("typeDefinitions")
        return value or None


class ConditionalOutput(BaseModel):
    """Per-handle routing result of an if/switch node."""
    outputs: Dict[str, List[ExecutionItem]] = Field(default_factory=dict)

    def flatten(self) -> List[ExecutionItem]:
        return [item for items in self.outputs.values() for item in items]


class CustomNodeDefinition(_CamelModel):
    """An organization's user-defined node type (`custom_<name>`)."""
    id: str = ""
    organization_id: str = ""
    name: str
    # {properties: [{name, default}], credentials: [{name, required}], ...}
    description: Dict[str, Any] = Field(default_factory=dict)
    execute_code: Optional[str] = None

    @property
    def properties(self) -> List[Dict[str, Any]]:
        return list(self.description.get("properties") or [])

    @property
    def credentials(self) -> List[Dict[str, Any]]:
        return list(self.description.get("credentials") or [])
