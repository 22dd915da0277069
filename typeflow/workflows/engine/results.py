from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from typeflow.workflows.engine.constants import ExecutionStatus
from typeflow.workflows.engine.definitions import ExecutionItem


class NodeResult(BaseModel):
    """Outcome of one node in one run. Written once, never updated."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    node_id: str
    node_label: Optional[str] = None
    status: ExecutionStatus
    output: Optional[List[ExecutionItem]] = None
    # Per-handle items of conditional nodes
    outputs: Optional[Dict[str, List[ExecutionItem]]] = None
    error: Optional[str] = None
    duration: float = 0  # milliseconds

    @property
    def completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


class WorkflowExecutionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    success: bool
    node_results: Dict[str, NodeResult] = Field(default_factory=dict)
    final_output: Optional[List[ExecutionItem]] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
