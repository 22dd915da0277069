"""
Debug execution types and the debug session state machine.

A debug run is stateless on the engine side: every call receives the
previous state and returns the next one. `DebugSession` is the record a
caller persists between calls (breakpoints, results so far, where the run
is paused).
"""

import time
import uuid
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from typeflow.workflows.engine.constants import DebugSessionStatus
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.errors import DebugSessionError
from typeflow.workflows.engine.results import NodeResult, WorkflowExecutionResult


class _DebugModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class SourceLocation(_DebugModel):
    line: int
    column: int
    code: str = ""
    file_name: Optional[str] = None


class DebugStackFrame(_DebugModel):
    node_id: str
    node_label: str
    node_type: str
    timestamp: float = Field(default_factory=lambda: time.time() * 1000)
    input: Optional[List[ExecutionItem]] = None
    output: Optional[List[ExecutionItem]] = None
    error: Optional[str] = None
    source_location: Optional[SourceLocation] = None


class DebugPreviousState(_DebugModel):
    node_results: Dict[str, NodeResult] = Field(default_factory=dict)
    node_outputs: Dict[str, List[ExecutionItem]] = Field(default_factory=dict)
    last_executed_node_id: Optional[str] = None
    # Node the previous call paused in front of; its breakpoint is not hit again
    paused_at_node_id: Optional[str] = None
    call_stack: List[DebugStackFrame] = Field(default_factory=list)


class DebugExecutionOptions(_DebugModel):
    breakpoints: Set[str] = Field(default_factory=set)
    stop_at_node: Optional[str] = None
    capture_stack_traces: bool = False
    previous_state: Optional[DebugPreviousState] = None


class DebugExecutionResult(WorkflowExecutionResult):
    node_outputs: Dict[str, List[ExecutionItem]] = Field(default_factory=dict)
    is_paused: bool = False
    paused_at_node_id: Optional[str] = None
    last_executed_node_id: Optional[str] = None
    next_node_ids: List[str] = Field(default_factory=list)
    call_stack: List[DebugStackFrame] = Field(default_factory=list)


VALID_TRANSITIONS = {
    DebugSessionStatus.ACTIVE: {
        DebugSessionStatus.PAUSED,
        DebugSessionStatus.COMPLETED,
        DebugSessionStatus.TERMINATED,
    },
    DebugSessionStatus.PAUSED: {
        DebugSessionStatus.PAUSED,
        DebugSessionStatus.COMPLETED,
        DebugSessionStatus.TERMINATED,
    },
    DebugSessionStatus.COMPLETED: set(),
    DebugSessionStatus.TERMINATED: set(),
}


class DebugSession(_DebugModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    organization_id: str
    workflow_id: str
    status: DebugSessionStatus = DebugSessionStatus.ACTIVE
    current_node_id: Optional[str] = None
    last_executed_node_id: Optional[str] = None
    next_node_ids: List[str] = Field(default_factory=list)
    node_results: Dict[str, NodeResult] = Field(default_factory=dict)
    node_outputs: Dict[str, List[ExecutionItem]] = Field(default_factory=dict)
    breakpoints: List[str] = Field(default_factory=list)
    call_stack: List[DebugStackFrame] = Field(default_factory=list)
    trigger_data: Optional[Dict[str, Any]] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (DebugSessionStatus.COMPLETED, DebugSessionStatus.TERMINATED)

    def _transition(self, new_status: DebugSessionStatus) -> None:
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise DebugSessionError(
                f"Debug session cannot go from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def previous_state(self) -> Optional[DebugPreviousState]:
        """Resume payload for the next engine call, None before the first run."""
        if not self.node_results and not self.current_node_id:
            return None
        paused_at = self.current_node_id if self.current_node_id not in self.node_results else None
        return DebugPreviousState(
            node_results=dict(self.node_results),
            node_outputs=dict(self.node_outputs),
            last_executed_node_id=self.last_executed_node_id,
            paused_at_node_id=paused_at,
            call_stack=list(self.call_stack),
        )

    def next_step_node(self) -> Optional[str]:
        """Node a step-over runs: the paused node if it has not run yet, else the next one."""
        if self.current_node_id and self.current_node_id not in self.node_results:
            return self.current_node_id
        return self.next_node_ids[0] if self.next_node_ids else None

    def apply_result(self, result: DebugExecutionResult, stepped_node_id: Optional[str] = None) -> None:
        if result.is_paused:
            new_status = DebugSessionStatus.PAUSED
        elif result.success:
            new_status = DebugSessionStatus.COMPLETED
        else:
            new_status = DebugSessionStatus.TERMINATED
        self._transition(new_status)

        self.current_node_id = result.paused_at_node_id or stepped_node_id
        self.last_executed_node_id = result.last_executed_node_id or self.last_executed_node_id
        self.next_node_ids = list(result.next_node_ids)
        self.node_results = dict(result.node_results)
        self.node_outputs = dict(result.node_outputs)
        self.call_stack = list(result.call_stack)

    def complete(self) -> None:
        self._transition(DebugSessionStatus.COMPLETED)

    def terminate(self) -> None:
        if self.status != DebugSessionStatus.TERMINATED:
            self._transition(DebugSessionStatus.TERMINATED)
