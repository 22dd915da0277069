"""
Typed errors for the workflow engine.

Graph errors are raised past the engine to the caller. Node errors are
captured into the failing node's result and halt the run.
"""

from typing import Iterable, Optional


class EngineError(Exception):
    """Base error for workflow engine failures."""


# Graph errors


class WorkflowNotFoundError(EngineError):
    def __init__(self, workflow_id: str):
        super().__init__("Workflow not found")
        self.workflow_id = workflow_id


class NoTriggerNodeError(EngineError):
    def __init__(self, workflow_id: Optional[str] = None):
        super().__init__("No trigger or webhook node found")
        self.workflow_id = workflow_id


class CyclicGraphError(EngineError):
    def __init__(self, node_ids: Iterable[str]):
        self.node_ids = sorted(node_ids)
        super().__init__(f"Workflow graph is cyclic: {', '.join(self.node_ids)}")


class NodeNotFoundError(EngineError):
    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


# Node errors


class NodeExecutionError(EngineError):
    """Base for failures captured into a NodeResult."""


class NodeConfigurationError(NodeExecutionError):
    pass


class UnknownNodeTypeError(NodeConfigurationError):
    def __init__(self, node_type: str):
        super().__init__(f"Unknown node type: {node_type}")
        self.node_type = node_type


class ThrowErrorNodeError(NodeExecutionError):
    def __init__(self, error_type: str, message: str):
        super().__init__(f"[{error_type}] {message}")
        self.error_type = error_type


class SubworkflowError(NodeExecutionError):
    pass


class CodeValidationError(NodeExecutionError):
    def __init__(self, diagnostics: Iterable[str], prefix: str = ""):
        self.diagnostics = list(diagnostics)
        super().__init__(prefix + "Code validation error:\n\n" + "\n\n".join(self.diagnostics))


class ExecutionTimeoutError(NodeExecutionError):
    def __init__(self, message: str = "Execution timeout"):
        super().__init__(message)


class CodeExecutionError(NodeExecutionError):
    """Wraps any failure of a code node; carries where in user code it happened."""

    def __init__(self, message: str, source_location=None):
        super().__init__(message)
        self.source_location = source_location


class UtilitiesExecutionError(NodeExecutionError):
    def __init__(self, node_id: str, message: str):
        super().__init__(f"Utilities execution failed: {message}")
        self.node_id = node_id


class DebugSessionError(EngineError):
    """Illegal operation on a debug session (e.g. resuming a finished one)."""
