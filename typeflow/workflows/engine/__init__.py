from typeflow.workflows.engine.executor import WorkflowEngine
from typeflow.workflows.engine.graph import WorkflowGraph
from typeflow.workflows.engine.scheduler import ExecutionScheduler

__all__ = ["WorkflowEngine", "WorkflowGraph", "ExecutionScheduler"]
