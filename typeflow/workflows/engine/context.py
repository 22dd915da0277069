from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from typeflow.workflows.engine.definitions import ExecutionItem, Node, WorkflowDefinition
from typeflow.workflows.engine.expressions.resolver import ExpressionResolver
from typeflow.workflows.engine.graph import WorkflowGraph
from typeflow.workflows.engine.results import NodeResult
from typeflow.workflows.engine.runtime.code import UtilityModule

if TYPE_CHECKING:
    from typeflow.workflows.engine.executor import WorkflowEngine


class RunContext:
    """
    State of one workflow run.

    Only the engine's traversal loop writes to it; nodes read predecessor
    outputs and call services through their NodeContext.
    """

    def __init__(
        self,
        engine: "WorkflowEngine",
        workflow: WorkflowDefinition,
        graph: WorkflowGraph,
        execution_id: str,
    ):
        self.engine = engine
        self.workflow = workflow
        self.graph = graph
        self.execution_id = execution_id
        self.organization_id = workflow.organization_id

        self.node_outputs: Dict[str, List[ExecutionItem]] = {}
        self.handle_outputs: Dict[str, Dict[str, List[ExecutionItem]]] = {}
        self.node_results: Dict[str, NodeResult] = {}
        self.skipped: Set[str] = set()
        self.utilities: Dict[str, UtilityModule] = {}
        self._credentials: Optional[Dict[str, Any]] = None

    async def get_credentials(self) -> Dict[str, Any]:
        """Credential clients of the organization, loaded once per run."""
        if self._credentials is None:
            service = self.engine.credential_service
            self._credentials = await service.get_credentials(self.organization_id) if service else {}
        return self._credentials

    def predecessor_outputs(self, node_id: str) -> Dict[str, List[ExecutionItem]]:
        """Outputs of every ancestor that has run, keyed by node id, in node order."""
        ancestors = self.graph.predecessors(node_id)
        outputs: Dict[str, List[ExecutionItem]] = {}
        for node in self.graph.nodes:
            if node.id in ancestors and node.id in self.node_outputs:
                outputs[node.id] = self.node_outputs[node.id]
        return outputs


class NodeContext:
    """Execution context handed to a node executor."""

    def __init__(self, run: RunContext, node: Node):
        self.run = run
        self.node = node

    @property
    def engine(self) -> "WorkflowEngine":
        return self.run.engine

    @property
    def organization_id(self) -> str:
        return self.run.organization_id

    @property
    def workflow(self) -> WorkflowDefinition:
        return self.run.workflow

    async def get_credentials(self) -> Dict[str, Any]:
        return await self.run.get_credentials()

    def expression_resolver(self, item: ExecutionItem, index: int = 0, **extra: Any) -> ExpressionResolver:
        """
        Jinja2 resolver scoped to one item.

        Templates see `json`, `item`, `index`, `node`, `workflow` and
        `execution`, plus whatever the caller adds.
        """
        context = {
            "json": item.json_data,
            "item": item.to_dict(),
            "index": index,
            "node": {"id": self.node.id, "label": self.node.display_label, "type": self.node.type},
            "workflow": {"id": self.workflow.id, "name": self.workflow.name},
            "execution": {"id": self.run.execution_id},
            **extra,
        }
        return ExpressionResolver(context)
