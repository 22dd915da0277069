from typing import List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.registry import NodeRegistry


@NodeRegistry.register
class PassthroughNode(BaseNode):
    """
    Triggers, no-ops and utilities nodes hand their input on unchanged.
    Utilities code runs before the traversal, not here.
    """
    kinds = (NodeKind.TRIGGER, NodeKind.WEBHOOK, NodeKind.NOOP, NodeKind.UTILITIES)

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return items
