from typing import List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.errors import ThrowErrorNodeError
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import ThrowErrorConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry


@NodeRegistry.register
class ThrowErrorNode(BaseNode):
    """Always fails; used to abort a workflow on purpose."""
    kinds = (NodeKind.THROW_ERROR,)
    config_model = ThrowErrorConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        config = self.parse_config(ctx.node)
        raise ThrowErrorNodeError(config.error_type or "Error", config.error_message or "An error occurred")
