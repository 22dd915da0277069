import logging
from typing import List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import CodeConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry
from typeflow.workflows.engine.runtime.code import predecessor_variables

logger = logging.getLogger(__name__)


@NodeRegistry.register
class CodeNode(BaseNode):
    """
    Runs user Python in the sandbox.

    Webhook response nodes share the implementation: their code builds the
    payload returned to the webhook caller.
    """
    kinds = (NodeKind.CODE, NodeKind.WEBHOOK_RESPONSE)
    config_model = CodeConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        config = self.parse_config(ctx.node)
        runtime = ctx.engine.code_runtime(ctx.organization_id)
        predecessors = predecessor_variables(
            (ctx.run.graph.get_node(node_id).display_label, output)
            for node_id, output in ctx.run.predecessor_outputs(ctx.node.id).items()
        )
        output = await runtime.run_code_node(
            config.code,
            items,
            predecessor_outputs=predecessors,
            utilities=ctx.run.utilities,
            credentials=await ctx.get_credentials(),
            type_definitions=ctx.workflow.type_definitions,
            label=ctx.node.display_label,
        )
        logger.info(f"Code node {ctx.node.display_label} returned {len(output)} items")
        return output
