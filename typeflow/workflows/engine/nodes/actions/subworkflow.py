import logging
from typing import List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.errors import EngineError, NodeConfigurationError, SubworkflowError
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import ExecuteWorkflowConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)


@NodeRegistry.register
class ExecuteWorkflowNode(BaseNode):
    """
    Runs another workflow of the same organization.

    `once` runs it a single time with all items as trigger data; `foreach`
    runs it per item and concatenates the outputs.
    """
    kinds = (NodeKind.EXECUTE_WORKFLOW,)
    config_model = ExecuteWorkflowConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        config = self.parse_config(ctx.node)
        if not config.workflow_id:
            raise NodeConfigurationError("No workflow configured for Execute Workflow node")

        try:
            if config.mode == "foreach":
                return await self._run_per_item(ctx, config.workflow_id, items)
            return await self._run_once(ctx, config.workflow_id, items)
        except SubworkflowError:
            raise
        except EngineError as e:
            raise SubworkflowError(f"Subworkflow execution failed: {e}") from e

    async def _run_once(self, ctx: NodeContext, workflow_id: str, items: List[ExecutionItem]) -> List[ExecutionItem]:
        trigger_data = {
            "items": [item.to_dict() for item in items],
            "json": items[0].json_data if items else {},
        }
        logger.info(f"Node {ctx.node.display_label} running subworkflow {workflow_id}")
        result = await ctx.engine.execute_workflow(workflow_id, ctx.organization_id, trigger_data)
        if not result.success:
            raise SubworkflowError(f"Subworkflow failed: {result.error or 'Unknown error'}")
        return result.final_output or [make_item({"success": True})]

    async def _run_per_item(self, ctx: NodeContext, workflow_id: str, items: List[ExecutionItem]) -> List[ExecutionItem]:
        outputs: List[ExecutionItem] = []
        for index, item in enumerate(items):
            trigger_data = {"item": item.json_data, "index": index, "json": item.json_data}
            result = await ctx.engine.execute_workflow(workflow_id, ctx.organization_id, trigger_data)
            if not result.success:
                raise SubworkflowError(
                    f"Subworkflow failed for item {index + 1}: {result.error or 'Unknown error'}"
                )
            if result.final_output:
                outputs.extend(result.final_output)
            else:
                outputs.append(make_item({"success": True, "itemIndex": index}))
        return outputs
