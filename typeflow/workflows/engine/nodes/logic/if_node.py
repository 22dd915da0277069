from typing import Dict, List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ConditionalOutput, ExecutionItem
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import IfConfig
from typeflow.workflows.engine.nodes.logic.conditions import matches
from typeflow.workflows.engine.nodes.registry import NodeRegistry

TRUE_HANDLE = "true"
FALSE_HANDLE = "false"
ELSE_HANDLE = "else"


def route_if(config: IfConfig, items: List[ExecutionItem]) -> ConditionalOutput:
    """
    Route items to branch handles.

    Without branches this is a plain true/false split on `conditions` (every
    item goes to "true" when there are none). With branches, each item goes
    to the first branch whose conditions match, else to "else" when enabled.
    """
    if not config.branches:
        if not config.conditions:
            return ConditionalOutput(outputs={TRUE_HANDLE: list(items), FALSE_HANDLE: []})
        true_items, false_items = [], []
        for item in items:
            if matches(config.conditions, item.json_data, config.combine_with):
                true_items.append(item)
            else:
                false_items.append(item)
        return ConditionalOutput(outputs={TRUE_HANDLE: true_items, FALSE_HANDLE: false_items})

    outputs: Dict[str, List[ExecutionItem]] = {branch.id: [] for branch in config.branches}
    if config.else_enabled:
        outputs[ELSE_HANDLE] = []

    for item in items:
        for branch in config.branches:
            # a branch without conditions never matches
            if branch.conditions and matches(branch.conditions, item.json_data, branch.combine_with):
                outputs[branch.id].append(item)
                break
        else:
            if config.else_enabled:
                outputs[ELSE_HANDLE].append(item)

    return ConditionalOutput(outputs=outputs)


@NodeRegistry.register
class IfNode(BaseNode):
    """Conditional branching (if / else if / else)."""
    kinds = (NodeKind.IF,)
    config_model = IfConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> ConditionalOutput:
        return route_if(self.parse_config(ctx.node), items)
