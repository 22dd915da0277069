from typing import Dict, List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ConditionalOutput, ExecutionItem
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import SwitchConfig
from typeflow.workflows.engine.nodes.logic.conditions import matches
from typeflow.workflows.engine.nodes.registry import NodeRegistry

FALLBACK_HANDLE = "fallback"


def route_switch(config: SwitchConfig, items: List[ExecutionItem]) -> ConditionalOutput:
    """First matching case wins; unmatched items go to "fallback" when enabled, else are dropped."""
    outputs: Dict[str, List[ExecutionItem]] = {case.id: [] for case in config.cases}
    if config.fallback_enabled:
        outputs[FALLBACK_HANDLE] = []

    for item in items:
        for case in config.cases:
            if case.conditions and matches(case.conditions, item.json_data, case.combine_with):
                outputs[case.id].append(item)
                break
        else:
            if config.fallback_enabled:
                outputs[FALLBACK_HANDLE].append(item)

    return ConditionalOutput(outputs=outputs)


@NodeRegistry.register
class SwitchNode(BaseNode):
    """Multi-way branching over ordered cases."""
    kinds = (NodeKind.SWITCH,)
    config_model = SwitchConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> ConditionalOutput:
        return route_switch(self.parse_config(ctx.node), items)
