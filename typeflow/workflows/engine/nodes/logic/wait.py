import asyncio
import logging
from typing import List

from typeflow.config import settings
from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import WaitConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)

UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}


def wait_seconds(config: WaitConfig, max_seconds: float) -> float:
    seconds = (config.wait_time or 1) * UNIT_SECONDS.get(config.unit, 1)
    return max(0.0, min(seconds, max_seconds))


@NodeRegistry.register
class WaitNode(BaseNode):
    """Pauses the run for a configured duration, then passes input through."""
    kinds = (NodeKind.WAIT,)
    config_model = WaitConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        seconds = wait_seconds(self.parse_config(ctx.node), settings.WAIT_NODE_MAX_SECONDS)
        logger.info(f"Node {ctx.node.display_label} waiting {seconds}s")
        await asyncio.sleep(seconds)
        return items
