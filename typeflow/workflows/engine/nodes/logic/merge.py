from typing import Dict, List

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.expressions.resolver import to_js_string
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import MergeConfig
from typeflow.workflows.engine.nodes.data.paths import get_nested_value
from typeflow.workflows.engine.nodes.registry import NodeRegistry


def merge_items(config: MergeConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    """
    Merge the concatenated fan-in input.

    `combine` by position zips the first half of the input with the second
    half; by key folds items sharing `joinField` into one, later values
    winning. `chooseBranch` keeps the first item only.
    """
    if config.mode == "combine":
        if config.combine_mode == "mergeByPosition":
            midpoint = len(items) // 2
            merged = [
                make_item({**items[i].json_data, **items[midpoint + i].json_data})
                for i in range(midpoint)
            ]
            return merged or items
        if config.combine_mode == "mergeByKey" and config.join_field:
            by_key: Dict[str, dict] = {}
            for item in items:
                key = to_js_string(get_nested_value(item.json_data, config.join_field))
                by_key[key] = {**by_key.get(key, {}), **item.json_data}
            return [make_item(json_data) for json_data in by_key.values()]
        return items

    if config.mode == "chooseBranch":
        return items[:1]

    # append, multiplex
    return items


@NodeRegistry.register
class MergeNode(BaseNode):
    kinds = (NodeKind.MERGE,)
    config_model = MergeConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return merge_items(self.parse_config(ctx.node), items)
