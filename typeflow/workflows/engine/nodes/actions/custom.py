"""
custom_<name> nodes: node types an organization defines itself.

The definition (properties with defaults, credentials, Python body) is
loaded from the workflow repository and the body runs in the code sandbox
with node-style helpers instead of the code-node ambient names.
"""

import logging
from typing import Any, Dict, List

from typeflow.config import settings
from typeflow.workflows.engine.constants import CUSTOM_NODE_PREFIX, NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import CustomNodeDefinition, ExecutionItem, make_item
from typeflow.workflows.engine.errors import NodeConfigurationError
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.registry import NodeRegistry
from typeflow.workflows.engine.runtime.code import SandboxConsole

logger = logging.getLogger(__name__)


class InputHelper:
    """`_input` inside a custom node."""

    def __init__(self, items: List[ExecutionItem]):
        self._items = [item.to_dict() for item in items]

    def all(self) -> List[Dict[str, Any]]:
        return self._items

    def first(self) -> Dict[str, Any]:
        return self._items[0] if self._items else {"json": {}}

    def last(self) -> Dict[str, Any]:
        return self._items[-1] if self._items else {"json": {}}

    def item(self, index: int) -> Dict[str, Any]:
        if 0 <= index < len(self._items):
            return self._items[index]
        return {"json": {}}


def resolve_parameters(definition: CustomNodeDefinition, node_config: Dict[str, Any]) -> Dict[str, Any]:
    """Declared properties only; node config wins over the property default."""
    config = {}
    for prop in definition.properties:
        name = prop.get("name")
        if not name:
            continue
        config[name] = node_config[name] if node_config.get(name) is not None else prop.get("default")
    return config


def normalize_custom_result(result: Any, items: List[ExecutionItem]) -> List[ExecutionItem]:
    if isinstance(result, (list, tuple)):
        result = list(result)
        if not result:
            return [make_item()]
        first = result[0]
        if isinstance(first, ExecutionItem) or (isinstance(first, dict) and "json" in first):
            return [e if isinstance(e, ExecutionItem) else ExecutionItem.model_validate(e) for e in result]
        return [make_item(e if isinstance(e, dict) else {"value": e}) for e in result]
    if isinstance(result, dict):
        return [make_item(result)]
    # nothing usable returned
    return items


@NodeRegistry.register
class CustomNode(BaseNode):
    kinds = (NodeKind.CUSTOM,)

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        type_name = ctx.node.type[len(CUSTOM_NODE_PREFIX):]
        definition = await ctx.engine.repository.get_custom_node(ctx.organization_id, type_name)
        if definition is None:
            raise NodeConfigurationError(f"Custom node type '{type_name}' not found")

        if not definition.execute_code or not definition.execute_code.strip():
            return items

        parameters = resolve_parameters(definition, ctx.node.config)

        credentials: Dict[str, Any] = {}
        if definition.credentials:
            try:
                credentials = await ctx.get_credentials()
            except Exception as e:
                logger.warning(f"Failed to load credentials for custom node {type_name}: {e}")

        helper = InputHelper(items)

        def get_node_parameter(name: str, item_index: int = 0) -> Any:
            return parameters.get(name)

        def get_credentials(name: str) -> Any:
            return credentials.get(name) or {}

        runtime = ctx.engine.code_runtime(ctx.organization_id)
        console = SandboxConsole(ctx.node.display_label)
        namespace = {
            "_input": helper,
            "_item": helper.item,
            "get_node_parameter": get_node_parameter,
            "get_credentials": get_credentials,
            "console": console,
            "print": console.print,
            "require": runtime.module_resolver,
        }

        result = await runtime.run_user_function(
            definition.execute_code,
            namespace,
            timeout_ms=settings.CUSTOM_NODE_TIMEOUT_MS,
            error_prefix="Custom node execution failed: ",
        )
        return normalize_custom_result(result, items)
