from typing import Any, ClassVar, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ConditionalOutput, ExecutionItem, Node
from typeflow.workflows.engine.errors import NodeConfigurationError

NodeOutput = Union[List[ExecutionItem], ConditionalOutput]


class BaseNode:
    """
    A built-in node executor.

    `kinds` are the node types it handles; `config_model` parses the node's
    raw config at execution time (None keeps the raw dict).
    """

    kinds: ClassVar[Tuple[NodeKind, ...]] = ()
    config_model: ClassVar[Optional[Type[BaseModel]]] = None

    def parse_config(self, node: Node) -> Any:
        if self.config_model is None:
            return node.config
        try:
            return self.config_model.model_validate(node.config)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise NodeConfigurationError(
                f"Invalid {node.type} configuration at '{location}': {first.get('msg')}"
            ) from e

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> NodeOutput:
        raise NotImplementedError
