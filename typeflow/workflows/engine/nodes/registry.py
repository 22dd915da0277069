"""
Node Registry

Dispatch table from node kind to its executor. Node classes register
themselves with the `@NodeRegistry.register` decorator when
`typeflow.workflows.engine.nodes` is imported.
"""

import logging
from typing import Dict, List, Optional, Type

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.nodes.base import BaseNode

logger = logging.getLogger(__name__)


class NodeRegistry:
    """Central registry for built-in node executors."""

    _nodes: Dict[NodeKind, BaseNode] = {}

    @classmethod
    def register(cls, node_cls: Type[BaseNode]) -> Type[BaseNode]:
        instance = node_cls()
        for kind in node_cls.kinds:
            if kind in cls._nodes:
                logger.warning(f"Node kind {kind.value} re-registered by {node_cls.__name__}")
            cls._nodes[kind] = instance
        return node_cls

    @classmethod
    def get(cls, kind: NodeKind) -> Optional[BaseNode]:
        return cls._nodes.get(kind)

    @classmethod
    def kinds(cls) -> List[NodeKind]:
        return list(cls._nodes)
