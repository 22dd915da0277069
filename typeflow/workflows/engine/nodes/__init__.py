"""
Workflow Nodes Package

Built-in node executors register themselves with `NodeRegistry` when their
module is imported; importing this package imports all of them. External
node types come from packages on disk through `NodePackageLoader`.
"""

from .registry import NodeRegistry
from .loader import NodePackageLoader

from .actions import code, custom, database, external, http_request, subworkflow, utility  # noqa: F401
from .data import date_time, transform  # noqa: F401
from .logic import if_node, merge, switch, throw_error, wait  # noqa: F401

__all__ = ["NodeRegistry", "NodePackageLoader"]
