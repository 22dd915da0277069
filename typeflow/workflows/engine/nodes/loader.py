"""
External Node Loader

External nodes are node types that are neither built in nor custom. They
come from node packages on disk:

    <packages_dir>/<category>/<package>/manifest.json
    <packages_dir>/<category>/<package>/backend/execute.py   (optional)

A package whose backend defines `execute(context)` runs programmatically.
A package without one is declarative: its manifest describes how each
property maps onto an HTTP request (`requestDefaults` + `routing`).
"""

import importlib.util
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class NodeTypeDescription:
    name: str
    display_name: str = ""
    version: str = "1.0.0"
    properties: List[Dict[str, Any]] = field(default_factory=list)
    credentials: List[Dict[str, Any]] = field(default_factory=list)
    request_defaults: Dict[str, Any] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "NodeTypeDescription":
        return cls(
            name=manifest["id"],
            display_name=manifest.get("name", manifest["id"]),
            version=str(manifest.get("version", "1.0.0")),
            properties=list(manifest.get("properties") or []),
            credentials=list(manifest.get("credentials") or []),
            request_defaults=dict(manifest.get("requestDefaults") or {}),
            defaults=dict(manifest.get("defaults") or {}),
        )


@dataclass
class LoadedNodeType:
    """A resolvable external node type."""
    description: NodeTypeDescription
    execute: Optional[Callable] = None
    validate: Optional[Callable] = None
    package_dir: Optional[Path] = None

    @property
    def has_routing(self) -> bool:
        if self.description.request_defaults:
            return True
        for prop in self.description.properties:
            if prop.get("routing"):
                return True
            if any(option.get("routing") for option in prop.get("options") or [] if isinstance(option, dict)):
                return True
        return False


class NodeLoader(Protocol):
    def has_node(self, node_type: str) -> bool: ...

    def get_node(self, node_type: str) -> Optional[LoadedNodeType]: ...


class NodePackageLoader:
    """
    Loads external node packages from the filesystem.

    Usage:
        loader = NodePackageLoader(Path("node_packages"))
        loader.discover_nodes()
        loader.get_node("weather.current")
    """

    REQUIRED_FIELDS = ("id", "name", "version")

    def __init__(self, packages_dir: Path):
        self.packages_dir = Path(packages_dir)
        self.loaded_nodes: Dict[str, LoadedNodeType] = {}
        self._discovered = False

    def discover_nodes(self) -> List[LoadedNodeType]:
        """Scan `<category>/<package>` directories and load every valid package."""
        nodes: List[LoadedNodeType] = []
        self._discovered = True

        if not self.packages_dir.exists():
            logger.warning(f"Node packages directory {self.packages_dir} does not exist")
            return nodes

        for category_dir in sorted(self.packages_dir.iterdir()):
            if not category_dir.is_dir() or category_dir.name.startswith("_"):
                continue
            for package_dir in sorted(category_dir.iterdir()):
                if not package_dir.is_dir() or package_dir.name.startswith("_"):
                    continue
                if not (package_dir / "manifest.json").exists():
                    logger.warning(f"Skipping {package_dir.name}: no manifest.json")
                    continue
                try:
                    node = self._load_node_package(package_dir)
                except (ValueError, OSError, ImportError, SyntaxError) as e:
                    logger.error(f"Failed to load node {package_dir.name}: {e}")
                    continue
                nodes.append(node)
                self.loaded_nodes[node.description.name] = node
                logger.info(f"Loaded node: {node.description.display_name} v{node.description.version}")

        logger.info(f"Loaded {len(nodes)} external node types")
        return nodes

    def _load_node_package(self, package_dir: Path) -> LoadedNodeType:
        with open(package_dir / "manifest.json", "r", encoding="utf-8") as f:
            manifest = json.load(f)
        self._validate_manifest(manifest)

        execute_fn = None
        validate_fn = None
        execute_module_path = package_dir / "backend" / "execute.py"
        if execute_module_path.exists():
            spec = importlib.util.spec_from_file_location(
                f"typeflow_node_packages.{manifest['id']}.execute", execute_module_path
            )
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            execute_fn = getattr(module, "execute", None)
            validate_fn = getattr(module, "validate", None)

        node = LoadedNodeType(
            description=NodeTypeDescription.from_manifest(manifest),
            execute=execute_fn,
            validate=validate_fn,
            package_dir=package_dir,
        )
        if node.execute is None and not node.has_routing:
            raise ValueError(f"Node package {package_dir.name} has neither execute() nor routing")
        return node

    def _validate_manifest(self, manifest: Dict[str, Any]) -> None:
        for required in self.REQUIRED_FIELDS:
            if required not in manifest:
                raise ValueError(f"Manifest missing required field: {required}")

    def _ensure_discovered(self) -> None:
        if not self._discovered:
            self.discover_nodes()

    def has_node(self, node_type: str) -> bool:
        self._ensure_discovered()
        return node_type in self.loaded_nodes

    def get_node(self, node_type: str) -> Optional[LoadedNodeType]:
        self._ensure_discovered()
        return self.loaded_nodes.get(node_type)

    def list_nodes(self) -> List[Dict[str, Any]]:
        self._ensure_discovered()
        return [
            {
                "name": node.description.name,
                "displayName": node.description.display_name,
                "version": node.description.version,
                "style": "programmatic" if node.execute else "declarative",
            }
            for node in self.loaded_nodes.values()
        ]
