import importlib
import logging
import sys
import threading
from pathlib import Path
from types import ModuleType
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ModuleResolver:
    """
    The `require` object handed to sandboxed code.

    Modules installed for the organization (under its packages path) win over
    the host environment. Imported modules land in the process-wide
    `sys.modules`, so two organizations shipping the same top-level package
    name share whichever was imported first.
    """

    # sys.path is process global; only one thread may patch it at a time
    _path_lock = threading.Lock()

    def __init__(self, packages_path: Optional[Path] = None):
        self.packages_path = Path(packages_path) if packages_path else None

    def __call__(self, name: str) -> ModuleType:
        return self.require(name)

    def _provides(self, top_level: str) -> bool:
        if not self.packages_path or not self.packages_path.is_dir():
            return False
        if (self.packages_path / top_level).is_dir():
            return True
        return any(self.packages_path.glob(f"{top_level}.*"))

    def require(self, name: str) -> ModuleType:
        if not name or name.startswith("."):
            raise ImportError(f"Cannot require '{name}': only absolute module names are supported")

        top_level = name.split(".")[0]
        if top_level not in sys.modules and self._provides(top_level):
            packages_dir = str(self.packages_path)
            with self._path_lock:
                sys.path.insert(0, packages_dir)
                try:
                    logger.debug(f"Importing {name} from {packages_dir}")
                    return importlib.import_module(name)
                finally:
                    sys.path.remove(packages_dir)

        return importlib.import_module(name)

    def attribute(self, module_name: str, attribute: str) -> Any:
        """`from module import attribute`: an attribute, or else a submodule of that name."""
        module = self.require(module_name)
        try:
            return getattr(module, attribute)
        except AttributeError:
            try:
                return self.require(f"{module_name}.{attribute}")
            except ModuleNotFoundError:
                raise ImportError(f"cannot import name '{attribute}' from '{module_name}'") from None
