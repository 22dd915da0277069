import logging
import re
from pathlib import Path
from typing import List, Optional

from typeflow.config import settings

logger = logging.getLogger(__name__)

SAFE_ORGANIZATION_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class PackageManager:
    """
    Locates each organization's private package directory.

    Packages are installed (outside the engine) into
    `<root>/<organization_id>/site-packages`; sandboxed code imports from
    there before the host environment.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.PACKAGES_ROOT)

    def _organization_path(self, organization_id: str) -> Path:
        if not SAFE_ORGANIZATION_ID.match(organization_id) or organization_id in (".", ".."):
            raise ValueError(f"Invalid organization id: {organization_id!r}")
        return self.root / organization_id

    def get_packages_path(self, organization_id: str) -> Path:
        return self._organization_path(organization_id) / "site-packages"

    def ensure_packages_dir(self, organization_id: str) -> Path:
        path = self.get_packages_path(organization_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def list_installed(self, organization_id: str) -> List[str]:
        """Distribution names installed for the organization (from `*.dist-info`)."""
        path = self.get_packages_path(organization_id)
        if not path.is_dir():
            return []
        names = []
        for info in sorted(path.glob("*.dist-info")):
            names.append(info.name[: -len(".dist-info")].rsplit("-", 1)[0])
        return names
