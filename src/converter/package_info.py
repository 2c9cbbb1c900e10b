"""On-disk package metadata and the shared, thread-safe PackageInfo cache."""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from constants import AssetFolders, Constants
from common.logging_utils import extra_context, is_debug_enabled
from versioning import PackageIdentity

from .assets import AssetFlags, assets_for_folders
from .errors import ResolutionError

logger = logging.getLogger(__name__)

_ASSET_FOLDER_NAMES = frozenset(f.value for f in AssetFolders)


@dataclass(frozen=True)
class PackageInfo:
    """Install locations and available asset folders of one package identity."""
    identity: PackageIdentity
    repository_installed_path: Optional[str]
    global_installed_path: str
    available_folders: FrozenSet[str] = frozenset()

    @property
    def available_assets(self) -> AssetFlags:
        return assets_for_folders(self.available_folders)

    @property
    def is_installed(self) -> bool:
        """True when the package exists in the repository or global folder."""
        return bool(self.repository_installed_path) or os.path.isdir(self.global_installed_path)


def _has_real_files(path: str) -> bool:
    """True when any file other than the empty-folder marker exists below path."""
    for _, _, files in os.walk(path):
        for name in files:
            if name != Constants.EMPTY_FOLDER_MARKER:
                return True
    return False


def _scan_asset_folders(install_path: Optional[str]) -> FrozenSet[str]:
    if not install_path or not os.path.isdir(install_path):
        return frozenset()
    found = set()
    for entry in os.scandir(install_path):
        name = entry.name.lower()
        if entry.is_dir() and name in _ASSET_FOLDER_NAMES and _has_real_files(entry.path):
            found.add(name)
    return frozenset(found)


class PackageInfoCache:
    """Get-or-create cache of PackageInfo keyed by identity.

    One instance is shared by every project of a repository conversion run.
    """

    def __init__(self, repository_path: str, global_packages_folder: str):
        self.repository_path = os.path.abspath(repository_path)
        self.global_packages_folder = os.path.abspath(global_packages_folder)
        self._packages: Dict[PackageIdentity, PackageInfo] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._packages)

    def get(self, identity: PackageIdentity, require_installed: bool = True) -> PackageInfo:
        """Return the PackageInfo for identity, creating it on first use.

        Raises:
            ResolutionError: If require_installed is set and the package is
                neither in the repository nor in the global packages folder.
        """
        with self._lock:
            info = self._packages.get(identity)
            if info is None:
                info = self._create(identity)
                self._packages[identity] = info
        if require_installed and not info.is_installed:
            raise ResolutionError(
                f"Package {identity} is not installed in \"{self.repository_path}\" "
                f"or \"{self.global_packages_folder}\"; restore the solution before converting"
            )
        return info

    def global_install_path(self, identity: PackageIdentity) -> str:
        """``<global>/<id lower>/<normalized version lower>``."""
        return os.path.join(
            self.global_packages_folder,
            identity.id.lower(),
            identity.version.normalized.lower(),
        )

    def repository_install_path(self, identity: PackageIdentity) -> Optional[str]:
        """``<repository>/<Id>.<Version>`` when it exists on disk."""
        candidates = [f"{identity.id}.{identity.version.normalized}"]
        if identity.version.original and identity.version.original != identity.version.normalized:
            candidates.insert(0, f"{identity.id}.{identity.version.original}")
        for name in candidates:
            path = os.path.join(self.repository_path, name)
            if os.path.isdir(path):
                return path
        if not os.path.isdir(self.repository_path):
            return None
        # Folder names are case-insensitive on the platforms NuGet writes them from
        wanted = {name.lower() for name in candidates}
        for entry in os.scandir(self.repository_path):
            if entry.is_dir() and entry.name.lower() in wanted:
                return entry.path
        return None

    def _create(self, identity: PackageIdentity) -> PackageInfo:
        repository_path = self.repository_install_path(identity)
        global_path = self.global_install_path(identity)
        scan_root = global_path if os.path.isdir(global_path) else repository_path
        folders = _scan_asset_folders(scan_root)
        if is_debug_enabled(logger):
            logger.debug(
                "Package info created",
                extra=extra_context(
                    event="package_info",
                    component="package_info",
                    action="create",
                    package=str(identity),
                    folders=sorted(folders),
                ),
            )
        return PackageInfo(
            identity=identity,
            repository_installed_path=repository_path,
            global_installed_path=global_path,
            available_folders=folders,
        )
