"""Per-project usage record of one package."""

from dataclasses import dataclass
from typing import Optional

from versioning import NuGetVersion, PackageIdentity, VersionRange

from .assets import AssetFlags
from .package_info import PackageInfo


@dataclass
class PackageUsage:
    """What one project consumes from one package.

    Created when a project's conversion starts, mutated while the project
    tree is classified and discarded once the reference is emitted.
    """
    info: PackageInfo
    is_development_dependency: bool = False
    is_missing_transitive_dependency: bool = False
    generate_path_property: bool = False
    used_assets: AssetFlags = AssetFlags.NONE
    allowed_versions: Optional[VersionRange] = None

    @property
    def identity(self) -> PackageIdentity:
        return self.info.identity

    @property
    def package_id(self) -> str:
        return self.info.identity.id

    @property
    def package_version(self) -> NuGetVersion:
        return self.info.identity.version

    def mark_used(self, assets: AssetFlags) -> None:
        """Record consumed assets, limited to what the package exposes on disk."""
        self.used_assets |= assets & self.info.available_assets
