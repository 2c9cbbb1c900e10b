"""Asset categories and the include/exclude/private flag calculation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Flag
from typing import Dict, Optional, TYPE_CHECKING

from constants import AssetFolders

if TYPE_CHECKING:
    from .usage import PackageUsage


class AssetFlags(Flag):
    """Asset categories a package can contribute to a consuming project."""

    NONE = 0
    BUILD = 1
    COMPILE = 2
    RUNTIME = 4
    ANALYZERS = 8
    ALL = BUILD | COMPILE | RUNTIME | ANALYZERS


# Rendering order for metadata values
_ORDERED = (
    (AssetFlags.BUILD, "Build"),
    (AssetFlags.COMPILE, "Compile"),
    (AssetFlags.RUNTIME, "Runtime"),
    (AssetFlags.ANALYZERS, "Analyzers"),
)

FOLDER_ASSETS: Dict[str, AssetFlags] = {
    AssetFolders.BUILD.value: AssetFlags.BUILD,
    AssetFolders.LIB.value: AssetFlags.COMPILE | AssetFlags.RUNTIME,
    AssetFolders.ANALYZERS.value: AssetFlags.ANALYZERS,
}


def assets_for_folders(folders) -> AssetFlags:
    """Map package folder names (build/lib/analyzers) to asset flags."""
    flags = AssetFlags.NONE
    for name in folders:
        flags |= FOLDER_ASSETS.get(name.lower(), AssetFlags.NONE)
    return flags


def format_flags(flags: AssetFlags, available: Optional[AssetFlags] = None) -> str:
    """Render flags as MSBuild metadata.

    A set equal to every category, or to the package's whole available set,
    collapses to ``All``.
    """
    if flags == AssetFlags.NONE:
        return "None"
    if flags == AssetFlags.ALL or (available and flags == available):
        return "All"
    return ";".join(name for flag, name in _ORDERED if flag in flags)


@dataclass(frozen=True)
class AssetFlagSet:
    """Computed flags for one emitted PackageReference."""
    include: AssetFlags
    exclude: AssetFlags
    private: AssetFlags
    available: AssetFlags = AssetFlags.NONE
    generate_path_property: bool = False

    def to_metadata(self) -> Dict[str, str]:
        """Metadata attributes that differ from the MSBuild defaults."""
        metadata: Dict[str, str] = {}
        if self.include != AssetFlags.ALL:
            metadata["IncludeAssets"] = format_flags(self.include, self.available)
        if self.exclude != AssetFlags.NONE:
            metadata["ExcludeAssets"] = format_flags(self.exclude, self.available)
        if self.private != AssetFlags.NONE:
            metadata["PrivateAssets"] = format_flags(self.private, self.available)
        if self.generate_path_property:
            metadata["GeneratePathProperty"] = "true"
        return metadata


def compute_asset_flags(usage: "PackageUsage") -> AssetFlagSet:
    """Derive include/exclude/private flags from available and used assets."""
    available = usage.info.available_assets
    if usage.is_missing_transitive_dependency:
        return AssetFlagSet(
            include=AssetFlags.NONE,
            exclude=AssetFlags.NONE,
            private=AssetFlags.ALL,
            available=available,
            generate_path_property=usage.generate_path_property,
        )

    # Anything physically present but never consumed is excluded
    exclude = available & ~usage.used_assets
    private = AssetFlags.ALL if usage.is_development_dependency else AssetFlags.NONE
    return AssetFlagSet(
        include=AssetFlags.ALL,
        exclude=exclude,
        private=private,
        available=available,
        generate_path_property=usage.generate_path_property,
    )
