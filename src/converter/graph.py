"""Graph membership reasoning: missing transitive dependencies and trimming."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Sequence, Set, Tuple

from versioning import PackageIdentity

from .errors import AmbiguousUsageWarning
from .package_info import PackageInfoCache
from .usage import PackageUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyGraphNode:
    """One resolved library and the identities it depends on."""
    identity: PackageIdentity
    dependencies: FrozenSet[PackageIdentity] = field(default_factory=frozenset)
    is_package: bool = True


def package_nodes(graph: Iterable[DependencyGraphNode]) -> List[DependencyGraphNode]:
    """Only package-type nodes of a flattened graph."""
    return [node for node in graph if node.is_package]


def detect_missing_dependencies(
    usages: Sequence[PackageUsage],
    graph: Iterable[DependencyGraphNode],
    package_infos: PackageInfoCache,
    location: str,
) -> Tuple[List[PackageUsage], List[AmbiguousUsageWarning]]:
    """Append a usage for every graph package whose id was never declared.

    Declared ids are compared case-insensitively; a node with a declared id
    but a different version is not treated as missing.
    """
    augmented = list(usages)
    declared: Set[str] = {u.package_id.lower() for u in usages}
    warnings: List[AmbiguousUsageWarning] = []

    for node in package_nodes(graph):
        key = node.identity.id.lower()
        if key in declared:
            continue
        declared.add(key)
        info = package_infos.get(node.identity, require_installed=False)
        augmented.append(PackageUsage(info=info, is_missing_transitive_dependency=True))
        warnings.append(AmbiguousUsageWarning(
            location,
            f"The transitive package dependency \"{node.identity}\" was not in the packages.config. "
            "After converting to PackageReference, new dependencies will be pulled in transitively "
            "which could lead to restore or build errors",
            node.identity.id,
        ))
    return augmented, warnings


def trim_packages(
    usages: Sequence[PackageUsage],
    graph: Iterable[DependencyGraphNode],
    location: str,
) -> Tuple[List[PackageUsage], List[AmbiguousUsageWarning]]:
    """Drop usages already pulled in as a dependency of another package."""
    non_top_level: Set[str] = {
        dependency.id.lower()
        for node in package_nodes(graph)
        for dependency in node.dependencies
        if dependency.id.lower() != node.identity.id.lower()
    }
    retained: List[PackageUsage] = []
    warnings: List[AmbiguousUsageWarning] = []
    for usage in usages:
        if usage.package_id.lower() not in non_top_level:
            retained.append(usage)
            continue
        allowed = f" AllowedVersions {usage.allowed_versions}" if usage.allowed_versions else ""
        warnings.append(AmbiguousUsageWarning(
            location,
            f"The transitive package dependency {usage.package_id} {usage.package_version}{allowed} will be "
            "removed because it is referenced by another package in this dependency graph",
            usage.package_id,
        ))
    return retained, warnings
