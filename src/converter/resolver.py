"""Dependency graph resolution from nuspec metadata.

Dependencies of a package are read from, in order: the extracted nuspec in
the global packages folder, the nuspec inside the ``.nupkg`` in the
repository packages folder, and the nuget.org registration/catalog API.
Each dependency resolves to the lower bound of its version range.
"""
from __future__ import annotations

import glob
import logging
import os
import re
import threading
import urllib.parse
import xml.etree.ElementTree as ET
import zipfile
from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple

from constants import Constants
from common.http_client import get_json
from common.logging_utils import extra_context, is_debug_enabled, Timer
from versioning import NuGetVersion, PackageIdentity, VersionRange, parse_range

from .errors import ResolutionError
from .graph import DependencyGraphNode
from .package_info import PackageInfo, PackageInfoCache

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}

Framework = Tuple[str, Tuple[int, ...]]
DependencyGroup = Tuple[Optional[Framework], List[Tuple[str, VersionRange]]]
# (lowercased id, id as written, lower bound)
Edge = Tuple[str, str, NuGetVersion]

_MAX_RESOLVE_PASSES = 16

_SHORT_FRAMEWORK_RE = re.compile(r"^(?P<family>netstandard|netcoreapp|net)(?P<version>\d[\d\.]*)$")
_LONG_FRAMEWORK_RE = re.compile(
    r"^\.(?P<family>netframework|netstandard|netcoreapp)(?:,version=v?|\s*)(?P<version>\d[\d\.]*)$"
)
_LONG_FAMILIES = {"netframework": "net", "netstandard": "netstandard", "netcoreapp": "netcoreapp"}

# Highest .NET Standard each .NET Framework version implements
# Versions are written without trailing zeros, matching parse_framework
_NET_FRAMEWORK_STANDARD = (
    ((4, 6, 1), (2,)),
    ((4, 6), (1, 3)),
    ((4, 5, 1), (1, 2)),
    ((4, 5), (1, 1)),
)
_NETCOREAPP_STANDARD = (
    ((3,), (2, 1)),
    ((2,), (2,)),
    ((1,), (1, 6)),
)


def _version_tuple(text: str, dotted: bool) -> Tuple[int, ...]:
    parts = text.split(".") if dotted else list(text)
    values = tuple(int(p) for p in parts if p != "")
    while len(values) > 1 and values[-1] == 0:
        values = values[:-1]
    return values


def parse_framework(value: Optional[str]) -> Optional[Framework]:
    """Parse a target framework moniker (``net45``, ``.NETStandard2.0``, ...).

    Returns None for an empty value or ``any``.
    """
    if not value or value.strip().lower() in ("any", "agnostic"):
        return None
    text = value.strip().lower()
    m = _SHORT_FRAMEWORK_RE.match(text)
    if m:
        family, version = m.group("family"), m.group("version")
        if family == "net" and "." not in version:
            return "net", _version_tuple(version, dotted=False)
        if family == "net":
            # net5.0 and later are .NET Core
            return "netcoreapp", _version_tuple(version, dotted=True)
        return family, _version_tuple(version, dotted=True)
    m = _LONG_FRAMEWORK_RE.match(text)
    if m:
        return _LONG_FAMILIES[m.group("family")], _version_tuple(m.group("version"), dotted=True)
    return f"unknown:{text}", ()


def _max_standard(target: Framework) -> Optional[Tuple[int, ...]]:
    family, version = target
    table = _NET_FRAMEWORK_STANDARD if family == "net" else _NETCOREAPP_STANDARD if family == "netcoreapp" else ()
    for minimum, standard in table:
        if version >= minimum:
            return standard
    return None


def select_dependency_group(groups: Sequence[DependencyGroup], target: Optional[Framework]):
    """Pick the nearest compatible dependency group for the target framework."""
    best = None
    best_score = None
    standard = _max_standard(target) if target is not None else None
    for framework, dependencies in groups:
        # Higher scores win: same family, then .NET Standard, then framework-less
        if framework is None:
            score = (0, ())
        elif target is None:
            continue
        elif framework[0] == target[0] and framework[1] <= target[1]:
            score = (2, framework[1])
        elif framework[0] == "netstandard" and standard and framework[1] <= standard:
            score = (1, framework[1])
        else:
            continue
        if best_score is None or score > best_score:
            best, best_score = dependencies, score
    return best or []


def _reachable_requirements(roots: Dict[str, PackageIdentity],
                            edges: Dict[str, List[Edge]]) -> Dict[str, PackageIdentity]:
    """Highest lower bound per transitive id over the packages reachable from roots."""
    required: Dict[str, PackageIdentity] = {}
    seen = set()
    stack = list(roots)
    while stack:
        key = stack.pop()
        if key in seen:
            continue
        seen.add(key)
        for dep_key, dep_id, minimum in edges.get(key, []):
            if dep_key not in roots:
                current = required.get(dep_key)
                if current is None or minimum > current.version:
                    required[dep_key] = PackageIdentity(dep_id, minimum)
            stack.append(dep_key)
    return required


def parse_nuspec_dependencies(data: bytes) -> List[DependencyGroup]:
    """Read dependency groups from nuspec XML."""
    root = ET.fromstring(data)
    # Remove namespace for easier parsing
    for elem in root.iter():
        if isinstance(elem.tag, str) and '}' in elem.tag:
            elem.tag = elem.tag.split('}')[1]
    dependencies = root.find("./metadata/dependencies")
    if dependencies is None:
        return []

    def _entries(parent) -> List[Tuple[str, VersionRange]]:
        return [(d.get("id"), parse_range(d.get("version") or "")) for d in parent.findall("dependency")]

    groups = dependencies.findall("group")
    if not groups:
        return [(None, _entries(dependencies))]
    return [(parse_framework(g.get("targetFramework")), _entries(g)) for g in groups]


class DependencyResolver:
    """Builds the flattened dependency graph for a project's packages."""

    def __init__(self, package_infos: PackageInfoCache, remote_enabled: Optional[bool] = None):
        self.package_infos = package_infos
        self.remote_enabled = Constants.REMOTE_METADATA_ENABLED if remote_enabled is None else remote_enabled
        self._groups: Dict[PackageIdentity, List[DependencyGroup]] = {}
        self._lock = threading.Lock()

    def resolve(self, target_framework: Optional[str],
                requests: Sequence[PackageIdentity]) -> List[DependencyGraphNode]:
        """Resolve requests and their transitive dependencies.

        Declared versions always win; among transitive candidates for one id
        the highest lower bound wins. Only requirements of packages still
        reachable from the requests count, so a package pulled in by a
        version that was later replaced drops out of the graph.

        Raises:
            ResolutionError: If the metadata of a package in the graph cannot
                be found or a dependency range has no lower bound.
        """
        target = parse_framework(target_framework)
        roots: Dict[str, PackageIdentity] = {}
        for request in requests:
            current = roots.get(request.id.lower())
            if current is None or request.version > current.version:
                roots[request.id.lower()] = request
        chosen = dict(roots)
        failures: Dict[PackageIdentity, ResolutionError] = {}

        with Timer() as t:
            for _ in range(_MAX_RESOLVE_PASSES):
                edges = self._expand(chosen, roots, target, failures)
                settled = dict(roots)
                settled.update(_reachable_requirements(roots, edges))
                if settled == chosen:
                    break
                chosen = settled
            else:
                raise ResolutionError(
                    f"Dependency versions did not settle after {_MAX_RESOLVE_PASSES} passes"
                )

        for identity in chosen.values():
            if identity in failures:
                raise failures[identity]

        if is_debug_enabled(logger):
            logger.debug(
                "Dependency graph resolved",
                extra=extra_context(
                    event="resolve",
                    component="resolver",
                    action="resolve",
                    framework=target_framework,
                    requested=len(requests),
                    resolved=len(chosen),
                    duration_ms=t.duration_ms(),
                ),
            )
        return [
            DependencyGraphNode(
                identity=identity,
                dependencies=frozenset(chosen[d] for d, _, _ in edges.get(key, []) if d in chosen),
            )
            for key, identity in chosen.items()
        ]

    def _expand(self, chosen: Dict[str, PackageIdentity], roots: Dict[str, PackageIdentity],
                target: Optional[Framework],
                failures: Dict[PackageIdentity, ResolutionError]) -> Dict[str, List[Edge]]:
        """Breadth-first expansion of chosen, raising transitive versions in place.

        Packages whose metadata cannot be read are recorded in failures and
        treated as leaves; they only fail the resolution if they survive.
        """
        edges: Dict[str, List[Edge]] = {}
        visited = set()
        queue = deque(chosen.values())
        while queue:
            identity = queue.popleft()
            key = identity.id.lower()
            if chosen.get(key) != identity or identity in visited:
                continue
            visited.add(identity)
            edges[key] = []
            try:
                dependencies = self.dependencies(identity, target)
                for dep_id, version_range in dependencies:
                    if version_range.min_version is None:
                        raise ResolutionError(
                            f"Dependency \"{dep_id}\" of {identity} has no lower version bound ({version_range})"
                        )
            except ResolutionError as e:
                failures[identity] = e
                continue
            for dep_id, version_range in dependencies:
                dep_key = dep_id.lower()
                edges[key].append((dep_key, dep_id, version_range.min_version))
                current = chosen.get(dep_key)
                if current is None or (dep_key not in roots and version_range.min_version > current.version):
                    candidate = PackageIdentity(dep_id, version_range.min_version)
                    chosen[dep_key] = candidate
                    queue.append(candidate)
        return edges

    def dependencies(self, identity: PackageIdentity,
                     target: Optional[Framework]) -> List[Tuple[str, VersionRange]]:
        """Dependencies of one package for the target framework."""
        return select_dependency_group(self._dependency_groups(identity), target)

    def _dependency_groups(self, identity: PackageIdentity) -> List[DependencyGroup]:
        with self._lock:
            cached = self._groups.get(identity)
        if cached is not None:
            return cached
        info = self.package_infos.get(identity, require_installed=False)
        groups = self._read_local(info)
        if groups is None:
            if not self.remote_enabled:
                raise ResolutionError(f"No package metadata found on disk for {identity}")
            groups = self._fetch_remote(identity)
        with self._lock:
            self._groups[identity] = groups
        return groups

    def _read_local(self, info: PackageInfo) -> Optional[List[DependencyGroup]]:
        nuspec = os.path.join(info.global_installed_path, f"{info.identity.id.lower()}.nuspec")
        try:
            if os.path.isfile(nuspec):
                with open(nuspec, "rb") as fh:
                    return parse_nuspec_dependencies(fh.read())
            if info.repository_installed_path:
                for nupkg in sorted(glob.glob(os.path.join(info.repository_installed_path, "*.nupkg"))):
                    with zipfile.ZipFile(nupkg) as archive:
                        names = [n for n in archive.namelist() if n.lower().endswith(".nuspec") and "/" not in n]
                        if names:
                            return parse_nuspec_dependencies(archive.read(names[0]))
        except (ET.ParseError, zipfile.BadZipFile, OSError, ValueError) as e:
            raise ResolutionError(f"Invalid package metadata for {info.identity}: {e}") from e
        return None

    def _fetch_remote(self, identity: PackageIdentity) -> List[DependencyGroup]:
        package_id = urllib.parse.quote(identity.id.lower(), safe="")
        version = urllib.parse.quote(identity.version.normalized.lower(), safe="")
        url = f"{Constants.REGISTRY_URL_NUGET_REGISTRATION}{package_id}/{version}.json"
        status, _, leaf = get_json(url, headers=HEADERS_JSON)
        if status != 200 or not isinstance(leaf, dict):
            raise ResolutionError(f"Package {identity} was not found on the package source (HTTP {status})")
        entry = leaf.get("catalogEntry")
        if isinstance(entry, str):
            status, _, entry = get_json(entry, headers=HEADERS_JSON)
            if status != 200:
                raise ResolutionError(f"Catalog entry for {identity} could not be fetched (HTTP {status})")
        if not isinstance(entry, dict):
            raise ResolutionError(f"Catalog entry for {identity} is malformed")
        try:
            return [
                (
                    parse_framework(group.get("targetFramework")),
                    [(d["id"], parse_range(d.get("range") or "")) for d in group.get("dependencies") or []],
                )
                for group in entry.get("dependencyGroups") or []
            ]
        except (KeyError, ValueError, TypeError) as e:
            raise ResolutionError(f"Dependency metadata for {identity} is malformed: {e}") from e
