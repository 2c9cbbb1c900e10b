"""Repository and per-project conversion driver.

Each project moves through LOAD, RESOLVE, CLASSIFY, TRIM, EMIT and PERSIST
and ends in DONE or FAILED. The project file is only written in PERSIST, so
a failure in any earlier state leaves the files on disk untouched.
"""
from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer

from .assets import compute_asset_flags
from .classifier import UsageClassifier
from .errors import AmbiguousUsageWarning
from .graph import detect_missing_dependencies, trim_packages
from .manifest import ManifestEntry, read_packages_config
from .matcher import PackagePathMatcher
from .package_info import PackageInfoCache
from .project import ProjectTree
from .resolver import DependencyResolver
from .settings import ConverterSettings
from .usage import PackageUsage

logger = logging.getLogger(__name__)


class ConversionState(Enum):
    """Lifecycle states of one project conversion."""

    LOAD = "load"
    RESOLVE = "resolve"
    CLASSIFY = "classify"
    TRIM = "trim"
    EMIT = "emit"
    PERSIST = "persist"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProjectResult:
    """Outcome of converting a single project."""
    project_path: str
    state: ConversionState = ConversionState.LOAD
    references: List[str] = field(default_factory=list)
    warnings: List[AmbiguousUsageWarning] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.state is ConversionState.DONE


def packages_config_path(project_path: str) -> Optional[str]:
    """The packages.config next to a project, matched case-insensitively."""
    directory = os.path.dirname(os.path.abspath(project_path))
    for entry in os.scandir(directory):
        if entry.is_file() and entry.name.lower() == Constants.PACKAGES_CONFIG_FILE.lower():
            return entry.path
    return None


def deduplicate_entries(entries: Sequence[ManifestEntry], location: str):
    """Collapse repeated ids, keeping the highest version.

    Returns:
        tuple: (entries, warnings)
    """
    chosen: Dict[str, ManifestEntry] = {}
    warnings: List[AmbiguousUsageWarning] = []
    for entry in entries:
        key = entry.identity.id.lower()
        current = chosen.get(key)
        if current is None:
            chosen[key] = entry
            continue
        if current.identity.version == entry.identity.version:
            continue
        winner = entry if entry.identity.version > current.identity.version else current
        loser = current if winner is entry else entry
        warnings.append(AmbiguousUsageWarning(
            location,
            f"The package \"{entry.identity.id}\" is listed more than once with different versions; "
            f"keeping {winner.identity.version} and dropping {loser.identity.version}",
            entry.identity.id,
        ))
        chosen[key] = winner
    return list(chosen.values()), warnings


def project_target_framework(entries: Sequence[ManifestEntry], default: str) -> str:
    """Most common targetFramework in the manifest, or the default."""
    counts = Counter(e.target_framework for e in entries if e.target_framework)
    if not counts:
        return default
    return counts.most_common(1)[0][0]


class ProjectConverter:
    """Converts every eligible project below a repository root."""

    def __init__(self, settings: ConverterSettings,
                 resolver: Optional[DependencyResolver] = None):
        self.settings = settings
        self.package_infos = PackageInfoCache(settings.repository_path, settings.global_packages_folder)
        self.matcher = PackagePathMatcher()
        self.classifier = UsageClassifier(self.matcher, settings.repository_path)
        self.resolver = resolver or DependencyResolver(self.package_infos, settings.remote_metadata)
        self.results: List[ProjectResult] = []

    def discover_projects(self) -> List[str]:
        """Project files under the repository root after include/exclude filters."""
        projects = []
        for dirpath, dirnames, filenames in os.walk(self.settings.repository_root):
            dirnames.sort()
            # Package installs never contain projects to convert
            dirnames[:] = [
                d for d in dirnames
                if os.path.abspath(os.path.join(dirpath, d)) != self.settings.repository_path
            ]
            for name in sorted(filenames):
                if not name.lower().endswith(Constants.PROJECT_FILE_PATTERN.lstrip("*")):
                    continue
                path = os.path.join(dirpath, name)
                if self.settings.exclude is not None and self.settings.exclude.search(path):
                    logger.debug("Excluding project %s", path)
                    continue
                if self.settings.include is not None and not self.settings.include.search(path):
                    logger.debug("Not including project %s", path)
                    continue
                projects.append(path)
        return projects

    def convert_repository(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Convert all projects; True only when none of them failed."""
        logger.info("Converting repository \"%s\"...", self.settings.repository_root)
        logger.info("  NuGet configuration file : \"%s\"", self.settings.nuget_config_path)
        logger.info("  Repository path : \"%s\"", self.settings.repository_path)
        logger.info("  Global packages folder : \"%s\"", self.settings.global_packages_folder)

        projects = [p for p in self.discover_projects() if packages_config_path(p)]
        if is_debug_enabled(logger):
            logger.debug(
                "Projects discovered",
                extra=extra_context(
                    event="decision",
                    component="orchestrator",
                    action="discover",
                    count=len(projects),
                ),
            )

        def _run(project_path: str) -> Optional[ProjectResult]:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return self.convert_project(project_path)

        if self.settings.max_workers > 1 and len(projects) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
                outcomes = list(executor.map(_run, projects))
        else:
            outcomes = [_run(p) for p in projects]

        self.results = [r for r in outcomes if r is not None]
        failed = [r for r in self.results if not r.succeeded]
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Conversion cancelled after %d project(s)", len(self.results))
        logger.info(
            "Converted %d project(s), %d failed",
            len(self.results) - len(failed),
            len(failed),
        )
        return not failed

    def convert_project(self, project_path: str) -> ProjectResult:
        """Convert one project; failures are logged and returned, never raised."""
        result = ProjectResult(project_path=os.path.abspath(project_path))
        logger.info("  Converting project \"%s\"", result.project_path)
        try:
            with Timer() as t:
                self._convert(result)
            result.state = ConversionState.DONE
            if is_debug_enabled(logger):
                logger.debug(
                    "Project converted",
                    extra=extra_context(
                        event="function_exit",
                        component="orchestrator",
                        action="convert_project",
                        project=result.project_path,
                        outcome="done",
                        duration_ms=t.duration_ms(),
                    ),
                )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Failed to convert \"%s\" during %s: %s",
                result.project_path,
                result.state.value,
                e,
                exc_info=True,
            )
            result.error = e
            result.state = ConversionState.FAILED
        return result

    def _convert(self, result: ProjectResult) -> None:
        # LOAD
        manifest_path = packages_config_path(result.project_path)
        if manifest_path is None:
            raise FileNotFoundError(f"No {Constants.PACKAGES_CONFIG_FILE} next to {result.project_path}")
        entries, warnings = deduplicate_entries(read_packages_config(manifest_path), result.project_path)
        result.warnings.extend(warnings)
        tree = ProjectTree.load(result.project_path)
        usages = [
            PackageUsage(
                info=self.package_infos.get(entry.identity),
                is_development_dependency=entry.is_development_dependency,
                allowed_versions=entry.allowed_versions,
            )
            for entry in entries
        ]
        logger.debug("    Current package references:")
        for usage in usages:
            logger.debug("      %s", usage.identity)

        # RESOLVE
        result.state = ConversionState.RESOLVE
        framework = project_target_framework(entries, self.settings.default_target_framework)
        graph = self.resolver.resolve(framework, [u.identity for u in usages])
        usages, warnings = detect_missing_dependencies(
            usages, graph, self.package_infos, result.project_path
        )
        result.warnings.extend(warnings)

        # CLASSIFY
        result.state = ConversionState.CLASSIFY
        classification = self.classifier.classify(tree, usages)
        result.warnings.extend(classification.warnings)

        # TRIM
        if self.settings.trim_packages:
            result.state = ConversionState.TRIM
            usages, warnings = trim_packages(usages, graph, result.project_path)
            result.warnings.extend(warnings)

        # EMIT
        result.state = ConversionState.EMIT
        group = classification.insertion_group
        if group is None or not tree.is_attached(group):
            group = tree.add_item_group()
        logger.debug("    Converted package references:")
        for usage in usages:
            metadata = {"Version": usage.package_version.normalized}
            metadata.update(compute_asset_flags(usage).to_metadata())
            item = tree.append_item(group, "PackageReference", usage.package_id, metadata)
            rendered = tree.to_xml_string(item)
            result.references.append(rendered)
            logger.debug("      %s", rendered)

        for warning in result.warnings:
            logger.warning("%s", warning)

        # PERSIST
        result.state = ConversionState.PERSIST
        tree.save()
        os.remove(manifest_path)
