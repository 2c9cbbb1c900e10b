"""Single-pass classification of project elements against declared packages."""
from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled

from .assets import AssetFlags
from .errors import AmbiguousUsageWarning
from .matcher import ElementKind, PackagePathMatcher
from .project import ElementPath, ProjectElementKind, ProjectTree, local_name
from .usage import PackageUsage

logger = logging.getLogger(__name__)

# Elements tied to the packages.config workflow, removed wherever they appear
ITEMS_TO_REMOVE = frozenset({"packages.config"})
PROPERTIES_TO_REMOVE = frozenset({"nugetpackageimportstamp"})
TARGETS_TO_REMOVE = frozenset({"ensurenugetpackagebuildimports"})


@dataclass
class ClassificationResult:
    """Accumulator threaded through one walk of a project tree."""
    removed: List[ET.Element] = field(default_factory=list)
    warnings: List[AmbiguousUsageWarning] = field(default_factory=list)
    # Parent group of the first Reference item; new references go there
    insertion_group: Optional[ET.Element] = None


def _starts_with(path: str, prefix: str) -> bool:
    path, prefix = path.lower(), prefix.lower().rstrip("\\/")
    return path == prefix or path.startswith(prefix + os.sep) or path.startswith(prefix + "/")


class UsageClassifier:
    """Matches elements to packages, records used assets and removes them."""

    def __init__(self, matcher: PackagePathMatcher, repository_path: str):
        self.matcher = matcher
        self.repository_path = os.path.abspath(repository_path)

    def classify(self, tree: ProjectTree, usages: Sequence[PackageUsage]) -> ClassificationResult:
        """Walk the tree once in document order.

        Obsolete elements are removed as they are found; matched package
        elements are removed once the walk is complete.
        """
        result = ClassificationResult()
        candidates = [u for u in usages if not u.is_missing_transitive_dependency]
        matched: List[ET.Element] = []

        for element in tree.elements():
            if not tree.is_attached(element):
                continue
            kind = tree.kind(element)
            if self._remove_obsolete(tree, element, kind, result):
                continue

            if (result.insertion_group is None and kind is ProjectElementKind.ITEM
                    and tree.item_type(element) == "Reference"):
                result.insertion_group = tree.parent(element)

            if kind not in (ProjectElementKind.ITEM, ProjectElementKind.IMPORT):
                continue
            element_path = ElementPath(tree, element)
            if element_path.full_path is None:
                continue

            if self._match_packages(tree, element_path, candidates, result):
                matched.append(element)
            elif _starts_with(element_path.full_path, self.repository_path):
                self._retarget(tree, element_path, usages, result)

        for element in matched:
            if is_debug_enabled(logger):
                logger.debug(
                    "Removing element",
                    extra=extra_context(
                        event="remove",
                        component="classifier",
                        action="remove_element",
                        project=tree.path,
                        element=tree.to_xml_string(element),
                    ),
                )
            tree.remove(element)
            result.removed.append(element)
        return result

    def _remove_obsolete(self, tree: ProjectTree, element: ET.Element,
                         kind: ProjectElementKind, result: ClassificationResult) -> bool:
        if kind is ProjectElementKind.PROPERTY:
            obsolete = local_name(element.tag).lower() in PROPERTIES_TO_REMOVE
        elif kind is ProjectElementKind.ITEM:
            obsolete = (tree.item_type(element).lower() in ITEMS_TO_REMOVE
                        or (element.get("Include") or "").strip().lower() in ITEMS_TO_REMOVE)
        elif kind is ProjectElementKind.TARGET:
            obsolete = (element.get("Name") or "").lower() in TARGETS_TO_REMOVE
        else:
            obsolete = False
        if obsolete:
            logger.debug("%s: Removing %s", tree.path, tree.to_xml_string(element))
            tree.remove(element)
            result.removed.append(element)
        return obsolete

    @staticmethod
    def _element_kind(tree: ProjectTree, element_path: ElementPath) -> Optional[Tuple[ElementKind, AssetFlags]]:
        if element_path.kind is ProjectElementKind.IMPORT:
            return ElementKind.IMPORT, AssetFlags.BUILD
        item_type = tree.item_type(element_path.element).lower()
        if item_type == "analyzer":
            return ElementKind.ANALYZER, AssetFlags.ANALYZERS
        if item_type == "reference" and os.path.isfile(element_path.full_path):
            return ElementKind.REFERENCE, AssetFlags.COMPILE | AssetFlags.RUNTIME
        return None

    def _match_packages(self, tree: ProjectTree, element_path: ElementPath,
                        candidates: Sequence[PackageUsage], result: ClassificationResult) -> bool:
        kind = self._element_kind(tree, element_path)
        if kind is None:
            return False
        element_kind, assets = kind
        matched = False
        for usage in candidates:
            match = self.matcher.match(usage.identity, element_kind, element_path.full_path)
            if not match.matched:
                continue
            matched = True
            usage.mark_used(assets)
            if match.version != usage.package_version:
                result.warnings.append(AmbiguousUsageWarning(
                    tree.location(element_path.element),
                    f"The package version \"{match.version}\" specified in the "
                    f"\"{local_name(element_path.element.tag)}\" element does not match the package "
                    f"version \"{usage.package_version}\". After conversion, the project will "
                    f"reference ONLY version \"{usage.package_version}\"",
                    usage.package_id,
                ))
        return matched

    def _retarget(self, tree: ProjectTree, element_path: ElementPath,
                  usages: Sequence[PackageUsage], result: ClassificationResult) -> None:
        """Rewrite a packages-folder path to the package's generated path property."""
        full_path = element_path.full_path
        owner = next(
            (u for u in usages
             if u.info.repository_installed_path and _starts_with(full_path, u.info.repository_installed_path)),
            None,
        )
        location = tree.location(element_path.element)
        if owner is None:
            result.warnings.append(AmbiguousUsageWarning(
                location,
                f"The path \"{element_path.original_path}\" is inside the packages folder "
                f"\"{self.repository_path}\" but does not belong to any package being converted. "
                "Update it manually",
            ))
            return

        relative = full_path[len(owner.info.repository_installed_path):].lstrip("\\/")
        global_path = os.path.join(owner.info.global_installed_path, relative.replace("\\", "/"))
        if not os.path.exists(global_path):
            result.warnings.append(AmbiguousUsageWarning(
                location,
                f"The path \"{element_path.original_path}\" maps to \"{global_path}\" which does not "
                "exist in the global packages folder. Update it manually",
                owner.package_id,
            ))
            return

        prop = f"$({Constants.GENERATED_PROPERTY_PREFIX}{owner.package_id.replace('.', '_')})"
        new_path = "\\".join([prop] + [p for p in relative.replace("/", "\\").split("\\") if p])
        logger.debug("%s: Replacing \"%s\" with \"%s\"", location, element_path.original_path, new_path)
        element_path.set(new_path)
        owner.generate_path_property = True
