"""Reader for the legacy packages.config manifest."""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Optional

from versioning import PackageIdentity, VersionRange, parse_range, try_parse_version

from .errors import ManifestParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManifestEntry:
    """One ``<package>`` element of packages.config."""
    identity: PackageIdentity
    target_framework: Optional[str] = None
    is_development_dependency: bool = False
    allowed_versions: Optional[VersionRange] = None


def _local(tag: str) -> str:
    return tag.split('}', 1)[1] if '}' in tag else tag


def _as_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def read_packages_config(path: str) -> List[ManifestEntry]:
    """Parse packages.config into entries, keeping duplicate ids.

    Raises:
        ManifestParseError: If the file is not well-formed XML, is not a
            ``<packages>`` document, or an entry lacks a valid id/version.
    """
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ManifestParseError(path, f"invalid XML: {e}") from e
    except OSError as e:
        raise ManifestParseError(path, f"cannot be read: {e}") from e

    if _local(root.tag) != "packages":
        raise ManifestParseError(path, f"unexpected root element <{_local(root.tag)}>")

    entries: List[ManifestEntry] = []
    for element in root:
        if not isinstance(element.tag, str) or _local(element.tag) != "package":
            continue
        package_id = (element.get("id") or "").strip()
        raw_version = element.get("version")
        if not package_id:
            raise ManifestParseError(path, "a <package> element has no id")
        version = try_parse_version(raw_version)
        if version is None:
            raise ManifestParseError(path, f"package \"{package_id}\" has an invalid version {raw_version!r}")

        allowed = None
        if element.get("allowedVersions"):
            try:
                allowed = parse_range(element.get("allowedVersions"))
            except ValueError as e:
                raise ManifestParseError(path, f"package \"{package_id}\": {e}") from e
            if not allowed.satisfies(version):
                logger.warning(
                    "%s: package \"%s\" version %s is outside its allowedVersions %s",
                    path, package_id, version, allowed,
                )

        entries.append(ManifestEntry(
            identity=PackageIdentity(package_id, version),
            target_framework=element.get("targetFramework"),
            is_development_dependency=_as_bool(element.get("developmentDependency")),
            allowed_versions=allowed,
        ))

    logger.debug("Read %d package(s) from %s", len(entries), path)
    return entries
