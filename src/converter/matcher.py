"""Path patterns that recognise files inside a package's install folder."""

import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from versioning import NuGetVersion, PackageIdentity, try_parse_version

# Permissive version segment, e.g. 1.2.3, 1.2.3.4, 1.2.3-beta1
SEMVER_PATTERN = r"\d*\.\d*\.\d*\.?\d*-?[\w\-]*"
_SEP = r"[\\/]"


class ElementKind(Enum):
    """Project element kinds that can reference package content."""

    REFERENCE = "reference"
    IMPORT = "import"
    ANALYZER = "analyzer"


# Kind-specific templates: {sep}, {id}, {version} are substituted
_TEMPLATES: Dict[ElementKind, str] = {
    ElementKind.REFERENCE: r".*{sep}{id}\.{version}{sep}lib{sep}.*",
    ElementKind.IMPORT: r".*{sep}{id}\.{version}{sep}build{sep}.*{id}\.(?:props|targets)$",
    ElementKind.ANALYZER: r".*{sep}{id}\.{version}{sep}analyzers{sep}.*",
}


@dataclass(frozen=True)
class ElementMatch:
    """Result of matching one element path against one package."""
    matched: bool
    version: Optional[NuGetVersion] = None


NO_MATCH = ElementMatch(False)


def _version_group(identity: PackageIdentity, kind: ElementKind) -> str:
    if kind is not ElementKind.IMPORT:
        return f"(?P<version>{SEMVER_PATTERN})"
    # Some installs drop a trailing zero revision from the folder name
    declared = identity.version.normalized
    alternatives = [re.escape(declared)]
    reduced = identity.version.to_major_minor_patch()
    if reduced != declared and not identity.version.release:
        alternatives.append(re.escape(reduced))
    alternatives.append(SEMVER_PATTERN)
    return f"(?P<version>{'|'.join(alternatives)})"


def build_pattern(identity: PackageIdentity, kind: ElementKind) -> "re.Pattern[str]":
    """Compile the pattern for one identity and element kind."""
    expression = _TEMPLATES[kind].format(
        sep=_SEP,
        id=re.escape(identity.id),
        version=_version_group(identity, kind),
    )
    return re.compile(expression, re.IGNORECASE)


class PackagePathMatcher:
    """Memoized ``(identity, kind) -> pattern`` lookup for one conversion run."""

    def __init__(self) -> None:
        self._patterns: Dict[Tuple[PackageIdentity, ElementKind], "re.Pattern[str]"] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._patterns)

    def pattern(self, identity: PackageIdentity, kind: ElementKind) -> "re.Pattern[str]":
        key = (identity, kind)
        with self._lock:
            compiled = self._patterns.get(key)
            if compiled is None:
                compiled = build_pattern(identity, kind)
                self._patterns[key] = compiled
        return compiled

    def match(self, identity: PackageIdentity, kind: ElementKind, path: Optional[str]) -> ElementMatch:
        """Match a path; only counts when the captured version parses."""
        if not path:
            return NO_MATCH
        m = self.pattern(identity, kind).match(path)
        if not m:
            return NO_MATCH
        version = try_parse_version(m.group("version"))
        if version is None:
            return NO_MATCH
        return ElementMatch(True, version)
