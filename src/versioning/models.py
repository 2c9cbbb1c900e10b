"""Data models for NuGet versions, package identities and version ranges."""

from dataclasses import dataclass, field
from functools import total_ordering
from typing import Optional, Tuple

import semantic_version


@total_ordering
@dataclass(frozen=True, eq=False)
class NuGetVersion:
    """A NuGet version: major.minor.patch[.revision][-release][+metadata].

    Equality and ordering ignore build metadata and compare release labels
    case-insensitively, so ``1.0`` equals ``1.0.0.0``.
    """
    major: int
    minor: int = 0
    patch: int = 0
    revision: int = 0
    release: Tuple[str, ...] = ()
    metadata: Optional[str] = None
    original: Optional[str] = field(default=None, compare=False)

    @property
    def normalized(self) -> str:
        """NuGet normalized string; the revision is dropped when zero."""
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            core = f"{core}.{self.revision}"
        if self.release:
            core = f"{core}-{'.'.join(self.release)}"
        return core

    def to_major_minor_patch(self) -> str:
        """Three-part form used by some on-disk install layouts."""
        return f"{self.major}.{self.minor}.{self.patch}"

    def _core(self) -> Tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, self.revision)

    def _release_key(self) -> Tuple[str, ...]:
        return tuple(label.lower() for label in self.release)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._core() == other._core() and self._release_key() == other._release_key()

    def __hash__(self) -> int:
        return hash((self._core(), self._release_key()))

    def __lt__(self, other: "NuGetVersion") -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        if self._core() != other._core():
            return self._core() < other._core()
        # Release ordering follows SemVer 2.0 precedence rules
        mine = semantic_version.Version(major=0, minor=0, patch=0, prerelease=self._release_key() or None)
        theirs = semantic_version.Version(major=0, minor=0, patch=0, prerelease=other._release_key() or None)
        return mine < theirs

    def __str__(self) -> str:
        return self.normalized


@dataclass(frozen=True, eq=False)
class PackageIdentity:
    """Package id and version; the id compares case-insensitively."""
    id: str
    version: NuGetVersion

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version))

    def __str__(self) -> str:
        return f"{self.id} {self.version}"


@dataclass(frozen=True)
class VersionRange:
    """NuGet version interval; a bare version means ``[version, )``."""
    min_version: Optional[NuGetVersion] = None
    min_inclusive: bool = True
    max_version: Optional[NuGetVersion] = None
    max_inclusive: bool = False

    def satisfies(self, version: NuGetVersion) -> bool:
        """True when the version lies inside the interval."""
        if self.min_version is not None:
            if self.min_inclusive and version < self.min_version:
                return False
            if not self.min_inclusive and version <= self.min_version:
                return False
        if self.max_version is not None:
            if self.max_inclusive and version > self.max_version:
                return False
            if not self.max_inclusive and version >= self.max_version:
                return False
        return True

    def __str__(self) -> str:
        if self.min_version is not None and self.max_version is None and self.min_inclusive:
            return str(self.min_version)
        if self.min_version is not None and self.min_version == self.max_version:
            return f"[{self.min_version}]"
        lower = "[" if self.min_inclusive else "("
        upper = "]" if self.max_inclusive else ")"
        lo = str(self.min_version) if self.min_version is not None else ""
        hi = str(self.max_version) if self.max_version is not None else ""
        return f"{lower}{lo}, {hi}{upper}"
