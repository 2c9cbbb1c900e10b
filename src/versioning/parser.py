"""Parsing utilities for NuGet version strings and version ranges."""

import re
from typing import Optional

from .models import NuGetVersion, VersionRange

_VERSION_RE = re.compile(
    r"^\s*v?(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+))?"
    r"(?:\.(?P<patch>\d+))?"
    r"(?:\.(?P<revision>\d+))?"
    r"(?:-(?P<release>[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z\-\.]+))?\s*$"
)


def parse_version(value: str) -> NuGetVersion:
    """Parse a NuGet version string.

    Raises:
        ValueError: If the value is not a valid NuGet version.
    """
    if value is None:
        raise ValueError("Version string is required")
    m = _VERSION_RE.match(value)
    if not m:
        raise ValueError(f"Invalid NuGet version: {value!r}")
    release = tuple(m.group("release").split(".")) if m.group("release") else ()
    return NuGetVersion(
        major=int(m.group("major")),
        minor=int(m.group("minor") or 0),
        patch=int(m.group("patch") or 0),
        revision=int(m.group("revision") or 0),
        release=release,
        metadata=m.group("metadata"),
        original=value.strip(),
    )


def try_parse_version(value: Optional[str]) -> Optional[NuGetVersion]:
    """Return the parsed version, or None when the value is not a version."""
    if not value:
        return None
    try:
        return parse_version(value)
    except ValueError:
        return None


def parse_range(value: str) -> VersionRange:
    """Parse NuGet range notation.

    ``1.0`` means ``>= 1.0``; ``[1.0]`` is exact; ``[1.0, 2.0)``,
    ``(, 2.0]`` and friends are intervals with open or closed ends.

    Raises:
        ValueError: If the range is malformed.
    """
    s = (value or "").strip()
    if not s:
        return VersionRange()
    if s[0] not in "[(":
        return VersionRange(min_version=parse_version(s), min_inclusive=True)

    if s[-1] not in "])":
        raise ValueError(f"Invalid NuGet version range: {value!r}")
    min_inclusive = s[0] == "["
    max_inclusive = s[-1] == "]"
    body = s[1:-1]
    if "," not in body:
        version = parse_version(body)
        if not (min_inclusive and max_inclusive):
            raise ValueError(f"Invalid NuGet version range: {value!r}")
        return VersionRange(version, True, version, True)
    lower, upper = (part.strip() for part in body.split(",", 1))
    return VersionRange(
        min_version=parse_version(lower) if lower else None,
        min_inclusive=min_inclusive,
        max_version=parse_version(upper) if upper else None,
        max_inclusive=max_inclusive,
    )
