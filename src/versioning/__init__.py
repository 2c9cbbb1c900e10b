"""NuGet version, identity and range models."""

from .models import NuGetVersion, PackageIdentity, VersionRange  # noqa: F401
from .parser import parse_range, parse_version, try_parse_version  # noqa: F401

__all__ = [
    "NuGetVersion",
    "PackageIdentity",
    "VersionRange",
    "parse_range",
    "parse_version",
    "try_parse_version",
]
