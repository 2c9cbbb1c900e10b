"""packages.config to PackageReference conversion engine."""

from .errors import AmbiguousUsageWarning, ConversionError, ManifestParseError, ResolutionError  # noqa: F401
from .orchestrator import ConversionState, ProjectConverter, ProjectResult  # noqa: F401
from .settings import ConverterSettings  # noqa: F401

__all__ = [
    "AmbiguousUsageWarning",
    "ConversionError",
    "ConversionState",
    "ConverterSettings",
    "ManifestParseError",
    "ProjectConverter",
    "ProjectResult",
    "ResolutionError",
]
