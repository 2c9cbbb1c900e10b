"""Error and warning types raised or collected while converting projects."""

from typing import Optional


class ConversionError(Exception):
    """Base class for errors that abort the conversion of a single project."""


class ResolutionError(ConversionError):
    """A package could not be located on disk or in the dependency graph."""


class ManifestParseError(ConversionError):
    """The packages.config manifest is malformed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class AmbiguousUsageWarning(UserWarning):
    """Non-fatal finding that needs manual follow-up after conversion.

    Collected and logged, never raised.
    """

    def __init__(self, location: str, message: str, package_id: Optional[str] = None):
        super().__init__(f"{location}: {message}")
        self.location = location
        self.message = message
        self.package_id = package_id

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"
