"""Constants used in the project."""

import json
import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONVERSION_ERROR = 2
    CANCELLED = 3


class AssetFolders(Enum):
    """Package folders whose content maps to asset categories.

    Args:
        Enum (string): Folder names inside an installed package.
    """

    BUILD = "build"
    LIB = "lib"
    ANALYZERS = "analyzers"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    PACKAGES_CONFIG_FILE = "packages.config"
    NUGET_CONFIG_FILE = "NuGet.config"
    PROJECT_FILE_PATTERN = "*.csproj"
    DEFAULT_REPOSITORY_PATH = "packages"
    DEFAULT_GLOBAL_PACKAGES_FOLDER = os.path.join("~", ".nuget", "packages")
    ENV_NUGET_PACKAGES = "NUGET_PACKAGES"
    DEFAULT_TARGET_FRAMEWORK = "net45"
    EMPTY_FOLDER_MARKER = "_._"
    GENERATED_PROPERTY_PREFIX = "Pkg"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    FILE_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
    ENV_LOG_LEVEL = "PCCONVERT_LOG_LEVEL"
    ENV_CONFIG = "PCCONVERT_CONFIG"

    TRIM_PACKAGES = False
    MAX_WORKERS = 1

    # Remote package metadata (nuget.org) used when a nuspec is not on disk
    REMOTE_METADATA_ENABLED = True
    REGISTRY_URL_NUGET_REGISTRATION = "https://api.nuget.org/v3/registration5-semver1/"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_CACHE_TTL_SEC = 300


# Config file keys mapped onto Constants attributes
_CONFIG_KEYS = {
    "default_target_framework": "DEFAULT_TARGET_FRAMEWORK",
    "repository_path": "DEFAULT_REPOSITORY_PATH",
    "global_packages_folder": "DEFAULT_GLOBAL_PACKAGES_FOLDER",
    "trim_packages": "TRIM_PACKAGES",
    "max_workers": "MAX_WORKERS",
    "remote_metadata": "REMOTE_METADATA_ENABLED",
    "registration_url": "REGISTRY_URL_NUGET_REGISTRATION",
    "request_timeout": "REQUEST_TIMEOUT",
    "http_retry_max": "HTTP_RETRY_MAX",
    "http_cache_ttl": "HTTP_CACHE_TTL_SEC",
}

_DEFAULT_CONFIG_LOCATIONS = (
    "pcconvert.yml",
    "pcconvert.yaml",
    os.path.join("~", ".config", "pcconvert", "pcconvert.yml"),
)


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load a YAML (or JSON, by extension) config file.

    Precedence: explicit path, then the PCCONVERT_CONFIG environment
    variable, then the default locations. Returns an empty dict when
    nothing is found.

    Raises:
        OSError: If an explicitly requested file cannot be read.
        ValueError: If the file does not contain a mapping.
    """
    candidates = []
    if path:
        candidates.append(path)
    elif os.environ.get(Constants.ENV_CONFIG):
        candidates.append(os.environ[Constants.ENV_CONFIG])
    else:
        candidates.extend(os.path.expanduser(p) for p in _DEFAULT_CONFIG_LOCATIONS)

    for candidate in candidates:
        if not os.path.isfile(candidate):
            if path:
                raise OSError(f"Config file not found: {candidate}")
            continue
        with open(candidate, "r", encoding="utf-8") as fh:
            if candidate.lower().endswith(".json"):
                data = json.load(fh)
            else:
                import yaml  # pylint: disable=import-outside-toplevel

                data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {candidate} must contain a mapping")
        logger.debug("Loaded config from %s", candidate)
        return data
    return {}


def apply_config(config: Dict[str, Any]) -> None:
    """Apply known config keys onto Constants; unknown keys are logged and ignored."""
    section = config.get("pcconvert", config)
    for key, value in section.items():
        attr = _CONFIG_KEYS.get(str(key).lower())
        if attr is None:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        setattr(Constants, attr, value)
