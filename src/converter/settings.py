"""Converter settings assembled from CLI arguments, config and NuGet.config."""
from __future__ import annotations

import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, Optional

from constants import Constants

logger = logging.getLogger(__name__)


def load_nuget_config(repository_root: str) -> Dict[str, str]:
    """Read ``<config><add key=... value=.../></config>`` from NuGet.config.

    Relative folder values are resolved against the config file's directory.
    Returns an empty dict when the repository has no NuGet.config.
    """
    path = find_nuget_config(repository_root)
    if path is None:
        return {}
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        logger.warning("Couldn't parse %s: %s", path, e)
        return {}

    values: Dict[str, str] = {}
    config = root.find("config")
    if config is None:
        return values
    base = os.path.dirname(path)
    for add in config.findall("add"):
        key, value = add.get("key"), add.get("value")
        if not key or value is None:
            continue
        if key.lower() in ("repositorypath", "globalpackagesfolder"):
            value = os.path.normpath(os.path.join(base, os.path.expandvars(value).replace("\\", "/")))
        values[key.lower()] = value
    return values


def find_nuget_config(repository_root: str) -> Optional[str]:
    """NuGet.config at the repository root, matched case-insensitively."""
    if not os.path.isdir(repository_root):
        return None
    for entry in os.scandir(repository_root):
        if entry.is_file() and entry.name.lower() == Constants.NUGET_CONFIG_FILE.lower():
            return entry.path
    return None


def _regex(expression: Optional[str]) -> Optional[re.Pattern]:
    if not expression or not expression.strip():
        return None
    return re.compile(expression, re.IGNORECASE)


@dataclass
class ConverterSettings:
    """Everything a repository conversion run needs to know."""
    repository_root: str
    repository_path: str
    global_packages_folder: str
    include: Optional[re.Pattern] = None
    exclude: Optional[re.Pattern] = None
    trim_packages: bool = False
    default_target_framework: str = Constants.DEFAULT_TARGET_FRAMEWORK
    max_workers: int = 1
    remote_metadata: bool = True
    nuget_config_path: str = "(Default)"

    @classmethod
    def create(cls, repository_root: str, **overrides: Any) -> "ConverterSettings":
        """Build settings for a repository, reading its NuGet.config."""
        root = os.path.abspath(repository_root)
        nuget_config = load_nuget_config(root)
        config_path = find_nuget_config(root)

        repository_path = nuget_config.get("repositorypath") or os.path.join(
            root, Constants.DEFAULT_REPOSITORY_PATH
        )
        global_folder = (
            nuget_config.get("globalpackagesfolder")
            or os.environ.get(Constants.ENV_NUGET_PACKAGES)
            or os.path.expanduser(Constants.DEFAULT_GLOBAL_PACKAGES_FOLDER)
        )
        settings = cls(
            repository_root=root,
            repository_path=os.path.abspath(repository_path),
            global_packages_folder=os.path.abspath(global_folder),
            trim_packages=bool(Constants.TRIM_PACKAGES),
            default_target_framework=Constants.DEFAULT_TARGET_FRAMEWORK,
            max_workers=max(1, int(Constants.MAX_WORKERS)),
            remote_metadata=bool(Constants.REMOTE_METADATA_ENABLED),
            nuget_config_path=config_path or "(Default)",
        )
        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(settings, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(settings, key, value)
        return settings

    @classmethod
    def from_args(cls, args: Any) -> "ConverterSettings":
        """Build settings from parsed CLI arguments (CLI wins over config)."""
        return cls.create(
            args.REPOSITORY,
            include=_regex(getattr(args, "INCLUDE", None)),
            exclude=_regex(getattr(args, "EXCLUDE", None)),
            trim_packages=True if getattr(args, "TRIM", False) else None,
            default_target_framework=getattr(args, "DEFAULT_TARGET_FRAMEWORK", None),
            max_workers=getattr(args, "JOBS", None),
            remote_metadata=False if getattr(args, "OFFLINE", False) else None,
        )
