"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into ``EngineConfig``.  Runtime callers use
``erp_config.get_active_config()``; this module is the parsing step beneath it.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import EngineConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Path) -> EngineConfig:
    """Parse the ``engine`` section of a YAML file into EngineConfig."""
    data = load_yaml_file(Path(path))
    section = data.get("engine", {})
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'engine' must be a mapping")
    return EngineConfig.from_dict(section)
