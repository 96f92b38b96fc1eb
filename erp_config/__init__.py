"""
erp_config -- public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` returns the configuration every service and
    command uses.  It reads ``ERP_CONFIG_PATH`` when set, otherwise the
    packaged ``defaults.yaml``.

Failure modes:
    - ``FileNotFoundError`` -- ERP_CONFIG_PATH names a missing file.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import os
from pathlib import Path

from erp_config.loader import load_config
from erp_config.schema import EngineConfig
from erp_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "ERP_CONFIG_PATH"


def get_active_config(path: Path | None = None) -> EngineConfig:
    """Load the active configuration."""
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_config(source)
    _logger.info(
        "engine_config_loaded",
        extra={"path": str(source), "max_retries": config.max_retries},
    )
    return config


__all__ = ["EngineConfig", "get_active_config", "load_config"]
