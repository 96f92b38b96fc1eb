"""
Configuration schema (``erp_config.schema``).

Frozen dataclasses describing the tunable parts of the engine.  Values come
from YAML via ``erp_config.loader``; every field has a default so an empty
file yields a working configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any
from uuid import UUID

from erp_kernel.logging_config import get_logger
from erp_kernel.services.sequence_service import DEFAULT_BRANCH_SPECIFIC, DEFAULT_PREFIXES

logger = get_logger("config.schema")


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine-wide settings.

    Guarantees:
        - ``money_places`` >= 0.  Quantity precision is fixed by the column
          scale (9 places) and is not configurable.
        - ``max_retries`` >= 0.
    """

    money_places: int = 2
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    default_warehouse_id: UUID | None = None
    document_prefixes: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PREFIXES))
    branch_specific_documents: tuple[str, ...] = field(
        default_factory=lambda: tuple(sorted(DEFAULT_BRANCH_SPECIFIC))
    )

    def __post_init__(self):
        if self.money_places < 0:
            raise ValueError(f"money_places must be >= 0, got {self.money_places}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        unknown = set(self.branch_specific_documents) - set(self.document_prefixes)
        if unknown:
            raise ValueError(
                f"branch_specific_documents without a prefix: {sorted(unknown)}"
            )
        logger.debug(
            "engine_config_initialized",
            extra={
                "money_places": self.money_places,
                "max_retries": self.max_retries,
                "document_types": sorted(self.document_prefixes),
            },
        )

    @classmethod
    def with_defaults(cls) -> EngineConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """
        Build from a parsed mapping.

        Raises:
            ValueError: unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown engine config keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = dict(data)
        if kwargs.get("default_warehouse_id") is not None:
            kwargs["default_warehouse_id"] = UUID(str(kwargs["default_warehouse_id"]))
        if "document_prefixes" in kwargs:
            prefixes = dict(DEFAULT_PREFIXES)
            prefixes.update({str(k): str(v) for k, v in (kwargs["document_prefixes"] or {}).items()})
            kwargs["document_prefixes"] = prefixes
        if "branch_specific_documents" in kwargs:
            kwargs["branch_specific_documents"] = tuple(kwargs["branch_specific_documents"] or ())
        if "retry_backoff_seconds" in kwargs:
            kwargs["retry_backoff_seconds"] = float(kwargs["retry_backoff_seconds"])
        return cls(**kwargs)
