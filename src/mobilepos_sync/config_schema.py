"""Unified configuration schema for mobilepos_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the API connection, local storage, sync behaviour and
logging, plus an adapter that flattens it into ``load_config()`` fallbacks.

Usage:
    from mobilepos_sync.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ApiConfig(BaseModel):
    """Back office API connection settings.

    All fields are optional so env vars and CLI args can supply them.
    """

    url: str | None = Field(default=None, description="API base URL")
    auth_token: str | None = Field(
        default=None, description="Bearer token for API requests"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    transmit_timeout: float = Field(
        default=10.0,
        gt=0,
        le=600,
        description="Seconds allowed per record upload",
    )
    probe_timeout: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Seconds allowed per health probe",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local storage settings."""

    data_dir: str | None = Field(
        default=None, description="Directory for local data files"
    )
    compact_threshold: int = Field(
        default=200,
        ge=1,
        description="Journal entries written before compaction",
    )
    recover_corrupt: bool = Field(
        default=False,
        description="Move unreadable data aside and start empty",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Synchronisation behaviour.

    Attributes:
        auto_sync: Sync automatically when connectivity returns.
        interval_seconds: Seconds between scheduled syncs (0 disables).
        conflict_strategy: How pulled records that collide with unsynced
            local edits are resolved.
    """

    auto_sync: bool = True
    interval_seconds: float = Field(default=0.0, ge=0)
    conflict_strategy: Literal[
        "last-write-wins", "local-wins", "remote-wins"
    ] = "last-write-wins"

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten a ``UnifiedConfig`` into ``Config`` field names.

    ``None`` values are dropped so they never mask built-in defaults.

    Args:
        unified: The unified config produced by ``build_config()``.

    Returns:
        Dict suitable for ``load_config(yaml_fallbacks=...)``.
    """
    flat = {
        "api_url": unified.api.url,
        "auth_token": unified.api.auth_token,
        "insecure": unified.api.insecure,
        "transmit_timeout": unified.api.transmit_timeout,
        "probe_timeout": unified.api.probe_timeout,
        "data_dir": unified.storage.data_dir,
        "compact_threshold": unified.storage.compact_threshold,
        "recover_corrupt": unified.storage.recover_corrupt,
        "auto_sync": unified.sync.auto_sync,
        "sync_interval": unified.sync.interval_seconds,
        "conflict_strategy": unified.sync.conflict_strategy,
    }
    return {k: v for k, v in flat.items() if v is not None}
