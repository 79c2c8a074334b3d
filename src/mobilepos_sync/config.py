"""Runtime configuration for the sync service.

Reads API connection, storage and sync settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MOBILEPOS_API_URL: Back office API base URL (default: https://api.mobilepos.com)
    MOBILEPOS_AUTH_TOKEN: Bearer token sent with every request (optional)
    MOBILEPOS_DATA_DIR: Directory for local data files (default: .mobilepos)
    MOBILEPOS_INSECURE: Skip SSL verification (optional, default: false)
    MOBILEPOS_DEBUG: Enable debug logging (optional, default: false)
    MOBILEPOS_TRANSMIT_TIMEOUT: Seconds allowed per record upload (default: 10)
    MOBILEPOS_PROBE_TIMEOUT: Seconds allowed per health probe (default: 5)
    MOBILEPOS_AUTO_SYNC: Sync when connectivity returns (default: true)
    MOBILEPOS_SYNC_INTERVAL: Seconds between scheduled syncs, 0 disables (default: 0)
    MOBILEPOS_CONFLICT_STRATEGY: last-write-wins, local-wins or remote-wins
    MOBILEPOS_COMPACT_THRESHOLD: Journal entries before compaction (default: 200)
    MOBILEPOS_RECOVER_CORRUPT: Quarantine unreadable data and start empty (default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.mobilepos.com"
CONFLICT_STRATEGIES = ("last-write-wins", "local-wins", "remote-wins")


@dataclass
class Config:
    api_url: str = DEFAULT_API_URL
    auth_token: str | None = None
    data_dir: str = ".mobilepos"
    insecure: bool = False
    debug: bool = False
    transmit_timeout: float = 10.0
    probe_timeout: float = 5.0
    auto_sync: bool = True
    sync_interval: float = 0.0
    conflict_strategy: str = "last-write-wins"
    compact_threshold: int = 200
    recover_corrupt: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a value is out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.data_dir.strip():
        raise ValueError(
            "Data directory cannot be empty. Set MOBILEPOS_DATA_DIR environment variable."
        )

    if config.transmit_timeout <= 0 or config.probe_timeout <= 0:
        raise ValueError("Timeouts must be greater than zero")

    if config.sync_interval < 0:
        raise ValueError("Sync interval cannot be negative")

    if config.conflict_strategy not in CONFLICT_STRATEGIES:
        raise ValueError(
            f"Unknown conflict strategy '{config.conflict_strategy}'. "
            f"Valid strategies: {list(CONFLICT_STRATEGIES)}"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_bool(cli_flag: bool, env_key: str, fallback: object) -> bool:
    """CLI flag (only when set) > env var > YAML/default fallback."""
    if cli_flag:
        return True
    env_val = _get_bool_env(env_key)
    if env_val is not None:
        return env_val
    return bool(fallback)


def _resolve_number(
    env_key: str,
    fallback: object,
    *,
    cast: type,
    low: float,
    high: float,
) -> float:
    """Env var > YAML/default fallback, range-checked."""
    raw = os.getenv(env_key)
    source = env_key if raw is not None else "config"
    value_raw = raw if raw is not None else fallback
    try:
        value = cast(value_raw)
    except (TypeError, ValueError):
        raise ValueError(
            f"Invalid {source} '{value_raw}': must be a number between {low:g} and {high:g}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {source} '{value_raw}': must be a number between {low:g} and {high:g}"
        )
    return value


def load_config(
    api_url: str | None = None,
    auth_token: str | None = None,
    data_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_url: Override API URL.
        auth_token: Override bearer token.
        data_dir: Override local data directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file,
            keyed by ``Config`` field name.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}
    defaults = Config()

    # --- String fields: CLI > env > YAML > default ---

    final_url = (
        api_url
        or os.getenv("MOBILEPOS_API_URL")
        or fb.get("api_url")
        or defaults.api_url
    )
    final_token = (
        auth_token
        or os.getenv("MOBILEPOS_AUTH_TOKEN")
        or fb.get("auth_token")
        or None
    )
    final_data_dir = (
        data_dir
        or os.getenv("MOBILEPOS_DATA_DIR")
        or fb.get("data_dir")
        or defaults.data_dir
    )
    final_strategy = (
        os.getenv("MOBILEPOS_CONFLICT_STRATEGY")
        or fb.get("conflict_strategy")
        or defaults.conflict_strategy
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    final_insecure = _resolve_bool(
        insecure, "MOBILEPOS_INSECURE", fb.get("insecure", defaults.insecure)
    )
    final_debug = _resolve_bool(
        debug, "MOBILEPOS_DEBUG", fb.get("debug", defaults.debug)
    )
    final_auto_sync = _resolve_bool(
        False,
        "MOBILEPOS_AUTO_SYNC",
        fb.get("auto_sync", defaults.auto_sync),
    )
    final_recover = _resolve_bool(
        False,
        "MOBILEPOS_RECOVER_CORRUPT",
        fb.get("recover_corrupt", defaults.recover_corrupt),
    )

    # --- Numeric fields: env > YAML > default ---

    final_transmit = _resolve_number(
        "MOBILEPOS_TRANSMIT_TIMEOUT",
        fb.get("transmit_timeout", defaults.transmit_timeout),
        cast=float,
        low=0.1,
        high=600,
    )
    final_probe = _resolve_number(
        "MOBILEPOS_PROBE_TIMEOUT",
        fb.get("probe_timeout", defaults.probe_timeout),
        cast=float,
        low=0.1,
        high=120,
    )
    final_interval = _resolve_number(
        "MOBILEPOS_SYNC_INTERVAL",
        fb.get("sync_interval", defaults.sync_interval),
        cast=float,
        low=0,
        high=86400,
    )
    final_compact = _resolve_number(
        "MOBILEPOS_COMPACT_THRESHOLD",
        fb.get("compact_threshold", defaults.compact_threshold),
        cast=int,
        low=1,
        high=1_000_000,
    )

    config = Config(
        api_url=final_url.strip(),
        auth_token=final_token.strip() if final_token else None,
        data_dir=final_data_dir,
        insecure=final_insecure,
        debug=final_debug,
        transmit_timeout=final_transmit,
        probe_timeout=final_probe,
        auto_sync=final_auto_sync,
        sync_interval=final_interval,
        conflict_strategy=final_strategy.strip(),
        compact_threshold=int(final_compact),
        recover_corrupt=final_recover,
    )

    validate_config(config)

    return config
