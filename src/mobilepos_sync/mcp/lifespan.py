"""Lifespan management for MCP server startup and shutdown."""

import asyncio
import contextlib
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import LoggingConfig, build_config, yaml_fallbacks
from ..core.client import PosApiClient
from ..storage import (
    JournalFileBackend,
    LocalStore,
    PersistenceError,
    StoreCorruptedError,
)
from ..sync import SessionState, SyncEngine, SyncSession, create_resolver

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _apply_logging_section(section: LoggingConfig, debug: bool) -> None:
    """Honour the YAML ``logging`` section unless CLI or env already decided."""
    root = logging.getLogger()
    if not debug and "LOG_LEVEL" not in os.environ:
        level = getattr(logging, section.level.upper(), None)
        if isinstance(level, int):
            root.setLevel(level)
    if section.file and not any(
        isinstance(h, logging.FileHandler) for h in root.handlers
    ):
        handler = logging.FileHandler(section.file, mode="a")
        if root.handlers:
            handler.setFormatter(root.handlers[0].formatter)
        root.addHandler(handler)


def open_store(config: Config) -> LocalStore:
    """Open the on-disk store, quarantining unreadable data when allowed.

    Raises:
        StoreCorruptedError: If the data is unreadable and
            ``recover_corrupt`` is off.
        PersistenceError: If the data files cannot be read at all.
    """
    backend = JournalFileBackend(Path(config.data_dir))
    try:
        return LocalStore(backend, compact_threshold=config.compact_threshold)
    except StoreCorruptedError:
        if not config.recover_corrupt:
            raise
        moved = backend.quarantine()
        logger.warning(
            "Local data was unreadable; moved aside (%s), starting empty",
            ", ".join(str(p) for p in moved),
        )
        return LocalStore(backend, compact_threshold=config.compact_threshold)


def build_session(
    config: Config, client: PosApiClient | None = None
) -> SyncSession:
    """Wire store, engine and session together from *config*."""
    store = open_store(config)
    engine = SyncEngine(
        store,
        client or PosApiClient(config),
        resolver=create_resolver(config.conflict_strategy),
        transmit_timeout=config.transmit_timeout,
        probe_timeout=config.probe_timeout,
    )
    return SyncSession(
        store,
        engine,
        SessionState(Path(config.data_dir)),
        auto_sync=config.auto_sync,
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Open the local store and build the sync session
    - Probe the server; starting offline is allowed
    - Start the sync scheduler when ``sync_interval`` is set

    On shutdown:
    - Stop the scheduler, detach the session and close HTTP sessions

    Args:
        config_overrides: Optional dict with config values from CLI
            (api_url, auth_token, data_dir, insecure, debug)

    Yields:
        Dict with 'session' (SyncSession) and 'config' (Config) keys

    Raises:
        RuntimeError: If configuration is invalid or local data cannot be opened.
    """
    logger.info("MCP server starting...")
    _stderr_print("Mobile POS sync server starting...")

    overrides = config_overrides or {}
    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        fallbacks: dict[str, Any] | None = None
        logging_section = LoggingConfig()
        config_files = discover_config_files()
        sources = []

        if config_files:
            unified = build_config(load_hierarchical_config())
            fallbacks = yaml_fallbacks(unified)
            logging_section = unified.logging
            sources.append(f"config file: {config_files[0]}")

        config = load_config(
            api_url=overrides.get("api_url"),
            auth_token=overrides.get("auth_token"),
            data_dir=overrides.get("data_dir"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=fallbacks,
        )
        _apply_logging_section(logging_section, config.debug)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("API URL: %s", config.api_url)
        _stderr_print(f"  API URL: {config.api_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    client = PosApiClient(config)
    try:
        session = build_session(config, client)
    except PersistenceError as e:
        client.close()
        logger.error("Cannot open local data in %s: %s", config.data_dir, e)
        _stderr_print(f"ERROR: Cannot open local data: {e}")
        if isinstance(e, StoreCorruptedError):
            _stderr_print(
                "  Set MOBILEPOS_RECOVER_CORRUPT=true to move it aside and start empty."
            )
        raise RuntimeError(f"Local data error: {e}") from e

    stats = session.store.get_sync_stats()
    _stderr_print(
        f"  Local data: {stats.total} records, {stats.unsynced} pending"
    )

    online = await session.engine.check_connection()
    if online:
        _stderr_print("  Server reachable.")
    else:
        logger.warning("Server unreachable at startup, working offline")
        _stderr_print("  Server unreachable, working offline.")
    await session.set_online(online)

    scheduler: asyncio.Task | None = None
    if config.sync_interval > 0:
        scheduler = asyncio.create_task(
            session.run_scheduler(config.sync_interval)
        )
        _stderr_print(f"  Scheduled sync every {config.sync_interval:g}s")

    _stderr_print("Server ready. Waiting for MCP client connection...")
    try:
        yield {"session": session, "config": config}
    finally:
        logger.info("MCP server shutting down")
        if scheduler is not None:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler
        session.close()
        client.close()
        _stderr_print("Mobile POS sync server shutting down.")
