"""MCP server for the Mobile POS sync core using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents and other collaborators record sales, purchases and other POS data
offline and drive synchronisation with the back office.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..logger import setup_logging
from ..sync.session import SyncSession
from .lifespan import server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("mobilepos-sync")

# Global session instance (initialized in main)
_session: SyncSession | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, also in read-only mode)
# ---------------------------------------------------------------------------


async def _handle_ping(
    session: SyncSession, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- probe the back office API."""
    online = await session.engine.check_connection()
    await session.set_online(online)
    if online:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Server reachable. {session.pending_changes} change(s) pending.",
                )
            ]
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text="Server unreachable; working offline. Check MOBILEPOS_API_URL and network access.",
            )
        ],
        isError=True,
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Check whether the back office API is reachable and report pending changes",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    handler=_handle_ping,
    read_only=True,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_session() -> SyncSession:
    """Get the global SyncSession instance.

    Raises:
        RuntimeError: If session is not initialized
    """
    if _session is None:
        raise RuntimeError(
            "SyncSession not initialized. Server lifespan not started."
        )
    return _session


def set_session(session: SyncSession | None) -> None:
    global _session
    _session = session


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools from the ToolRegistry."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    session = get_session()
    try:
        return await get_registry().call_tool(name, arguments, session)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), opens the local
    store and sync session via the lifespan manager, and serves tools over
    stdio.

    Args:
        config_overrides: Optional dict with config values to override
            (api_url, auth_token, data_dir, insecure, debug, log_file, read_only)
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    read_only = overrides.pop("read_only", False)

    # Must run before stdio_server so nothing reaches stdout during negotiation
    setup_logging(
        mode="mcp", debug=overrides.get("debug", False), log_file=log_file
    )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, read_only=read_only)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if read_only:
        print(
            f"Read-only mode: {registry.tool_count()} of {len(all_specs)} tools enabled",
            file=sys.stderr,
        )
    set_registry(registry)

    async with server_lifespan(config_overrides=overrides) as ctx:
        set_session(ctx["session"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="mobilepos-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_session(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mobilepos-sync",
        description="Mobile POS sync server - offline-first record store and sync over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .mobilepos/config.yml)
  mobilepos-sync

  # Point at a staging back office
  mobilepos-sync --api-url https://staging.mobilepos.example --token abc123

  # Keep local data somewhere else
  mobilepos-sync --data-dir ~/pos-data

  # Expose only read-only tools
  mobilepos-sync --read-only

  # Write a commented starter config and exit
  mobilepos-sync --init-config

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )
    parser.add_argument(
        "--api-url",
        help="Override back office API URL (takes precedence over MOBILEPOS_API_URL and config files)",
    )
    parser.add_argument(
        "--token",
        help="Override API bearer token"
        " (visible in process list -- prefer MOBILEPOS_AUTH_TOKEN env var)",
    )
    parser.add_argument(
        "--data-dir",
        help="Directory for local data files (default: .mobilepos)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only expose tools that never change local data",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE env var or /tmp/mobilepos-sync.log)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter .mobilepos/config.yml (if no config exists) and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mobilepos-sync version {__version__}",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Build the config overrides dict from parsed CLI args."""
    config_overrides: dict = {}
    if args.api_url:
        config_overrides["api_url"] = args.api_url
    if args.token:
        config_overrides["auth_token"] = args.token
    if args.data_dir:
        config_overrides["data_dir"] = args.data_dir
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.read_only:
        config_overrides["read_only"] = True
    return config_overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()
    if args.init_config:
        print(f"Config file: {ensure_config()}", file=sys.stderr)
        return

    config_overrides = overrides_from_args(args)

    # Log config overrides to stderr (before stdio transport starts)
    if config_overrides:
        override_keys = [
            k for k in config_overrides.keys() if k != "auth_token"
        ]
        if override_keys:
            print(
                f"Config overrides from CLI: {', '.join(override_keys)}",
                file=sys.stderr,
            )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
