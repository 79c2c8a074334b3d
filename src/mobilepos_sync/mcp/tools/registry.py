"""ToolSpec and ToolRegistry for MCP tool dispatch.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, a read-only flag,
  and an async handler with standardized signature (session, args) -> CallToolResult.
- ToolRegistry: Drops mutating specs in read-only mode at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import mcp.types as types
from pydantic import ValidationError

from ...storage.errors import PersistenceError
from ...sync.session import SyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        handler: Async handler with signature (session, args) -> CallToolResult.
        read_only: True if the tool never changes local data.
    """

    tool: types.Tool
    handler: Callable[[SyncSession, dict], Awaitable[types.CallToolResult]]
    read_only: bool = False


class ToolRegistry:
    """Registry of ToolSpecs.

    With ``read_only=True`` only specs flagged read-only are registered, so
    an agent can inspect local data and sync status but never change them.
    """

    def __init__(self, specs: list[ToolSpec], read_only: bool = False):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if read_only and not spec.read_only:
                continue
            self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        session: SyncSession,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Translates validation errors, local storage failures and unexpected
        exceptions into structured CallToolResult responses with corrective
        actions.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(session, args)
        except (ValueError, ValidationError) as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except PersistenceError as e:
            logger.error("Local storage failure in %s: %s", name, e)
            return build_error_response(
                "storage_error",
                str(e),
                "Check free disk space and permissions of the data directory, then retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Retry later; see the server log for details.",
            )
