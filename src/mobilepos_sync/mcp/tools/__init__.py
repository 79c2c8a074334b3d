"""MCP tool handlers for the local store and the sync session.

This package contains MCP tool implementations that wrap ``SyncSession``
with async handlers and structured error responses.
"""

from .errors import build_error_response
from .records import RECORD_SPECS, RECORD_TOOLS
from .registry import ToolRegistry, ToolSpec
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = RECORD_SPECS + SYNC_SPECS

__all__ = [
    "build_error_response",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    # Spec lists
    "ALL_SPECS",
    "RECORD_SPECS",
    "SYNC_SPECS",
    # Tool lists
    "RECORD_TOOLS",
    "SYNC_TOOLS",
]
