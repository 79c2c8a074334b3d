"""Remote transport and async helpers shared by the sync engine and MCP server."""

from .async_utils import run_with_timeout
from .client import (
    PosApiClient,
    PullBatch,
    RemoteRejectedError,
    RemoteTransport,
    TransportError,
)

__all__ = [
    "PosApiClient",
    "PullBatch",
    "RemoteRejectedError",
    "RemoteTransport",
    "TransportError",
    "run_with_timeout",
]
