"""Conflict resolution strategies for pulled records.

A conflict exists when the server sends a record whose id also exists
locally with unsynced changes.  Resolvers pick which side survives:

- ``LastWriteWinsResolver``: newer ``updated_at`` wins; ties keep local.
- ``LocalWinsResolver``: always keeps the local edit.
- ``RemoteWinsResolver``: always takes the server copy.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from mobilepos_sync.storage.models import Record

logger = logging.getLogger(__name__)

Resolution = Literal["local", "remote"]


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, local: Record, remote: Record) -> Resolution:
        """Return ``"local"`` to keep the local record or ``"remote"``
        to overwrite it with the server copy."""
        ...  # pragma: no cover


class LastWriteWinsResolver:
    """Keep whichever side was modified last.

    Equal timestamps keep the local record, so an unsynced edit is never
    dropped on a tie.
    """

    def resolve(self, local: Record, remote: Record) -> Resolution:
        if remote.updated_at > local.updated_at:
            logger.info(
                "Conflict on %s: remote is newer (%s > %s)",
                local.id,
                remote.updated_at.isoformat(),
                local.updated_at.isoformat(),
            )
            return "remote"
        logger.info("Conflict on %s: keeping local edit", local.id)
        return "local"


class LocalWinsResolver:
    """Always resolve conflicts in favour of the local record."""

    def resolve(self, local: Record, remote: Record) -> Resolution:
        return "local"


class RemoteWinsResolver:
    """Always resolve conflicts in favour of the server record."""

    def resolve(self, local: Record, remote: Record) -> Resolution:
        return "remote"


_STRATEGY_MAP: dict[str, type] = {
    "last-write-wins": LastWriteWinsResolver,
    "local-wins": LocalWinsResolver,
    "remote-wins": RemoteWinsResolver,
}


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"last-write-wins"``, ``"local-wins"``,
            ``"remote-wins"``.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
