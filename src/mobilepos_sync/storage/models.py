"""Pydantic models for the durable local store.

- ``Record``: one persisted business entity (sale, purchase, customer, ...).
- ``SyncStats``: derived counts over the current collection.
- ``MutationStatus``: outcome of a mutating store operation.

Models are frozen; the store hands out copies and never a live reference
to its own collection.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class MutationStatus(str, Enum):
    """Outcome of ``update``, ``delete``, ``mark_as_synced`` and ``apply_remote``.

    Only ``APPLIED`` is truthy, so callers that just need a yes/no answer
    can keep writing ``if store.update(...)``.
    """

    APPLIED = "applied"
    NOT_FOUND = "not_found"
    STALE = "stale"
    PERSISTENCE_ERROR = "persistence_error"

    def __bool__(self) -> bool:
        return self is MutationStatus.APPLIED


class Record(BaseModel):
    """A single locally persisted record.

    Field aliases match the persisted JSON layout
    (``{id, type, data, synced, createdAt, updatedAt}``).

    Attributes:
        id: Unique identifier, generated from type + timestamp + random suffix.
        type: Record type tag, e.g. ``"sale"`` or ``"purchase"``.
        data: Caller-owned payload; any JSON-serialisable value.
        synced: True once the remote side confirmed the write.
        created_at: Creation time (UTC).
        updated_at: Time of the last payload change (UTC).
        synced_at: Time the record was last marked synced, if ever.
    """

    id: str
    type: str
    data: Any = None
    synced: bool = False
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    synced_at: datetime | None = Field(default=None, alias="syncedAt")

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("created_at", "updated_at", "synced_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps from older data or the server are taken as UTC
        # so comparisons never mix naive and aware values.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_storage(self) -> dict[str, Any]:
        """Serialise to the persisted JSON shape (camelCase keys)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"synced_at"} if self.synced_at is None else None,
        )

    @classmethod
    def from_storage(cls, raw: dict[str, Any]) -> Record:
        """Build a record from its persisted JSON shape."""
        return cls.model_validate(raw)


class SyncStats(BaseModel):
    """Counts over the current collection, computed on demand.

    ``total == synced + unsynced`` always holds.
    """

    total: int = 0
    synced: int = 0
    unsynced: int = 0

    model_config = {"frozen": True}
