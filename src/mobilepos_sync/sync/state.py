"""Session state persistence.

Keeps the values that must survive restarts but are not record data:
the timestamp of the last successful sync and the pull checkpoint.  They
live in ``session.json`` next to the record files, independent of them.

Writes are atomic: ``save()`` writes to a temp file then calls
``os.replace()`` so readers never see partial data.  State is a plain
``dict`` so the session can update fields and persist once.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_FILENAME = "session.json"


def _empty_state() -> dict:
    return {"version": 1, "last_sync": None, "checkpoint": None}


class SessionState:
    """Load and save session state.

    Args:
        state_dir: Directory holding ``session.json``.  ``None`` keeps the
            state in memory only.
    """

    def __init__(self, state_dir: Path | None) -> None:
        self._state_dir = Path(state_dir) if state_dir is not None else None
        self._memory: dict = _empty_state()

    @property
    def path(self) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / STATE_FILENAME

    def load(self) -> dict:
        """Load state.

        A missing file yields an empty state.  An unreadable file is
        logged and also yields an empty state: losing the last-sync time
        only costs a redundant pull, never record data.
        """
        path = self.path
        if path is None:
            return dict(self._memory)
        if not path.exists():
            return _empty_state()
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session state %s: %s", path, exc)
            return _empty_state()
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed session state %s", path)
            return _empty_state()
        return {**_empty_state(), **data}

    def save(self, state: dict) -> None:
        """Persist *state* atomically.  Creates ``state_dir`` if needed."""
        path = self.path
        if path is None:
            self._memory = dict(state)
            return

        self._state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
