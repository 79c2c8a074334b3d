"""Exceptions raised by the durable local store."""


class PersistenceError(Exception):
    """Local storage could not be read or written."""


class StoreCorruptedError(PersistenceError):
    """The persisted data exists but cannot be parsed.

    Raised at startup instead of silently treating the store as empty.

    Attributes:
        path: The file that failed to parse, when the backend is file-based.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
