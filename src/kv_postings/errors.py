"""Error taxonomy for the key-value index layer.

Every error is raised at the point of detection and never retried here.
Errors coming from the underlying store (conflicts, timeouts, ``sqlite3.Error``)
are not wrapped; they propagate to the caller unchanged.
"""

from __future__ import annotations


class KeyValueIndexError(Exception):
    """Base class for errors raised by the index layer."""


class DuplicateFieldError(KeyValueIndexError):
    """A field was written more than once by the same writer."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Field '{field_name}' was added more than once during flush")
        self.field_name = field_name


class CountMismatchError(KeyValueIndexError):
    """Declared and actually written document counts differ."""

    def __init__(self, field_name: str, *, expected: int, actual: int, what: str = "documents") -> None:
        super().__init__(f"Field '{field_name}': expected {expected} {what}, got {actual}")
        self.field_name = field_name
        self.expected = expected
        self.actual = actual


class UnsupportedCapabilityError(KeyValueIndexError, NotImplementedError):
    """The requested capability is intentionally not implemented."""


class CorruptKeyError(KeyValueIndexError, ValueError):
    """A key or value does not match any expected layout."""

    def __init__(self, message: str, *, key: bytes | None = None) -> None:
        if key is not None:
            message = f"{message} (key={key!r})"
        super().__init__(message)
        self.key = key


class FieldTypeError(KeyValueIndexError, ValueError):
    """Field metadata does not allow the requested value shape."""


class CursorStateError(KeyValueIndexError):
    """A cursor or writer was used outside its valid state."""
