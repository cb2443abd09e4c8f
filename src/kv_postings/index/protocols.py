"""Interfaces at the boundaries of the index layer.

Two directions:

* consumed from the store: ``Transaction`` and ``SegmentNamespace``;
* exposed to the search engine: the write-side consumers and the read-side
  cursors. Engine integrations adapt to these surfaces; the implementations
  are plain classes with no framework base class.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from kv_postings.index.schema import FieldInfo


NO_MORE_DOCS = (1 << 31) - 1
"""Sentinel doc id returned once a posting cursor is exhausted."""


class SeekStatus(str, Enum):
    """Outcome of positioning a term cursor."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    END = "end"


LiveDocs = Sequence[bool]
"""Per-document liveness; ``live_docs[doc_id]`` is False for deleted documents."""


@runtime_checkable
class Transaction(Protocol):
    """An already-open transaction on an ordered key-value store."""

    def get(self, key: bytes) -> bytes | None:  # pragma: no cover - Protocol only
        """Return the value stored under ``key`` or None."""

    def set(self, key: bytes, value: bytes) -> None:  # pragma: no cover - Protocol only
        """Store ``value`` under ``key``, replacing any previous value."""

    def atomic_add(self, key: bytes, delta: int) -> None:  # pragma: no cover - Protocol only
        """Add ``delta`` to the little-endian 64-bit counter under ``key`` without reading it."""

    def range_scan(  # pragma: no cover - Protocol only
        self,
        begin: bytes,
        end: bytes,
        limit: int | None = None,
    ) -> Iterator[tuple[bytes, bytes]]:
        """Lazily yield ``(key, value)`` pairs with ``begin <= key < end`` in ascending order."""


@runtime_checkable
class SegmentNamespace(Protocol):
    """Supplies the key prefix scoping one segment file's keys."""

    def prefix_for(self, segment_id: str, extension: str, suffix: str = "") -> bytes:  # pragma: no cover
        """Return the packed prefix for ``segment_id``/``suffix``/``extension``."""


class PostingsConsumer(Protocol):
    """Receives the documents and positions of one term."""

    def start_doc(self, doc_id: int, term_doc_freq: int) -> None: ...  # pragma: no cover

    def add_position(
        self,
        position: int,
        payload: bytes | None = None,
        start_offset: int = -1,
        end_offset: int = -1,
    ) -> None: ...  # pragma: no cover

    def finish_doc(self) -> None: ...  # pragma: no cover


class TermsConsumer(Protocol):
    """Receives the terms of one field, in ascending byte order."""

    def start_term(self, term: bytes) -> PostingsConsumer: ...  # pragma: no cover

    def finish_term(self, term: bytes, doc_freq: int, total_term_freq: int = -1) -> None: ...  # pragma: no cover

    def finish(self, sum_total_term_freq: int, sum_doc_freq: int, doc_count: int) -> None: ...  # pragma: no cover


class FieldsConsumer(Protocol):
    def add_field(self, field_info: FieldInfo) -> TermsConsumer: ...  # pragma: no cover

    def close(self) -> None: ...  # pragma: no cover


class PostingsEnum(Protocol):
    """Iterates the documents (and positions) of one term."""

    def doc_id(self) -> int: ...  # pragma: no cover

    def freq(self) -> int: ...  # pragma: no cover

    def next_doc(self) -> int: ...  # pragma: no cover

    def next_position(self) -> int: ...  # pragma: no cover

    def advance(self, target: int) -> int: ...  # pragma: no cover

    def cost(self) -> int: ...  # pragma: no cover


class TermsEnum(Protocol):
    """Seeks and iterates the terms of one field."""

    def seek_ceil(self, target: bytes) -> SeekStatus: ...  # pragma: no cover

    def seek_exact(self, target: bytes | int) -> bool: ...  # pragma: no cover

    def next(self) -> bytes | None: ...  # pragma: no cover

    def term(self) -> bytes: ...  # pragma: no cover

    def doc_freq(self) -> int: ...  # pragma: no cover

    def ord(self) -> int: ...  # pragma: no cover

    def docs(self, live_docs: LiveDocs | None = None) -> PostingsEnum: ...  # pragma: no cover


class DocValuesConsumer(Protocol):
    """Receives per-document values for a segment, one field at a time."""

    def add_numeric_field(self, field_info: FieldInfo, values: Iterable[int]) -> None: ...  # pragma: no cover

    def add_binary_field(self, field_info: FieldInfo, values: Iterable[bytes]) -> None: ...  # pragma: no cover

    def add_sorted_field(  # pragma: no cover
        self,
        field_info: FieldInfo,
        values: Iterable[bytes],
        doc_to_ord: Iterable[int],
    ) -> None: ...

    def add_sorted_set_field(  # pragma: no cover
        self,
        field_info: FieldInfo,
        values: Iterable[bytes],
        doc_to_ord_count: Iterable[int],
        ords: Iterable[int],
    ) -> None: ...

    def close(self) -> None: ...  # pragma: no cover
