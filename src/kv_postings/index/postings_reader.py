"""Read side of the postings keyspace: fields, term cursors and posting cursors.

Cursors are lazy. A term cursor issues one limit-1 range scan per seek; a
posting cursor holds a single ascending scan over one term and classifies
each key by its length after the term prefix.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
import logging

from kv_postings.errors import CorruptKeyError, CursorStateError, UnsupportedCapabilityError
from kv_postings.index.postings_writer import NUM_DOCS, POSTINGS_EXTENSION
from kv_postings.index.protocols import NO_MORE_DOCS, LiveDocs, SeekStatus, Transaction
from kv_postings.index.schema import FieldInfo, SegmentReadState
from kv_postings.index.tuple_codec import KeyPrefix, decode_counter, decode_single, strictly_after
from kv_postings.observability import RANGE_SCANS, bind_segment, record_error


logger = logging.getLogger(__name__)

_Entry = tuple[bytes, tuple, bytes]


class _CursorState(Enum):
    UNPOSITIONED = "unpositioned"
    POSITIONED = "positioned"
    EXHAUSTED = "exhausted"


class PostingCursor:
    """Iterates the documents of one term, and the positions of each document."""

    def __init__(
        self,
        txn: Transaction,
        term_prefix: KeyPrefix,
        doc_freq: int,
        live_docs: LiveDocs | None = None,
        *,
        has_positions: bool = False,
    ) -> None:
        self._term_prefix = term_prefix
        self._doc_freq = doc_freq
        self._live_docs = live_docs
        self._has_positions = has_positions
        # Document ids are non-negative, so starting at doc 0 skips the counter key
        _, end = term_prefix.range()
        self._entries = iter(txn.range_scan(term_prefix.pack(0), end))
        RANGE_SCANS.labels(component="postings").inc()
        self._pushed_back: _Entry | None = None
        self._doc = -1
        self._freq = 0

    def _next_entry(self) -> _Entry | None:
        if self._pushed_back is not None:
            entry, self._pushed_back = self._pushed_back, None
            return entry
        for key, value in self._entries:
            elements = self._term_prefix.unpack(key)
            if not elements or len(elements) > 2 or not all(isinstance(e, int) for e in elements):
                raise CorruptKeyError("Unexpected entry inside a term's postings", key=key)
            return key, elements, value
        return None

    def doc_id(self) -> int:
        return self._doc

    def freq(self) -> int:
        if self._doc in (-1, NO_MORE_DOCS):
            raise CursorStateError("freq() requires the cursor to be on a document")
        return self._freq

    def cost(self) -> int:
        return self._doc_freq

    def next_doc(self) -> int:
        if self._doc == NO_MORE_DOCS:
            return NO_MORE_DOCS
        while True:
            entry = self._next_entry()
            if entry is None:
                self._doc = NO_MORE_DOCS
                return NO_MORE_DOCS
            key, elements, value = entry
            if len(elements) == 2:
                continue
            doc_id = elements[0]
            if self._live_docs is not None and not self._live_docs[doc_id]:
                continue
            self._doc = doc_id
            self._freq = decode_single(value, int)
            return doc_id

    def next_position(self) -> int:
        """Return the next position of the current document, -1 if positions are not indexed."""
        if not self._has_positions:
            return -1
        if self._doc in (-1, NO_MORE_DOCS):
            raise CursorStateError("next_position() requires the cursor to be on a document")
        entry = self._next_entry()
        if entry is None or len(entry[1]) != 2 or entry[1][0] != self._doc:
            self._pushed_back = entry
            error = CorruptKeyError(
                f"No further position recorded for document {self._doc}",
                key=entry[0] if entry is not None else None,
            )
            record_error(error, component="postings_reader")
            raise error
        return entry[1][1]

    def advance(self, target: int) -> int:
        doc = self.next_doc()
        while doc < target:
            doc = self.next_doc()
        return doc

    def start_offset(self) -> int:
        return -1

    def end_offset(self) -> int:
        return -1

    def payload(self) -> bytes | None:
        return None


class TermCursor:
    """Seeks and walks the terms of one field in unsigned byte order."""

    def __init__(self, txn: Transaction, field_prefix: KeyPrefix, field_info: FieldInfo) -> None:
        self._txn = txn
        self._field_prefix = field_prefix
        self._field_info = field_info
        _, self._field_end = field_prefix.range()
        self._state = _CursorState.UNPOSITIONED
        self._term: bytes | None = None
        self._doc_freq = 0

    def seek_ceil(self, target: bytes) -> SeekStatus:
        """Position on the smallest term >= ``target``."""
        target = bytes(target)
        RANGE_SCANS.labels(component="terms").inc()
        first = next(iter(self._txn.range_scan(self._field_prefix.pack(target), self._field_end, limit=1)), None)
        if first is None:
            self._state = _CursorState.EXHAUSTED
            self._term = None
            self._doc_freq = 0
            return SeekStatus.END

        key, value = first
        elements = self._field_prefix.unpack(key)
        if len(elements) != 2 or not isinstance(elements[0], bytes) or elements[1] != NUM_DOCS:
            error = CorruptKeyError("Expected a term counter entry", key=key)
            record_error(error, component="postings_reader")
            raise error
        self._term = elements[0]
        self._doc_freq = decode_counter(value)
        self._state = _CursorState.POSITIONED
        return SeekStatus.FOUND if self._term == target else SeekStatus.NOT_FOUND

    def seek_exact(self, target: bytes | int) -> bool:
        if isinstance(target, int):
            raise UnsupportedCapabilityError("Seeking terms by ordinal is not supported")
        return self.seek_ceil(target) is SeekStatus.FOUND

    def next(self) -> bytes | None:
        if self._state is _CursorState.EXHAUSTED:
            return None
        target = b"" if self._term is None else strictly_after(self._term)
        if self.seek_ceil(target) is SeekStatus.END:
            return None
        return self._term

    def _require_term(self) -> bytes:
        if self._state is not _CursorState.POSITIONED or self._term is None:
            msg = f"Term cursor on field '{self._field_info.name}' is {self._state.value}"
            raise CursorStateError(msg)
        return self._term

    def term(self) -> bytes:
        return self._require_term()

    def doc_freq(self) -> int:
        self._require_term()
        return self._doc_freq

    def total_term_freq(self) -> int:
        return -1

    def ord(self) -> int:
        raise UnsupportedCapabilityError("Term ordinals are not supported")

    def docs(self, live_docs: LiveDocs | None = None) -> PostingCursor:
        term = self._require_term()
        return PostingCursor(
            self._txn,
            self._field_prefix.add(term),
            self._doc_freq,
            live_docs,
            has_positions=self._field_info.index_options.has_positions,
        )

    def docs_and_positions(self, live_docs: LiveDocs | None = None) -> PostingCursor | None:
        if not self._field_info.index_options.has_positions:
            return None
        return self.docs(live_docs)


class Terms:
    """The terms of one indexed field."""

    def __init__(self, txn: Transaction, field_prefix: KeyPrefix, field_info: FieldInfo) -> None:
        self._txn = txn
        self._field_prefix = field_prefix
        self.field_info = field_info

    def iterator(self) -> TermCursor:
        return TermCursor(self._txn, self._field_prefix, self.field_info)

    def __iter__(self) -> Iterator[bytes]:
        cursor = self.iterator()
        term = cursor.next()
        while term is not None:
            yield term
            term = cursor.next()

    @staticmethod
    def compare(left: bytes, right: bytes) -> int:
        """Unsigned byte-wise order, the order terms are stored and returned in."""
        return (left > right) - (left < right)

    @property
    def has_positions(self) -> bool:
        return self.field_info.index_options.has_positions

    @property
    def has_offsets(self) -> bool:
        return False

    @property
    def has_payloads(self) -> bool:
        return False

    # Aggregate statistics are not kept in the keyspace
    def size(self) -> int:
        return -1

    def sum_total_term_freq(self) -> int:
        return -1

    def sum_doc_freq(self) -> int:
        return -1

    def doc_count(self) -> int:
        return -1


class FieldsReader:
    """Opens the postings of a flushed segment for reading."""

    def __init__(self, txn: Transaction, state: SegmentReadState, *, extension: str = POSTINGS_EXTENSION) -> None:
        self._txn = txn
        self._state = state
        self._segment_prefix = KeyPrefix(state.namespace.prefix_for(state.segment_name, extension))
        self._terms: dict[str, Terms] = {}
        bind_segment(state.segment_name)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(info.name for info in self._state.field_infos if info.is_indexed))

    def terms(self, field_name: str) -> Terms | None:
        cached = self._terms.get(field_name)
        if cached is not None:
            return cached
        info = self._state.field_infos.field_info(field_name)
        if info is None or not info.is_indexed:
            logger.debug("No indexed field %s in segment %s", field_name, self._state.segment_name)
            return None
        terms = Terms(self._txn, self._segment_prefix.add(info.number), info)
        self._terms[field_name] = terms
        return terms

    def size(self) -> int:
        return -1

    def close(self) -> None:
        self._terms.clear()
