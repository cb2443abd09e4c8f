"""Write side of the postings keyspace.

Layout under ``prefix_for(segment, "pst")``::

    (field_number, term, "numDocs")          => 8-byte little-endian doc freq counter
    (field_number, term, doc_id)             => (freq,)
    (field_number, term, doc_id, position)   => b""

The counter is created with a plain set when the term opens and bumped with
an atomic add per document, so concurrent writers sharing one transaction
never read it. Nothing here begins, commits or retries a transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

from kv_postings.errors import CountMismatchError, CursorStateError, DuplicateFieldError
from kv_postings.index.protocols import Transaction
from kv_postings.index.schema import FieldInfo, SegmentWriteState
from kv_postings.index.tuple_codec import KeyPrefix, encode_counter, pack
from kv_postings.observability import FLUSH_LATENCY, KEY_WRITES, bind_segment, create_span, record_error, track_latency


logger = logging.getLogger(__name__)

POSTINGS_EXTENSION = "pst"
NUM_DOCS = "numDocs"


@dataclass
class _FieldStats:
    sum_doc_freq: int = 0
    sum_total_term_freq: int = 0
    docs: set[int] = field(default_factory=set)


def _fail(error: Exception) -> None:
    record_error(error, component="postings_writer")
    logger.error("Postings write failed: %s", error)
    raise error


class PostingsWriter:
    """Writes the documents and positions of the current term."""

    def __init__(self, txn: Transaction, field_info: FieldInfo, stats: _FieldStats) -> None:
        self._txn = txn
        self._field_info = field_info
        self._stats = stats
        self.tracks_freqs = field_info.index_options.has_freqs
        self._write_positions = field_info.index_options.has_positions
        self._term_prefix: KeyPrefix | None = None
        self._doc_prefix: KeyPrefix | None = None
        self._counter_key = b""
        self.doc_freq = 0
        self.total_term_freq = 0

    def start_term(self, term_prefix: KeyPrefix) -> None:
        self._term_prefix = term_prefix
        self._doc_prefix = None
        self._counter_key = term_prefix.pack(NUM_DOCS)
        self.doc_freq = 0
        self.total_term_freq = 0
        self._txn.set(self._counter_key, encode_counter(0))
        KEY_WRITES.labels(kind="term").inc()

    def start_doc(self, doc_id: int, term_doc_freq: int) -> None:
        if self._term_prefix is None:
            raise CursorStateError("start_doc called before start_term")
        if doc_id < 0:
            msg = f"Document id must be non-negative, got {doc_id}"
            raise ValueError(msg)

        self._doc_prefix = self._term_prefix.add(doc_id)
        self._txn.atomic_add(self._counter_key, 1)
        self._txn.set(self._doc_prefix.raw, pack((term_doc_freq,)))
        KEY_WRITES.labels(kind="doc").inc()

        self.doc_freq += 1
        self._stats.sum_doc_freq += 1
        self._stats.docs.add(doc_id)
        if self.tracks_freqs:
            self.total_term_freq += term_doc_freq
            self._stats.sum_total_term_freq += term_doc_freq

    def add_position(
        self,
        position: int,
        payload: bytes | None = None,
        start_offset: int = -1,
        end_offset: int = -1,
    ) -> None:
        """Record ``position`` for the current document.

        Payloads and offsets are accepted for interface compatibility and
        dropped: they have no place in the key layout.
        """
        if self._doc_prefix is None:
            raise CursorStateError("add_position called outside a document")
        if position < 0:
            msg = f"Position must be non-negative, got {position}"
            raise ValueError(msg)
        if self._write_positions:
            self._txn.set(self._doc_prefix.pack(position), b"")
            KEY_WRITES.labels(kind="position").inc()

    def finish_doc(self) -> None:
        self._doc_prefix = None


class TermsWriter:
    """Writes the terms of one field; terms arrive in ascending byte order."""

    def __init__(
        self,
        txn: Transaction,
        field_prefix: KeyPrefix,
        field_info: FieldInfo,
        segment_doc_count: int,
    ) -> None:
        self.field_info = field_info
        self._field_prefix = field_prefix
        self._segment_doc_count = segment_doc_count
        self._stats = _FieldStats()
        self._postings = PostingsWriter(txn, field_info, self._stats)
        self._finished = False
        self._term_count = 0

    def start_term(self, term: bytes) -> PostingsWriter:
        if self._finished:
            raise CursorStateError(f"Field '{self.field_info.name}' is already finished")
        self._postings.start_term(self._field_prefix.add(bytes(term)))
        self._term_count += 1
        return self._postings

    def finish_term(self, term: bytes, doc_freq: int, total_term_freq: int = -1) -> None:
        """Check the engine's per-term statistics against what was written."""
        if doc_freq != self._postings.doc_freq:
            _fail(
                CountMismatchError(
                    self.field_info.name,
                    expected=doc_freq,
                    actual=self._postings.doc_freq,
                    what=f"postings for term {bytes(term)!r}",
                )
            )
        if self._postings.tracks_freqs and total_term_freq != -1 and total_term_freq != self._postings.total_term_freq:
            _fail(
                CountMismatchError(
                    self.field_info.name,
                    expected=total_term_freq,
                    actual=self._postings.total_term_freq,
                    what=f"occurrences of term {bytes(term)!r}",
                )
            )

    def finish(self, sum_total_term_freq: int, sum_doc_freq: int, doc_count: int) -> None:
        """Close the field, validating declared totals against written postings."""
        name = self.field_info.name
        with (
            track_latency(FLUSH_LATENCY, component="postings"),
            create_span(
                "postings.field.finish",
                attributes={"field.name": name, "field.terms": self._term_count},
            ),
        ):
            stats = self._stats
            if sum_doc_freq != stats.sum_doc_freq:
                _fail(CountMismatchError(name, expected=sum_doc_freq, actual=stats.sum_doc_freq, what="postings"))
            if doc_count != len(stats.docs):
                _fail(
                    CountMismatchError(name, expected=doc_count, actual=len(stats.docs), what="distinct documents")
                )
            highest = max(stats.docs, default=-1)
            if len(stats.docs) > self._segment_doc_count or highest >= self._segment_doc_count:
                _fail(
                    CountMismatchError(
                        name,
                        expected=self._segment_doc_count,
                        actual=max(len(stats.docs), highest + 1),
                        what="documents in segment",
                    )
                )
            if (
                self._postings.tracks_freqs
                and sum_total_term_freq != -1
                and sum_total_term_freq != stats.sum_total_term_freq
            ):
                _fail(
                    CountMismatchError(
                        name,
                        expected=sum_total_term_freq,
                        actual=stats.sum_total_term_freq,
                        what="term occurrences",
                    )
                )
            self._finished = True
        logger.debug(
            "Finished postings field %s: %d terms, %d postings, %d docs",
            name,
            self._term_count,
            stats.sum_doc_freq,
            len(stats.docs),
        )

class FieldsWriter:
    """Hands out one ``TermsWriter`` per field of a flushing segment."""

    def __init__(self, txn: Transaction, state: SegmentWriteState, *, extension: str = POSTINGS_EXTENSION) -> None:
        self._txn = txn
        self._state = state
        self._segment_prefix = KeyPrefix(state.namespace.prefix_for(state.segment_name, extension))
        self._fields_seen: set[str] = set()
        bind_segment(state.segment_name)

    def add_field(self, field_info: FieldInfo) -> TermsWriter:
        if field_info.name in self._fields_seen:
            _fail(DuplicateFieldError(field_info.name))
        self._fields_seen.add(field_info.name)
        return TermsWriter(
            self._txn,
            self._segment_prefix.add(field_info.number),
            field_info,
            self._state.doc_count,
        )

    def close(self) -> None:
        logger.debug(
            "Closed postings writer for segment %s (%d fields)",
            self._state.segment_name,
            len(self._fields_seen),
        )
