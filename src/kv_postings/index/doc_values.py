"""Doc values: per-document numeric, binary, sorted and sorted-set values.

Keys live under ``prefix_for(segment, "dv", suffix)`` followed by the field
name and the ``DocValuesType`` ordinal::

    NUMERIC     (doc_id,)                    => (value,)
    BINARY      (doc_id,)                    => (bytes,)
    SORTED      ("bytes", ord)               => (bytes,)
                ("ord", doc_id)              => (ord,)
    SORTED_SET  ("bytes", ord)               => (bytes,)
                ("doc_ord", doc_id, ord)     => b""

Every per-document stream must cover exactly the segment's documents; the
writer counts while it consumes and raises ``CountMismatchError`` instead of
trusting the caller.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from itertools import groupby
import logging
from operator import itemgetter

from kv_postings.errors import CountMismatchError, DuplicateFieldError, FieldTypeError
from kv_postings.index.protocols import Transaction
from kv_postings.index.schema import DocValuesType, FieldInfo, SegmentReadState, SegmentWriteState
from kv_postings.index.tuple_codec import KeyPrefix, decode_single, pack
from kv_postings.observability import (
    FLUSH_LATENCY,
    KEY_WRITES,
    RANGE_SCANS,
    bind_segment,
    create_span,
    record_error,
    track_latency,
)


logger = logging.getLogger(__name__)

DOC_VALUES_EXTENSION = "dv"
BYTES = "bytes"
ORD = "ord"
DOC_TO_ORD = "doc_ord"


def _accepts(field_info: FieldInfo, dv_type: DocValuesType) -> bool:
    if field_info.doc_values_type is dv_type:
        return True
    # Norms are written through the numeric path
    return dv_type is DocValuesType.NUMERIC and field_info.norm_type is DocValuesType.NUMERIC


def _encode_numeric(value: object) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool):
        msg = f"Numeric doc values must be integers, got {type(value).__name__}"
        raise TypeError(msg)
    return pack((value,))


def _encode_bytes(value: bytes) -> bytes:
    return pack((bytes(value),))


class DocValuesWriter:
    """Writes the doc values of one segment; each field at most once."""

    def __init__(
        self,
        txn: Transaction,
        state: SegmentWriteState,
        *,
        extension: str = DOC_VALUES_EXTENSION,
    ) -> None:
        self._txn = txn
        self._segment_name = state.segment_name
        self._num_docs = state.doc_count
        self._segment_prefix = KeyPrefix(
            state.namespace.prefix_for(state.segment_name, extension, state.segment_suffix)
        )
        self._fields_seen: set[str] = set()
        bind_segment(state.segment_name)

    def _open_field(self, field_info: FieldInfo, dv_type: DocValuesType) -> KeyPrefix:
        if field_info.name in self._fields_seen:
            self._fail(DuplicateFieldError(field_info.name))
        if not _accepts(field_info, dv_type):
            declared = field_info.doc_values_type.name if field_info.doc_values_type is not None else "none"
            self._fail(
                FieldTypeError(f"Field '{field_info.name}' has doc values type {declared}, cannot write {dv_type.name}")
            )
        self._fields_seen.add(field_info.name)
        return self._segment_prefix.add(field_info.name, int(dv_type))

    def _fail(self, error: Exception) -> None:
        record_error(error, component="doc_values_writer")
        logger.error("Doc values write failed for segment %s: %s", self._segment_name, error)
        raise error

    def _check_ord(self, field_info: FieldInfo, ord_num: object, value_count: int, *, allow_missing: bool) -> int:
        if not isinstance(ord_num, int) or isinstance(ord_num, bool):
            msg = f"Ordinals for field '{field_info.name}' must be integers, got {type(ord_num).__name__}"
            self._fail(TypeError(msg))
        lowest = -1 if allow_missing else 0
        if not lowest <= ord_num < value_count:
            self._fail(
                ValueError(f"Ordinal {ord_num} for field '{field_info.name}' outside {lowest}..{value_count - 1}")
            )
        return ord_num

    def _write_per_doc(
        self,
        field_info: FieldInfo,
        prefix: KeyPrefix,
        values: Iterable,
        encode: Callable[[object], bytes],
    ) -> None:
        written = 0
        for value in values:
            if written >= self._num_docs:
                self._fail(CountMismatchError(field_info.name, expected=self._num_docs, actual=written + 1))
            self._txn.set(prefix.pack(written), encode(value))
            written += 1
        if written != self._num_docs:
            self._fail(CountMismatchError(field_info.name, expected=self._num_docs, actual=written))
        KEY_WRITES.labels(kind="doc_value").inc(written)

    def _write_dictionary(self, prefix: KeyPrefix, values: Iterable[bytes]) -> int:
        ord_num = 0
        for value in values:
            self._txn.set(prefix.pack(BYTES, ord_num), _encode_bytes(value))
            ord_num += 1
        KEY_WRITES.labels(kind="doc_value").inc(ord_num)
        return ord_num

    def add_numeric_field(self, field_info: FieldInfo, values: Iterable[int]) -> None:
        with (
            track_latency(FLUSH_LATENCY, component="doc_values"),
            create_span("doc_values.add_numeric_field", attributes={"field.name": field_info.name}),
        ):
            prefix = self._open_field(field_info, DocValuesType.NUMERIC)
            self._write_per_doc(field_info, prefix, values, _encode_numeric)

    def add_binary_field(self, field_info: FieldInfo, values: Iterable[bytes]) -> None:
        with (
            track_latency(FLUSH_LATENCY, component="doc_values"),
            create_span("doc_values.add_binary_field", attributes={"field.name": field_info.name}),
        ):
            prefix = self._open_field(field_info, DocValuesType.BINARY)
            self._write_per_doc(field_info, prefix, values, _encode_bytes)

    def add_sorted_field(
        self,
        field_info: FieldInfo,
        values: Iterable[bytes],
        doc_to_ord: Iterable[int],
    ) -> None:
        """Write the sorted dictionary ``values`` and each document's ordinal into it."""
        with (
            track_latency(FLUSH_LATENCY, component="doc_values"),
            create_span("doc_values.add_sorted_field", attributes={"field.name": field_info.name}),
        ):
            prefix = self._open_field(field_info, DocValuesType.SORTED)
            value_count = self._write_dictionary(prefix, values)
            self._write_per_doc(
                field_info,
                prefix.add(ORD),
                doc_to_ord,
                lambda ord_num: pack((self._check_ord(field_info, ord_num, value_count, allow_missing=True),)),
            )

    def add_sorted_set_field(
        self,
        field_info: FieldInfo,
        values: Iterable[bytes],
        doc_to_ord_count: Iterable[int],
        ords: Iterable[int],
    ) -> None:
        """Write the dictionary, then ``doc_to_ord_count[d]`` ordinals per document from the flat ``ords`` stream."""
        with (
            track_latency(FLUSH_LATENCY, component="doc_values"),
            create_span("doc_values.add_sorted_set_field", attributes={"field.name": field_info.name}),
        ):
            prefix = self._open_field(field_info, DocValuesType.SORTED_SET)
            value_count = self._write_dictionary(prefix, values)

            ord_iter = iter(ords)
            consumed = 0
            doc_id = 0
            for count in doc_to_ord_count:
                if doc_id >= self._num_docs:
                    self._fail(CountMismatchError(field_info.name, expected=self._num_docs, actual=doc_id + 1))
                if not isinstance(count, int) or isinstance(count, bool) or count < 0:
                    msg = f"Ordinal count for document {doc_id} must be a non-negative integer, got {count!r}"
                    self._fail(ValueError(msg))
                doc_prefix = prefix.add(DOC_TO_ORD, doc_id)
                for remaining in range(count, 0, -1):
                    ord_num = next(ord_iter, None)
                    if ord_num is None:
                        self._fail(
                            CountMismatchError(
                                field_info.name,
                                expected=consumed + remaining,
                                actual=consumed,
                                what="ordinals",
                            )
                        )
                    ord_num = self._check_ord(field_info, ord_num, value_count, allow_missing=False)
                    self._txn.set(doc_prefix.pack(ord_num), b"")
                    consumed += 1
                doc_id += 1

            if doc_id != self._num_docs:
                self._fail(CountMismatchError(field_info.name, expected=self._num_docs, actual=doc_id))
            leftover = sum(1 for _ in ord_iter)
            if leftover:
                self._fail(
                    CountMismatchError(field_info.name, expected=consumed, actual=consumed + leftover, what="ordinals")
                )
            KEY_WRITES.labels(kind="doc_value").inc(consumed)

    def close(self) -> None:
        if not self._fields_seen:
            logger.warning("Doc values writer for segment %s closed without writing any field", self._segment_name)


class _DocValuesView:
    def __init__(self, txn: Transaction, prefix: KeyPrefix, num_docs: int) -> None:
        self._txn = txn
        self._prefix = prefix
        self._num_docs = num_docs

    def __len__(self) -> int:
        return self._num_docs

    def _check_doc(self, doc_id: int) -> None:
        if not 0 <= doc_id < self._num_docs:
            msg = f"Document id {doc_id} out of range 0..{self._num_docs - 1}"
            raise IndexError(msg)

    def _scan(self, prefix: KeyPrefix) -> Iterator[tuple[bytes, bytes]]:
        RANGE_SCANS.labels(component="doc_values").inc()
        begin, end = prefix.range()
        return iter(self._txn.range_scan(begin, end))

    def _lookup_single(self, key: bytes, expected: type) -> object | None:
        value = self._txn.get(key)
        if value is None:
            return None
        return decode_single(value, expected)


class NumericDocValues(_DocValuesView):
    def get(self, doc_id: int) -> int | None:
        self._check_doc(doc_id)
        return self._lookup_single(self._prefix.pack(doc_id), int)

    def __iter__(self) -> Iterator[int]:
        for _, value in self._scan(self._prefix):
            yield decode_single(value, int)


class BinaryDocValues(_DocValuesView):
    def get(self, doc_id: int) -> bytes | None:
        self._check_doc(doc_id)
        return self._lookup_single(self._prefix.pack(doc_id), bytes)

    def __iter__(self) -> Iterator[bytes]:
        for _, value in self._scan(self._prefix):
            yield decode_single(value, bytes)


class _DictionaryView(_DocValuesView):
    def lookup_ord(self, ord_num: int) -> bytes | None:
        if ord_num < 0:
            return None
        return self._lookup_single(self._prefix.pack(BYTES, ord_num), bytes)

    def value_count(self) -> int:
        return sum(1 for _ in self._scan(self._prefix.add(BYTES)))


class SortedDocValues(_DictionaryView):
    """One ordinal per document into a sorted dictionary of byte values."""

    def get_ord(self, doc_id: int) -> int | None:
        self._check_doc(doc_id)
        return self._lookup_single(self._prefix.pack(ORD, doc_id), int)

    def get(self, doc_id: int) -> bytes | None:
        ord_num = self.get_ord(doc_id)
        if ord_num is None:
            return None
        return self.lookup_ord(ord_num)

    def __iter__(self) -> Iterator[int]:
        for _, value in self._scan(self._prefix.add(ORD)):
            yield decode_single(value, int)


class SortedSetDocValues(_DictionaryView):
    """Any number of ordinals per document, returned in ascending order."""

    def ords(self, doc_id: int) -> list[int]:
        self._check_doc(doc_id)
        doc_prefix = self._prefix.add(DOC_TO_ORD, doc_id)
        return [doc_prefix.unpack(key)[0] for key, _ in self._scan(doc_prefix)]

    def get(self, doc_id: int) -> list[bytes]:
        return [self.lookup_ord(ord_num) for ord_num in self.ords(doc_id)]

    def __iter__(self) -> Iterator[list[int]]:
        """Yield each document's ordinals in doc order, including empty documents."""
        doc_ord_prefix = self._prefix.add(DOC_TO_ORD)
        entries = (doc_ord_prefix.unpack(key) for key, _ in self._scan(doc_ord_prefix))
        next_doc = 0
        for doc_id, group in groupby(entries, key=itemgetter(0)):
            while next_doc < doc_id:
                yield []
                next_doc += 1
            yield [ord_num for _, ord_num in group]
            next_doc = doc_id + 1
        while next_doc < self._num_docs:
            yield []
            next_doc += 1


class DocValuesReader:
    """Opens the doc values of a flushed segment."""

    def __init__(
        self,
        txn: Transaction,
        state: SegmentReadState,
        *,
        extension: str = DOC_VALUES_EXTENSION,
    ) -> None:
        self._txn = txn
        self._state = state
        self._segment_prefix = KeyPrefix(
            state.namespace.prefix_for(state.segment_name, extension, state.segment_suffix)
        )
        bind_segment(state.segment_name)

    def _field_prefix(self, field_name: str, dv_type: DocValuesType) -> KeyPrefix | None:
        info = self._state.field_infos.field_info(field_name)
        if info is None or (info.doc_values_type is None and info.norm_type is None):
            return None
        if not _accepts(info, dv_type):
            msg = f"Field '{field_name}' does not have {dv_type.name} doc values"
            raise FieldTypeError(msg)
        return self._segment_prefix.add(field_name, int(dv_type))

    def get_numeric(self, field_name: str) -> NumericDocValues | None:
        prefix = self._field_prefix(field_name, DocValuesType.NUMERIC)
        return None if prefix is None else NumericDocValues(self._txn, prefix, self._state.doc_count)

    def get_binary(self, field_name: str) -> BinaryDocValues | None:
        prefix = self._field_prefix(field_name, DocValuesType.BINARY)
        return None if prefix is None else BinaryDocValues(self._txn, prefix, self._state.doc_count)

    def get_sorted(self, field_name: str) -> SortedDocValues | None:
        prefix = self._field_prefix(field_name, DocValuesType.SORTED)
        return None if prefix is None else SortedDocValues(self._txn, prefix, self._state.doc_count)

    def get_sorted_set(self, field_name: str) -> SortedSetDocValues | None:
        prefix = self._field_prefix(field_name, DocValuesType.SORTED_SET)
        return None if prefix is None else SortedSetDocValues(self._txn, prefix, self._state.doc_count)

    def close(self) -> None:
        logger.debug("Closed doc values reader for segment %s", self._state.segment_name)
