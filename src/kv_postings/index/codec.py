"""Entry points that bind the postings and doc-values formats to key extensions."""

from __future__ import annotations

from dataclasses import dataclass, field

from kv_postings.config import Settings
from kv_postings.index.doc_values import DOC_VALUES_EXTENSION, DocValuesReader, DocValuesWriter
from kv_postings.index.postings_reader import FieldsReader
from kv_postings.index.postings_writer import POSTINGS_EXTENSION, FieldsWriter
from kv_postings.index.protocols import Transaction
from kv_postings.index.schema import SegmentReadState, SegmentWriteState


@dataclass(frozen=True)
class PostingsFormat:
    extension: str = POSTINGS_EXTENSION

    def fields_writer(self, txn: Transaction, state: SegmentWriteState) -> FieldsWriter:
        return FieldsWriter(txn, state, extension=self.extension)

    def fields_reader(self, txn: Transaction, state: SegmentReadState) -> FieldsReader:
        return FieldsReader(txn, state, extension=self.extension)


@dataclass(frozen=True)
class DocValuesFormat:
    extension: str = DOC_VALUES_EXTENSION

    def writer(self, txn: Transaction, state: SegmentWriteState) -> DocValuesWriter:
        return DocValuesWriter(txn, state, extension=self.extension)

    def reader(self, txn: Transaction, state: SegmentReadState) -> DocValuesReader:
        return DocValuesReader(txn, state, extension=self.extension)


@dataclass(frozen=True)
class KeyValueCodec:
    """The formats a segment is written with.

    Formats must use distinct extensions: two formats sharing one would
    write into the same keyspace.
    """

    postings: PostingsFormat = field(default_factory=PostingsFormat)
    doc_values: DocValuesFormat = field(default_factory=DocValuesFormat)

    def __post_init__(self) -> None:
        if self.postings.extension == self.doc_values.extension:
            msg = f"Postings and doc values cannot share the extension '{self.postings.extension}'"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyValueCodec:
        return cls(
            postings=PostingsFormat(extension=settings.postings_extension),
            doc_values=DocValuesFormat(extension=settings.doc_values_extension),
        )


_DEFAULT_CODEC = KeyValueCodec()


def fields_writer(txn: Transaction, state: SegmentWriteState) -> FieldsWriter:
    return _DEFAULT_CODEC.postings.fields_writer(txn, state)


def fields_reader(txn: Transaction, state: SegmentReadState) -> FieldsReader:
    return _DEFAULT_CODEC.postings.fields_reader(txn, state)
