"""Postings and doc values stored as composite keys in an ordered key-value store."""

from kv_postings.index.codec import DocValuesFormat, KeyValueCodec, PostingsFormat, fields_reader, fields_writer
from kv_postings.index.doc_values import DocValuesReader, DocValuesWriter
from kv_postings.index.postings_reader import FieldsReader, PostingCursor, TermCursor, Terms
from kv_postings.index.postings_writer import FieldsWriter, PostingsWriter, TermsWriter
from kv_postings.index.protocols import NO_MORE_DOCS, SeekStatus
from kv_postings.index.schema import (
    DocValuesType,
    FieldInfo,
    FieldInfos,
    IndexOptions,
    SegmentReadState,
    SegmentWriteState,
)


__all__ = [
    "NO_MORE_DOCS",
    "DocValuesFormat",
    "DocValuesReader",
    "DocValuesType",
    "DocValuesWriter",
    "FieldInfo",
    "FieldInfos",
    "FieldsReader",
    "FieldsWriter",
    "IndexOptions",
    "KeyValueCodec",
    "PostingCursor",
    "PostingsFormat",
    "PostingsWriter",
    "SeekStatus",
    "SegmentReadState",
    "SegmentWriteState",
    "TermCursor",
    "Terms",
    "TermsWriter",
    "fields_reader",
    "fields_writer",
]
