"""Unit tests for the format entry points."""

from __future__ import annotations

import pytest

from kv_postings.config import Settings
from kv_postings.index.codec import DocValuesFormat, KeyValueCodec, PostingsFormat, fields_reader, fields_writer
from kv_postings.index.tuple_codec import KeyPrefix
from kv_postings.store import MemoryTransaction


pytestmark = pytest.mark.unit


def test_codec_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("KV_POSTINGS_POSTINGS_EXTENSION", "post")

    codec = KeyValueCodec.from_settings(Settings())

    assert codec.postings.extension == "post"
    assert codec.doc_values.extension == "dv"


def test_formats_cannot_share_extension() -> None:
    with pytest.raises(ValueError, match="share"):
        KeyValueCodec(postings=PostingsFormat("x"), doc_values=DocValuesFormat("x"))


def test_custom_extension_scopes_keys(write_state, read_state, namespace) -> None:
    txn = MemoryTransaction({})
    codec = KeyValueCodec(postings=PostingsFormat("post"))
    postings = codec.postings.fields_writer(txn, write_state).add_field(write_state.field_infos.field_info("title"))
    postings.start_term(b"cat").start_doc(0, 1)

    assert txn.get(KeyPrefix(namespace.prefix_for("_0", "post")).pack(0, b"cat", 0)) is not None
    assert list(codec.postings.fields_reader(txn, read_state).terms("title")) == [b"cat"]
    assert list(fields_reader(txn, read_state).terms("title")) == []


def test_default_entry_points_round_trip(write_state, read_state) -> None:
    txn = MemoryTransaction({})
    terms = fields_writer(txn, write_state).add_field(write_state.field_infos.field_info("tags"))
    terms.start_term(b"news").start_doc(1, 1)

    cursor = fields_reader(txn, read_state).terms("tags").iterator()

    assert cursor.seek_exact(b"news")
    assert cursor.doc_freq() == 1


def test_doc_values_format(write_state, read_state) -> None:
    txn = MemoryTransaction({})
    fmt = KeyValueCodec().doc_values
    writer = fmt.writer(txn, write_state)
    writer.add_binary_field(write_state.field_infos.field_info("blob"), [b"x", b"y", b"z"])
    writer.close()

    assert fmt.reader(txn, read_state).get_binary("blob").get(1) == b"y"
