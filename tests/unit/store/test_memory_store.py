"""Unit tests for the in-memory ordered store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from kv_postings.index.tuple_codec import decode_counter, encode_counter
from kv_postings.store import MemoryKeyValueStore, MemoryTransaction


pytestmark = pytest.mark.unit


def test_range_scan_is_ordered_and_half_open() -> None:
    txn = MemoryTransaction({b"b": b"2", b"a": b"1", b"c": b"3", b"d": b"4"})

    assert list(txn.range_scan(b"b", b"d")) == [(b"b", b"2"), (b"c", b"3")]
    assert list(txn.range_scan(b"a", b"z", limit=1)) == [(b"a", b"1")]


def test_range_scan_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError, match="positive"):
        MemoryTransaction({}).range_scan(b"a", b"b", limit=0)


def test_range_scan_sees_writes_made_while_iterating() -> None:
    txn = MemoryTransaction({b"a": b"1", b"c": b"3"})
    seen = []
    for key, _ in txn.range_scan(b"a", b"z"):
        seen.append(key)
        if key == b"a":
            txn.set(b"b", b"2")

    assert seen == [b"a", b"b", b"c"]


def test_commit_publishes_and_error_discards() -> None:
    store = MemoryKeyValueStore()
    with store.transaction() as txn:
        txn.set(b"k", b"v")

    with pytest.raises(RuntimeError):
        with store.transaction() as txn:
            txn.set(b"k2", b"v2")
            raise RuntimeError("abort")

    assert store.items() == [(b"k", b"v")]
    assert len(store) == 1


def test_atomic_adds_from_overlapping_transactions_accumulate() -> None:
    store = MemoryKeyValueStore()
    with store.transaction() as txn:
        txn.set(b"n", encode_counter(0))

    with store.transaction() as first, store.transaction() as second:
        first.atomic_add(b"n", 2)
        second.atomic_add(b"n", 3)

    assert decode_counter(dict(store.items())[b"n"]) == 5


def test_uncommitted_writes_are_invisible_to_other_transactions() -> None:
    store = MemoryKeyValueStore()
    with store.transaction() as writer:
        writer.set(b"k", b"v")
        with store.transaction() as reader:
            assert reader.get(b"k") is None


def test_atomic_adds_from_threads_sharing_a_transaction(store: MemoryKeyValueStore) -> None:
    def bump(txn: MemoryTransaction) -> None:
        for _ in range(500):
            txn.atomic_add(b"n", 1)

    with store.transaction() as txn, ThreadPoolExecutor(max_workers=4) as pool:
        for future in [pool.submit(bump, txn) for _ in range(4)]:
            future.result()

    assert dict(store.items())[b"n"] == encode_counter(2000)
