"""In-memory ordered key-value store with snapshot transactions.

Each transaction works on a private copy of the committed data and records
its mutations. On commit the mutation log is replayed against the latest
committed state, so atomic adds from concurrent transactions accumulate
instead of overwriting each other. There is no conflict detection: plain
sets are last-writer-wins.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from collections.abc import Iterator
from contextlib import contextmanager
import logging
import threading

from kv_postings.index.tuple_codec import add_counter


logger = logging.getLogger(__name__)

_SET = "set"
_ADD = "add"


def _check_limit(limit: int | None) -> None:
    if limit is not None and limit <= 0:
        msg = f"Range scan limit must be positive, got {limit}"
        raise ValueError(msg)


class MemoryTransaction:
    """Transaction handle over a sorted snapshot; safe to share across threads."""

    def __init__(self, data: dict[bytes, bytes]) -> None:
        self._data = data
        self._keys = sorted(data)
        self._mutations: list[tuple[str, bytes, bytes | int]] = []
        self._lock = threading.Lock()

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._put(key, bytes(value))
            self._mutations.append((_SET, key, bytes(value)))

    def atomic_add(self, key: bytes, delta: int) -> None:
        with self._lock:
            self._put(key, add_counter(self._data.get(key), delta))
            self._mutations.append((_ADD, key, delta))

    def range_scan(self, begin: bytes, end: bytes, limit: int | None = None) -> Iterator[tuple[bytes, bytes]]:
        _check_limit(limit)
        return self._scan(begin, end, limit)

    def _scan(self, begin: bytes, end: bytes, limit: int | None) -> Iterator[tuple[bytes, bytes]]:
        # Re-bisect after every yield: the caller may write while iterating
        with self._lock:
            index = bisect_left(self._keys, begin)
        produced = 0
        while True:
            with self._lock:
                if index >= len(self._keys):
                    return
                key = self._keys[index]
                if key >= end:
                    return
                value = self._data[key]
            yield key, value
            produced += 1
            if limit is not None and produced >= limit:
                return
            with self._lock:
                index = bisect_right(self._keys, key)

    @property
    def mutation_count(self) -> int:
        return len(self._mutations)

    def _put(self, key: bytes, value: bytes) -> None:
        if key not in self._data:
            insort(self._keys, key)
        self._data[key] = value

    def _replay(self, target: dict[bytes, bytes]) -> None:
        for op, key, operand in self._mutations:
            if op == _SET:
                target[key] = operand  # type: ignore[assignment]
            else:
                target[key] = add_counter(target.get(key), operand)  # type: ignore[arg-type]


class MemoryKeyValueStore:
    """Thread-safe ordered store; ``transaction()`` commits on clean exit."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._committed: dict[bytes, bytes] = {}

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        with self._lock:
            snapshot = dict(self._committed)
        txn = MemoryTransaction(snapshot)
        try:
            yield txn
        except BaseException:
            logger.debug("Discarding %d uncommitted mutations", txn.mutation_count)
            raise
        with self._lock:
            committed = dict(self._committed)
            txn._replay(committed)
            self._committed = committed

    def items(self) -> list[tuple[bytes, bytes]]:
        """Return the committed contents in key order."""
        with self._lock:
            return sorted(self._committed.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._committed)
