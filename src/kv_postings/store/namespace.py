"""Segment namespaces: the key prefix every entity of a segment file lives under."""

from __future__ import annotations

from dataclasses import dataclass

from kv_postings.config import Settings
from kv_postings.index.tuple_codec import Element, pack


@dataclass(frozen=True)
class TupleNamespace:
    """Prefix keys with ``root + (segment_id, suffix, extension)``.

    Two segments (or two files of one segment) never share a prefix, and a
    prefix is never itself a prefix of another namespace's keys because every
    element is self-delimiting.
    """

    root: tuple[Element, ...] = ()

    def prefix_for(self, segment_id: str, extension: str, suffix: str = "") -> bytes:
        if not segment_id:
            raise ValueError("Segment id is required")
        if not extension:
            raise ValueError("File extension is required")
        return pack((*self.root, segment_id, suffix, extension))

    @classmethod
    def from_settings(cls, settings: Settings) -> TupleNamespace:
        return cls(root=(settings.keyspace_root,) if settings.keyspace_root else ())
