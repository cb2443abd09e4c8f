"""
Field and segment metadata consumed by the writers and readers.

Mirrors the small part of a search engine's field model the key layout needs:
- IndexOptions: what a postings list records per document (ordered, so
  "at least positions" is a plain comparison)
- DocValuesType: the four per-document value shapes, whose ordinal is part
  of the doc-values keys
- FieldInfo / FieldInfos: per-field settings, looked up by name or number
- SegmentWriteState / SegmentReadState: the segment being flushed or read,
  together with the namespace that scopes its keys
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from kv_postings.index.protocols import SegmentNamespace


class IndexOptions(IntEnum):
    """What is recorded in a field's postings, from least to most."""

    NONE = 0
    DOCS = 1
    DOCS_AND_FREQS = 2
    DOCS_AND_FREQS_AND_POSITIONS = 3
    DOCS_AND_FREQS_AND_POSITIONS_AND_OFFSETS = 4

    @property
    def has_freqs(self) -> bool:
        return self >= IndexOptions.DOCS_AND_FREQS

    @property
    def has_positions(self) -> bool:
        return self >= IndexOptions.DOCS_AND_FREQS_AND_POSITIONS

    @property
    def has_offsets(self) -> bool:
        return self >= IndexOptions.DOCS_AND_FREQS_AND_POSITIONS_AND_OFFSETS


class DocValuesType(IntEnum):
    """Per-document value shapes. The integer value is written into keys."""

    NUMERIC = 0
    BINARY = 1
    SORTED = 2
    SORTED_SET = 3


@dataclass(frozen=True)
class FieldInfo:
    """Settings for one field of a segment.

    Args:
        name: Field name, used in doc-values keys
        number: Dense field number, used in postings keys
        index_options: What the postings record (NONE = not indexed)
        doc_values_type: Doc-values shape, if the field has doc values
        norm_type: Shape of the field's norms, written through the numeric path
        has_payloads: Whether the engine produces payloads (accepted, not stored)
    """

    name: str
    number: int
    index_options: IndexOptions = IndexOptions.DOCS_AND_FREQS_AND_POSITIONS
    doc_values_type: DocValuesType | None = None
    norm_type: DocValuesType | None = None
    has_payloads: bool = False

    @property
    def is_indexed(self) -> bool:
        return self.index_options > IndexOptions.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "number": self.number,
            "index_options": self.index_options.name,
            "doc_values_type": self.doc_values_type.name if self.doc_values_type is not None else None,
            "norm_type": self.norm_type.name if self.norm_type is not None else None,
            "has_payloads": self.has_payloads,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldInfo:
        doc_values = data.get("doc_values_type")
        norms = data.get("norm_type")
        return cls(
            name=data["name"],
            number=int(data["number"]),
            index_options=IndexOptions[data.get("index_options", IndexOptions.DOCS_AND_FREQS_AND_POSITIONS.name)],
            doc_values_type=DocValuesType[doc_values] if doc_values else None,
            norm_type=DocValuesType[norms] if norms else None,
            has_payloads=bool(data.get("has_payloads", False)),
        )


class FieldInfos:
    """Collection of field infos addressable by name and by number."""

    def __init__(self, infos: Iterable[FieldInfo]) -> None:
        self._by_name: dict[str, FieldInfo] = {}
        self._by_number: dict[int, FieldInfo] = {}
        for info in infos:
            if info.name in self._by_name:
                msg = f"Duplicate field name: {info.name}"
                raise ValueError(msg)
            if info.number in self._by_number:
                msg = f"Duplicate field number {info.number} for field '{info.name}'"
                raise ValueError(msg)
            self._by_name[info.name] = info
            self._by_number[info.number] = info

    def __iter__(self) -> Iterator[FieldInfo]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def field_info(self, key: str | int) -> FieldInfo | None:
        """Look up a field by name or by number."""
        if isinstance(key, int):
            return self._by_number.get(key)
        return self._by_name.get(key)


@dataclass(frozen=True)
class SegmentWriteState:
    """A segment being flushed: its name, declared size and fields."""

    segment_name: str
    doc_count: int
    field_infos: FieldInfos
    namespace: SegmentNamespace
    segment_suffix: str = ""

    def __post_init__(self) -> None:
        if self.doc_count < 0:
            msg = f"Segment doc count cannot be negative: {self.doc_count}"
            raise ValueError(msg)


@dataclass(frozen=True)
class SegmentReadState:
    """A flushed segment opened for reading."""

    segment_name: str
    doc_count: int
    field_infos: FieldInfos
    namespace: SegmentNamespace
    segment_suffix: str = ""

    @classmethod
    def from_write_state(cls, state: SegmentWriteState) -> SegmentReadState:
        return cls(
            segment_name=state.segment_name,
            doc_count=state.doc_count,
            field_infos=state.field_infos,
            namespace=state.namespace,
            segment_suffix=state.segment_suffix,
        )
