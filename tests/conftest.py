"""Shared test fixtures and configuration."""

import os

import pytest


# Test environment that overrides every config value read from the environment
TEST_ENV = {
    "KV_POSTINGS_LOG_LEVEL": "info",
    "KV_POSTINGS_LOG_JSON": "false",
    "KV_POSTINGS_KEYSPACE_ROOT": "test",
    "KV_POSTINGS_POSTINGS_EXTENSION": "pst",
    "KV_POSTINGS_DOC_VALUES_EXTENSION": "dv",
    "KV_POSTINGS_SCAN_BATCH_SIZE": "4",
    "KV_POSTINGS_OBSERVABILITY__ENABLED": "false",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value

from kv_postings.config import get_settings
from kv_postings.index.schema import (
    DocValuesType,
    FieldInfo,
    FieldInfos,
    IndexOptions,
    SegmentReadState,
    SegmentWriteState,
)
from kv_postings.store import MemoryKeyValueStore, TupleNamespace


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset environment variables and the settings cache before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def namespace() -> TupleNamespace:
    return TupleNamespace(root=("test",))


@pytest.fixture
def field_infos() -> FieldInfos:
    """Fields covering every index option and doc-values shape used in the tests."""
    return FieldInfos(
        [
            FieldInfo("title", 0),
            FieldInfo("tags", 1, index_options=IndexOptions.DOCS),
            FieldInfo("body", 2, index_options=IndexOptions.DOCS_AND_FREQS),
            FieldInfo("price", 3, index_options=IndexOptions.NONE, doc_values_type=DocValuesType.NUMERIC),
            FieldInfo("blob", 4, index_options=IndexOptions.NONE, doc_values_type=DocValuesType.BINARY),
            FieldInfo("category", 5, index_options=IndexOptions.NONE, doc_values_type=DocValuesType.SORTED),
            FieldInfo("labels", 6, index_options=IndexOptions.NONE, doc_values_type=DocValuesType.SORTED_SET),
            FieldInfo(
                "length",
                7,
                index_options=IndexOptions.NONE,
                norm_type=DocValuesType.NUMERIC,
            ),
        ]
    )


@pytest.fixture
def write_state(field_infos: FieldInfos, namespace: TupleNamespace) -> SegmentWriteState:
    return SegmentWriteState(segment_name="_0", doc_count=3, field_infos=field_infos, namespace=namespace)


@pytest.fixture
def read_state(write_state: SegmentWriteState) -> SegmentReadState:
    return SegmentReadState.from_write_state(write_state)
