"""
Tests for the JSON document codec.
"""
from __future__ import annotations

from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from backend.persistence.json_store import JSON_CONTENT_TYPE, JsonDocumentStore
from backend.persistence.object_store import MemoryObjectStore, PreconditionFailedError


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def docs(store):
    return JsonDocumentStore(store)


def test_read_absent_is_none(docs):
    assert docs.read("nope.json") is None


def test_write_stores_utf8_json_with_content_type(docs, store):
    docs.write("doc.json", {"name": "Seleção", "n": 1})
    assert store.content_type("doc.json") == JSON_CONTENT_TYPE
    assert docs.read("doc.json") == {"name": "Seleção", "n": 1}


def test_write_if_absent_propagates_precondition(docs):
    docs.write("lock.json", {"a": 1}, if_absent=True)
    with pytest.raises(PreconditionFailedError):
        docs.write("lock.json", {"a": 2}, if_absent=True)
    assert docs.read("lock.json") == {"a": 1}


def test_update_is_shallow_merge(docs):
    docs.write("doc.json", {"a": 1, "nested": {"x": 1}})
    merged = docs.update("doc.json", {"b": 2, "nested": {"y": 2}})
    assert merged == {"a": 1, "b": 2, "nested": {"y": 2}}
    assert docs.read("doc.json") == merged


def test_update_missing_document_starts_empty(docs):
    assert docs.update("new.json", {"a": 1}) == {"a": 1}


def test_read_invalid_json_raises_value_error(docs, store):
    store.put("bad.json", b"{not json", "application/json")
    with pytest.raises(ValueError):
        docs.read("bad.json")


def test_list_prefix_returns_key_value_pairs(docs):
    docs.write("p/2.json", [2])
    docs.write("p/1.json", [1])
    docs.write("q/1.json", [9])
    assert docs.list_prefix("p/") == [("p/1.json", [1]), ("p/2.json", [2])]


def test_delete(docs):
    docs.write("doc.json", {})
    docs.delete("doc.json")
    assert docs.read("doc.json") is None
