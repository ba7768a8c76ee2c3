"""
JSON documents on top of an ObjectStore.
No validation: values go in and come out as plain JSON data.
"""
from __future__ import annotations

import json
from typing import Any

from .object_store import ObjectStore

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class JsonDocumentStore:
    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def read(self, key: str) -> Any | None:
        """Decoded document at key, or None if absent. Raises ValueError on invalid JSON."""
        raw = self.store.get(key)
        if raw is None:
            return None
        return json.loads(raw.decode("utf-8"))

    def write(self, key: str, value: Any, if_absent: bool = False) -> None:
        body = json.dumps(value, separators=(",", ":")).encode("utf-8")
        self.store.put(key, body, JSON_CONTENT_TYPE, if_absent=if_absent)

    def update(self, key: str, partial: dict[str, Any]) -> dict[str, Any]:
        """Shallow merge into the stored document. Read-modify-write; last writer wins."""
        current = self.read(key)
        merged = {**(current if isinstance(current, dict) else {}), **partial}
        self.write(key, merged)
        return merged

    def delete(self, key: str) -> None:
        self.store.delete(key)

    def list_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        """Every (key, document) under prefix. Caller bounds the prefix cardinality."""
        entries: list[tuple[str, Any]] = []
        for obj in self.store.list(prefix):
            value = self.read(obj.key)
            if value is not None:
                entries.append((obj.key, value))
        return entries
