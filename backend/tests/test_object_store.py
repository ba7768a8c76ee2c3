"""
Tests for object store adapters: conditional writes, listing order, error mapping.
"""
from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from backend.persistence.object_store import (
    LocalFileStore,
    MemoryObjectStore,
    ObjectInfo,
    PreconditionFailedError,
    S3ObjectStore,
    StoreError,
)


def _client_error(code: str, op: str = "PutObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


@pytest.fixture(params=["memory", "local"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryObjectStore()
    return LocalFileStore(tmp_path / "store")


def test_get_absent_returns_none(store):
    assert store.get("missing/key.json") is None


def test_put_then_get(store):
    store.put("a/b.json", b"{}", "application/json")
    assert store.get("a/b.json") == b"{}"


def test_put_overwrites(store):
    store.put("a/b.json", b"1", "text/plain")
    store.put("a/b.json", b"2", "text/plain")
    assert store.get("a/b.json") == b"2"


def test_conditional_put_rejects_existing_key(store):
    store.put("slots/x.json", b"first", "text/plain", if_absent=True)
    with pytest.raises(PreconditionFailedError) as excinfo:
        store.put("slots/x.json", b"second", "text/plain", if_absent=True)
    assert excinfo.value.key == "slots/x.json"
    assert store.get("slots/x.json") == b"first"


def test_conditional_put_succeeds_after_delete(store):
    store.put("slots/x.json", b"first", "text/plain", if_absent=True)
    store.delete("slots/x.json")
    store.put("slots/x.json", b"again", "text/plain", if_absent=True)
    assert store.get("slots/x.json") == b"again"


def test_delete_missing_key_is_not_an_error(store):
    store.delete("never/written.json")


def test_list_is_lexicographic_prefix_match_with_limit(store):
    for key in ["r/b.json", "r/a.json", "r/c.json", "other/z.json", "r2/x.json"]:
        store.put(key, b"xx", "text/plain")
    assert [o.key for o in store.list("r/")] == ["r/a.json", "r/b.json", "r/c.json"]
    assert [o.key for o in store.list("r/", limit=2)] == ["r/a.json", "r/b.json"]
    assert store.list("r/", limit=1) == [ObjectInfo(key="r/a.json", size=2)]
    assert [o.key for o in store.list("r")] == ["r/a.json", "r/b.json", "r/c.json", "r2/x.json"]


def test_conditional_put_has_single_winner_under_contention(store):
    barrier = threading.Barrier(8)
    wins: list[int] = []
    lock = threading.Lock()

    def attempt(i: int) -> None:
        barrier.wait()
        try:
            store.put("slots/race.json", str(i).encode(), "text/plain", if_absent=True)
        except PreconditionFailedError:
            return
        with lock:
            wins.append(i)

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(wins) == 1
    assert store.get("slots/race.json") == str(wins[0]).encode()


def test_memory_store_keeps_content_type():
    store = MemoryObjectStore()
    store.put("a.json", b"{}", "application/json; charset=utf-8")
    assert store.content_type("a.json") == "application/json; charset=utf-8"


def test_local_store_rejects_keys_escaping_root(tmp_path):
    store = LocalFileStore(tmp_path / "root")
    with pytest.raises(ValueError):
        store.put("../outside.json", b"x", "text/plain")


# ---------- S3ObjectStore ----------


def test_s3_get_missing_key_returns_none():
    client = MagicMock()
    client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")
    store = S3ObjectStore(client, "data")
    assert store.get("x.json") is None
    client.get_object.assert_called_once_with(Bucket="data", Key="x.json")


def test_s3_get_reads_body():
    client = MagicMock()
    client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"hello"))}
    assert S3ObjectStore(client, "data").get("x.json") == b"hello"


def test_s3_get_other_errors_raise_store_error():
    client = MagicMock()
    client.get_object.side_effect = _client_error("AccessDenied", "GetObject")
    with pytest.raises(StoreError):
        S3ObjectStore(client, "data").get("x.json")


def test_s3_conditional_put_sends_if_none_match():
    client = MagicMock()
    S3ObjectStore(client, "data").put("k.json", b"{}", "application/json", if_absent=True)
    client.put_object.assert_called_once_with(
        Bucket="data", Key="k.json", Body=b"{}", ContentType="application/json", IfNoneMatch="*"
    )


def test_s3_plain_put_has_no_condition():
    client = MagicMock()
    S3ObjectStore(client, "data").put("k.json", b"{}", "application/json")
    assert "IfNoneMatch" not in client.put_object.call_args.kwargs


@pytest.mark.parametrize("code", ["PreconditionFailed", "ConditionalRequestConflict"])
def test_s3_precondition_codes_map_to_precondition_failed(code):
    client = MagicMock()
    client.put_object.side_effect = _client_error(code)
    with pytest.raises(PreconditionFailedError):
        S3ObjectStore(client, "data").put("k.json", b"{}", "application/json", if_absent=True)


def test_s3_put_failure_raises_store_error():
    client = MagicMock()
    client.put_object.side_effect = _client_error("InternalError")
    with pytest.raises(StoreError) as excinfo:
        S3ObjectStore(client, "data").put("k.json", b"{}", "application/json", if_absent=True)
    assert not isinstance(excinfo.value, PreconditionFailedError)


def test_s3_list_paginates_sorts_and_limits():
    client = MagicMock()
    paginator = client.get_paginator.return_value
    paginator.paginate.return_value = [
        {"Contents": [{"Key": "p/b.json", "Size": 2}, {"Key": "p/a.json", "Size": 1}]},
        {"Contents": [{"Key": "p/c.json", "Size": 3}]},
    ]
    objects = S3ObjectStore(client, "data").list("p/", limit=2)
    assert objects == [ObjectInfo("p/a.json", 1), ObjectInfo("p/b.json", 2)]
    client.get_paginator.assert_called_once_with("list_objects_v2")
    paginator.paginate.assert_called_once_with(
        Bucket="data", Prefix="p/", PaginationConfig={"MaxItems": 2}
    )


def test_s3_delete_calls_delete_object():
    client = MagicMock()
    S3ObjectStore(client, "data").delete("k.json")
    client.delete_object.assert_called_once_with(Bucket="data", Key="k.json")


def test_list_includes_dot_named_keys_and_skips_in_flight_writes(tmp_path):
    store = LocalFileStore(tmp_path / "root")
    store.put("r/.keep.json", b"{}", "application/json")
    store.put("r/a.json", b"{}", "application/json")
    (tmp_path / "root" / "r" / ".a.json.123.456.tmp").write_bytes(b"partial")
    assert [o.key for o in store.list("r/")] == ["r/.keep.json", "r/a.json"]


def test_list_only_walks_the_prefix_directory(tmp_path, monkeypatch):
    store = LocalFileStore(tmp_path / "root")
    store.put("reports/data/1.json", b"1", "text/plain")
    store.put("users/by-id/u.json", b"u", "text/plain")
    walked: list[Path] = []
    original_rglob = Path.rglob

    def recording_rglob(self, pattern):
        walked.append(self)
        return original_rglob(self, pattern)

    monkeypatch.setattr(Path, "rglob", recording_rglob)
    assert [o.key for o in store.list("reports/data/")] == ["reports/data/1.json"]
    assert walked == [(tmp_path / "root" / "reports" / "data").resolve()]


def test_list_missing_prefix_directory_is_empty(tmp_path):
    store = LocalFileStore(tmp_path / "root")
    assert store.list("nothing/here/") == []
