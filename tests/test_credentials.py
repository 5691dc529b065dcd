from __future__ import annotations

import json
from pathlib import Path

from pystategrid._constants import NAMESPACE, SESSION_BLOB_KEY, SESSION_TIME_KEY
from pystategrid._credentials import (
    CredentialStore,
    FileCredentialBackend,
    MemoryCredentialBackend,
    credential_directory,
)
from pystategrid._runtime import HostRuntime, probe_runtime
from pystategrid.session import Session, SessionCache

_BIZRT = {
    "token": "TOKEN-1",
    "userInfo": [{"userId": "U1", "loginAccount": "13800000000", "nickname": "nick"}],
}


class _BrokenBackend(MemoryCredentialBackend):
    def write(self, key: str, value: str) -> None:
        raise PermissionError("read-only")

    def remove(self, key: str) -> None:
        raise PermissionError("read-only")


def test_file_backend_round_trip(tmp_path: Path) -> None:
    store = CredentialStore(FileCredentialBackend(tmp_path / NAMESPACE))

    assert store.get(SESSION_BLOB_KEY) is None
    assert store.set(SESSION_BLOB_KEY, '{"token":"t"}')
    assert store.get(SESSION_BLOB_KEY) == '{"token":"t"}'
    assert (tmp_path / NAMESPACE / SESSION_BLOB_KEY).is_file()

    assert store.clear(SESSION_BLOB_KEY)
    assert store.get(SESSION_BLOB_KEY) is None
    # Clearing an absent key is not an error.
    assert store.clear(SESSION_BLOB_KEY)


def test_file_backend_quotes_key_names(tmp_path: Path) -> None:
    backend = FileCredentialBackend(tmp_path)
    backend.write("a/b", "v")
    assert backend.read("a/b") == "v"
    assert (tmp_path / "a%2Fb").is_file()


def test_store_reports_backend_failures() -> None:
    store = CredentialStore(_BrokenBackend())
    assert store.set("k", "v") is False
    assert store.clear("k") is False


def test_credential_directory_per_runtime() -> None:
    assert credential_directory(HostRuntime.QINGLONG, "data", {"QL_DIR": "/ql"}) == Path("/ql/data") / NAMESPACE
    assert credential_directory(HostRuntime.STANDALONE, "data", {"QL_DIR": "/ql"}) == Path("data") / NAMESPACE
    assert credential_directory(HostRuntime.QINGLONG, "store", {}) == Path("store") / NAMESPACE


def test_probe_runtime(tmp_path: Path) -> None:
    missing = tmp_path / "missing"
    assert probe_runtime({}, qinglong_root=missing) is HostRuntime.STANDALONE
    assert probe_runtime({"QL_DIR": "/ql"}, qinglong_root=missing) is HostRuntime.QINGLONG
    assert probe_runtime({"QL_BRANCH": "master"}, qinglong_root=missing) is HostRuntime.QINGLONG
    assert probe_runtime({}, qinglong_root=tmp_path) is HostRuntime.QINGLONG


def test_session_cache_round_trip() -> None:
    backend = MemoryCredentialBackend()
    cache = SessionCache(CredentialStore(backend))
    assert cache.load() is None

    cache.save(Session.from_bizrt(_BIZRT, saved_at_ms=1_700_000_000_000))

    assert json.loads(backend.values[SESSION_BLOB_KEY]) == _BIZRT
    assert backend.values[SESSION_TIME_KEY] == "1700000000000"
    loaded = cache.load()
    assert loaded is not None
    assert loaded.token == "TOKEN-1"
    assert loaded.primary.user_id == "U1"
    assert loaded.saved_at_ms == 1_700_000_000_000

    cache.clear()
    assert backend.values == {}
    assert cache.load() is None


def test_session_cache_missing_timestamp_counts_as_fresh() -> None:
    cache = SessionCache(CredentialStore(MemoryCredentialBackend({SESSION_BLOB_KEY: json.dumps(_BIZRT)})))
    session = cache.load()
    assert session is not None
    assert not session.is_expired(24 * 3600 * 1000)


def test_session_cache_invalid_timestamp_counts_as_expired() -> None:
    backend = MemoryCredentialBackend({SESSION_BLOB_KEY: json.dumps(_BIZRT), SESSION_TIME_KEY: "yesterday"})
    session = SessionCache(CredentialStore(backend)).load()
    assert session is not None
    assert session.saved_at_ms == 0
    assert session.is_expired(24 * 3600 * 1000)


def test_session_cache_ignores_unusable_blobs() -> None:
    for blob in ("{not json", json.dumps({"token": "t"}), json.dumps(["x"])):
        cache = SessionCache(CredentialStore(MemoryCredentialBackend({SESSION_BLOB_KEY: blob})))
        assert cache.load() is None


def test_session_expiry_boundary() -> None:
    session = Session.from_bizrt(_BIZRT, saved_at_ms=1_000)
    assert not session.is_expired(500, at_ms=1_500)
    assert session.is_expired(500, at_ms=1_501)
