"""Key/value persistence for session credentials.

Values are opaque strings.  The store never caches: every call round-trips
to the backend, so callers that read repeatedly within a run keep their own
copy.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from pystategrid._constants import NAMESPACE
from pystategrid._runtime import HostRuntime

_logger = logging.getLogger(__name__)


class CredentialBackend(Protocol):
    """Persistence mechanism offered by the host."""

    def read(self, key: str) -> str | None:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryCredentialBackend:
    """In-process backend, used for tests and throwaway runs."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self.values.get(key)

    def write(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class FileCredentialBackend:
    """One file per key inside a namespace directory."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / quote(key, safe="")

    def read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class CredentialStore:
    """``get`` / ``set`` / ``clear`` over a :class:`CredentialBackend`."""

    def __init__(self, backend: CredentialBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> CredentialBackend:
        return self._backend

    def get(self, key: str) -> str | None:
        return self._backend.read(key)

    def set(self, key: str, value: str) -> bool:
        try:
            self._backend.write(key, value)
        except OSError:
            _logger.warning("Failed to persist credential key=%s", key, exc_info=True)
            return False
        return True

    def clear(self, key: str) -> bool:
        try:
            self._backend.remove(key)
        except OSError:
            _logger.warning("Failed to clear credential key=%s", key, exc_info=True)
            return False
        return True


def credential_directory(
    runtime: HostRuntime,
    data_store_dir: str | Path,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Directory holding the credential namespace for *runtime*."""
    env = os.environ if env is None else env
    ql_dir = env.get("QL_DIR")
    if runtime is HostRuntime.QINGLONG and ql_dir:
        return Path(ql_dir) / "data" / NAMESPACE
    return Path(data_store_dir) / NAMESPACE


def create_credential_store(runtime: HostRuntime, data_store_dir: str | Path) -> CredentialStore:
    """Select the credential backend for *runtime*."""
    directory = credential_directory(runtime, data_store_dir)
    _logger.debug("Credential store runtime=%s directory=%s", runtime.value, directory)
    return CredentialStore(FileCredentialBackend(directory))
