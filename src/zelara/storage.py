"""Key-value persistence backends for local state."""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol
from urllib.parse import quote


class KeyValueStore(Protocol):
    """Byte-oriented key-value store; ``set`` raises on failure."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...


class MemoryKeyValueStore:
    """Process-local store, mostly for tests and dry runs."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)


class FileKeyValueStore:
    """One file per key under ``root``; writes replace the file atomically."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        with self._lock:
            if not path.exists():
                return None
            return path.read_bytes()

    def set(self, key: str, value: bytes) -> None:
        path = self.path_for(key)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
