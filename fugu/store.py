"""A small ordered key-value store persisted as a single file in a directory."""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from pathlib import Path

import msgpack

DATA_FILE = "data.msgpack"

Key = str | bytes


def _as_bytes(value: Key) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"expected str or bytes, got {type(value).__name__}")


class KeyValueStore:
    """Byte-keyed store kept in memory and written to disk on flush.

    Keys and values are bytes (``str`` is accepted and encoded as UTF-8).
    Iteration is in ascending key order. A store opened without a path, or
    with ``temporary=True``, never touches the disk.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None, *, temporary: bool = False) -> None:
        self._path: Path | None = None if temporary or path is None else Path(path)
        self._data: dict[bytes, bytes] = {}
        self._dirty = False
        self._closed = False
        self._lock = threading.RLock()
        if self._path is not None:
            self._path.mkdir(parents=True, exist_ok=True)
            self._load()

    @property
    def path(self) -> Path | None:
        """Directory holding the store, or None for a temporary store."""
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def _data_file(self) -> Path:
        assert self._path is not None
        return self._path / DATA_FILE

    def _load(self) -> None:
        data_file = self._data_file()
        if not data_file.exists():
            return
        raw = data_file.read_bytes()
        if not raw:
            return
        try:
            pairs = msgpack.unpackb(raw, raw=False, use_list=True)
        except Exception as exc:
            raise ValueError(f"corrupt store file {data_file}: {exc}") from exc
        if not isinstance(pairs, list):
            raise ValueError(f"corrupt store file {data_file}: expected a list of pairs")
        for pair in pairs:
            if (
                not isinstance(pair, list)
                or len(pair) != 2
                or not isinstance(pair[0], bytes)
                or not isinstance(pair[1], bytes)
            ):
                raise ValueError(f"corrupt store file {data_file}: malformed entry")
            self._data[pair[0]] = pair[1]

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("store is closed")

    def get(self, key: Key) -> bytes | None:
        """Return the value stored under ``key``, or None."""
        with self._lock:
            self._check_open()
            return self._data.get(_as_bytes(key))

    def insert(self, key: Key, value: Key) -> bytes | None:
        """Store ``value`` under ``key`` and return the value it replaced."""
        with self._lock:
            self._check_open()
            k = _as_bytes(key)
            previous = self._data.get(k)
            self._data[k] = _as_bytes(value)
            self._dirty = True
            return previous

    def remove(self, key: Key) -> bytes | None:
        """Delete ``key`` and return the value it held, or None if absent."""
        with self._lock:
            self._check_open()
            previous = self._data.pop(_as_bytes(key), None)
            if previous is not None:
                self._dirty = True
            return previous

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield ``(key, value)`` pairs in ascending key order."""
        with self._lock:
            self._check_open()
            snapshot = sorted(self._data.items())
        yield from snapshot

    def __len__(self) -> int:
        with self._lock:
            self._check_open()
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, bytes, bytearray, memoryview)):
            return False
        return self.get(key) is not None

    def flush(self) -> None:
        """Write pending changes to disk atomically."""
        with self._lock:
            self._check_open()
            if self._path is None or not self._dirty:
                return
            payload = msgpack.packb(
                [[k, v] for k, v in sorted(self._data.items())], use_bin_type=True
            )
            data_file = self._data_file()
            tmp_file = data_file.with_name(data_file.name + ".tmp")
            with open(tmp_file, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_file, data_file)
            self._dirty = False

    def close(self) -> None:
        """Flush and release the store; later operations raise ValueError."""
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._closed = True

    def __enter__(self) -> KeyValueStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()