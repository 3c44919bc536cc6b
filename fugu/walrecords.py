"""Write-ahead log records, batches and the per-file writer."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import msgpack

logger = logging.getLogger(__name__)

MAX_CONCURRENT_WRITERS = 8
BUFFER_SIZE = 1024 * 1024
FLUSH_INTERVAL = 0.1


class WalError(OSError):
    """Raised when a write-ahead log file cannot be read or written."""


class OpKind(Enum):
    """Mutations that can be recorded in the log."""

    PUT = "put"
    DELETE = "delete"
    PATCH = "patch"


@dataclass(frozen=True)
class WalOp:
    """One logged mutation; ``value`` is None exactly for deletes."""

    kind: OpKind
    key: str
    value: bytes | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, OpKind):
            raise ValueError(f"unknown operation kind: {self.kind!r}")
        if not isinstance(self.key, str):
            raise ValueError("operation key must be a string")
        if self.kind is OpKind.DELETE:
            if self.value is not None:
                raise ValueError("a delete operation carries no value")
        elif not isinstance(self.value, (bytes, bytearray)):
            raise ValueError(f"a {self.kind.value} operation needs a bytes value")
        elif isinstance(self.value, bytearray):
            object.__setattr__(self, "value", bytes(self.value))

    @property
    def estimated_size(self) -> int:
        """Approximate serialised size in bytes, used to decide when to flush."""
        key_len = len(self.key.encode("utf-8"))
        if self.kind is OpKind.DELETE:
            return key_len + 8
        assert self.value is not None
        return key_len + len(self.value) + 16


def _to_record(op: WalOp) -> list[Any]:
    return [op.kind.value, op.key, op.value]


def _from_record(record: Any) -> WalOp:
    if not isinstance(record, list) or len(record) != 3:
        raise WalError("WAL file corrupted: malformed operation record")
    kind, key, value = record
    try:
        return WalOp(OpKind(kind), key, value)
    except ValueError as exc:
        raise WalError(f"WAL file corrupted: {exc}") from exc


class CommandKind(Enum):
    """Requests that can be sent to the log system."""

    PUT = "put"
    DELETE = "delete"
    PATCH = "patch"
    DUMP = "dump"
    FLUSH = "flush"


_OP_FOR_COMMAND = {
    CommandKind.PUT: OpKind.PUT,
    CommandKind.DELETE: OpKind.DELETE,
    CommandKind.PATCH: OpKind.PATCH,
}


@dataclass
class WalCommand:
    """A request to the log system, routed by namespace.

    ``response`` optionally receives the outcome of a dump (the text) or a
    flush (None, or the raised exception).
    """

    kind: CommandKind
    namespace: str | None = None
    key: str | None = None
    value: bytes | None = None
    response: Future | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.kind, CommandKind):
            raise ValueError(f"unknown command kind: {self.kind!r}")
        if self.kind is not CommandKind.DUMP and self.namespace is None:
            raise ValueError(f"a {self.kind.value} command needs a namespace")
        if self.kind in _OP_FOR_COMMAND:
            # Validates key and value the same way an operation does.
            self.to_op()

    def to_op(self) -> WalOp | None:
        """The operation this command records, or None for management commands."""
        op_kind = _OP_FOR_COMMAND.get(self.kind)
        if op_kind is None:
            return None
        if self.key is None:
            raise ValueError(f"a {self.kind.value} command needs a key")
        value = None if op_kind is OpKind.DELETE else self.value
        return WalOp(op_kind, self.key, value)


class WalBatch:
    """Operations waiting to be written, with their estimated size."""

    def __init__(self) -> None:
        self.operations: list[WalOp] = []
        self.size = 0

    def add(self, op: WalOp) -> int:
        """Append ``op`` and return the new estimated batch size."""
        self.operations.append(op)
        self.size += op.estimated_size
        return self.size

    def serialize(self) -> bytes:
        """Encode the batch as one record of the log file."""
        return msgpack.packb([_to_record(op) for op in self.operations], use_bin_type=True)

    def clear(self) -> None:
        self.operations.clear()
        self.size = 0

    def __len__(self) -> int:
        return len(self.operations)


class WalWriter:
    """Appends batches of operations to a single log file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Could not create WAL directory %s: %s", self._path.parent, exc)
        self._batch = WalBatch()
        self._batch_lock = threading.Lock()
        self._flushing = threading.Event()
        self._write_slots = threading.BoundedSemaphore(MAX_CONCURRENT_WRITERS)
        self._file_lock = threading.Lock()
        self._ops_count = 0
        self._shutdown = threading.Event()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def ops_count(self) -> int:
        """Operations appended since this writer was created."""
        return self._ops_count

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    def append(self, op: WalOp) -> None:
        """Queue ``op``; flush when the batch reaches the buffer size."""
        with self._batch_lock:
            self._ops_count += 1
            should_flush = self._batch.add(op) >= BUFFER_SIZE
        if should_flush:
            self.flush(False)

    def flush(self, force: bool = False) -> None:
        """Write the pending batch to disk.

        Without ``force`` this returns at once if another flush is running.
        """
        if not force and self._flushing.is_set():
            return
        self._flushing.set()
        try:
            with self._batch_lock:
                if not self._batch:
                    return
                pending, self._batch = self._batch, WalBatch()
            payload = pending.serialize()
            with self._write_slots, self._file_lock:
                with open(self._path, "ab") as handle:
                    handle.write(payload)
                    handle.flush()
        finally:
            self._flushing.clear()

    def read_all(self) -> list[WalOp]:
        """Every operation recorded in the file, oldest first."""
        if not self._path.exists():
            return []
        try:
            data = self._path.read_bytes()
        except OSError as exc:
            logger.warning("Error reading WAL file %s: %s", self._path, exc)
            return []
        if not data:
            return []
        unpacker = msgpack.Unpacker(raw=False, use_list=True)
        unpacker.feed(data)
        ops: list[WalOp] = []
        try:
            for batch in unpacker:
                if not isinstance(batch, list):
                    raise WalError("WAL file corrupted: expected a list of operations")
                ops.extend(_from_record(record) for record in batch)
        except WalError:
            raise
        except Exception as exc:
            raise WalError(f"WAL file corrupted: {exc}") from exc
        if unpacker.tell() != len(data):
            raise WalError("WAL file corrupted: truncated record")
        return ops

    def shutdown(self) -> None:
        """Mark the writer as shutting down."""
        self._shutdown.set()