from concurrent.futures import Future

import pytest

from fugu.walrecords import (
    BUFFER_SIZE,
    CommandKind,
    OpKind,
    WalBatch,
    WalCommand,
    WalError,
    WalOp,
    WalWriter,
)


def test_delete_rejects_value():
    with pytest.raises(ValueError):
        WalOp(OpKind.DELETE, "key1", b"value1")


def test_put_requires_bytes_value():
    with pytest.raises(ValueError):
        WalOp(OpKind.PUT, "key1")
    with pytest.raises(ValueError):
        WalOp(OpKind.PATCH, "key1", "text")


def test_bytearray_value_is_normalised():
    op = WalOp(OpKind.PUT, "key1", bytearray(b"value1"))
    assert op.value == b"value1"
    assert type(op.value) is bytes


def test_command_to_op_put_delete_patch():
    put = WalCommand(CommandKind.PUT, namespace="ns", key="cmd_key1", value=b"cmd_value1")
    assert put.to_op() == WalOp(OpKind.PUT, "cmd_key1", b"cmd_value1")
    delete = WalCommand(CommandKind.DELETE, namespace="ns", key="cmd_key1")
    assert delete.to_op() == WalOp(OpKind.DELETE, "cmd_key1")
    patch = WalCommand(CommandKind.PATCH, namespace="ns", key="k", value=b"v")
    assert patch.to_op() == WalOp(OpKind.PATCH, "k", b"v")


def test_management_commands_have_no_op():
    dump = WalCommand(CommandKind.DUMP, response=Future())
    assert dump.to_op() is None
    assert dump.namespace is None
    flush = WalCommand(CommandKind.FLUSH, namespace="ns")
    assert flush.to_op() is None


def test_command_validation():
    with pytest.raises(ValueError):
        WalCommand(CommandKind.PUT, key="k", value=b"v")
    with pytest.raises(ValueError):
        WalCommand(CommandKind.PUT, namespace="ns", key="k")
    with pytest.raises(ValueError):
        WalCommand(CommandKind.DELETE, namespace="ns")
    with pytest.raises(ValueError):
        WalCommand(CommandKind.FLUSH)


def test_batch_size_accumulates():
    batch = WalBatch()
    first = batch.add(WalOp(OpKind.PUT, "key1", b"value1"))
    second = batch.add(WalOp(OpKind.DELETE, "key1"))
    assert len(batch) == 2
    assert second - first == WalOp(OpKind.DELETE, "key1").estimated_size
    assert batch.size == second


def test_delete_size_pinned():
    assert WalOp(OpKind.DELETE, "k").estimated_size == 9


def test_put_and_patch_estimate_equally():
    put = WalOp(OpKind.PUT, "key", b"abc")
    patch = WalOp(OpKind.PATCH, "key", b"abc")
    delete = WalOp(OpKind.DELETE, "key")
    assert put.estimated_size == patch.estimated_size
    assert put.estimated_size > delete.estimated_size


def test_size_counts_utf8_bytes():
    assert WalOp(OpKind.DELETE, "é").estimated_size == WalOp(OpKind.DELETE, "ab").estimated_size


def test_batch_clear():
    batch = WalBatch()
    batch.add(WalOp(OpKind.PUT, "a", b"b"))
    batch.clear()
    assert len(batch) == 0
    assert batch.size == 0


def test_serialized_batch_reads_back(tmp_path):
    batch = WalBatch()
    ops = [WalOp(OpKind.PUT, "key1", b"value1"), WalOp(OpKind.DELETE, "key1")]
    for op in ops:
        batch.add(op)
    path = tmp_path / "ns_wal.bin"
    path.write_bytes(batch.serialize())
    assert WalWriter(path).read_all() == ops


def test_writer_round_trip(tmp_path):
    writer = WalWriter(tmp_path / "sub" / "dir" / "ns_wal.bin")
    assert writer.path.parent.is_dir()
    ops = [
        WalOp(OpKind.PUT, "key1", b"value1"),
        WalOp(OpKind.PUT, "key2", b"value2"),
        WalOp(OpKind.DELETE, "key1"),
    ]
    for op in ops:
        writer.append(op)
    assert writer.read_all() == []
    writer.flush(True)
    assert writer.read_all() == ops
    assert writer.ops_count == 3


def test_multiple_flushes_accumulate(tmp_path):
    writer = WalWriter(tmp_path / "wal.bin")
    writer.append(WalOp(OpKind.PUT, "a", b"1"))
    writer.flush(True)
    writer.append(WalOp(OpKind.PATCH, "a", b"2"))
    writer.flush(False)
    assert [op.kind for op in writer.read_all()] == [OpKind.PUT, OpKind.PATCH]


def test_empty_flush_creates_no_file(tmp_path):
    writer = WalWriter(tmp_path / "wal.bin")
    writer.flush(True)
    assert not writer.path.exists()
    assert writer.read_all() == []


def test_empty_file_reads_empty(tmp_path):
    path = tmp_path / "wal.bin"
    path.write_bytes(b"")
    assert WalWriter(path).read_all() == []


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "wal.bin"
    path.write_bytes(b"\xc1\xc1\xc1")
    with pytest.raises(WalError):
        WalWriter(path).read_all()


def test_truncated_file_raises(tmp_path):
    batch = WalBatch()
    batch.add(WalOp(OpKind.PUT, "key1", b"value1"))
    path = tmp_path / "wal.bin"
    path.write_bytes(batch.serialize()[:-2])
    with pytest.raises(WalError):
        WalWriter(path).read_all()


def test_full_buffer_triggers_flush(tmp_path):
    writer = WalWriter(tmp_path / "wal.bin")
    writer.append(WalOp(OpKind.PUT, "big", bytes(BUFFER_SIZE)))
    assert writer.path.exists()
    ops = writer.read_all()
    assert len(ops) == 1
    assert len(ops[0].value) == BUFFER_SIZE


def test_shutdown_sets_flag(tmp_path):
    writer = WalWriter(tmp_path / "wal.bin")
    assert writer.is_shut_down is False
    writer.shutdown()
    assert writer.is_shut_down is True