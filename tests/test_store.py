import pytest

from fugu.store import DATA_FILE, KeyValueStore


def test_insert_and_get_round_trip(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    assert store.insert(b"apple", b"red") is None
    assert store.get(b"apple") == b"red"
    assert store.get(b"missing") is None


def test_str_keys_are_encoded_as_utf8(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    store.insert("term", "value")
    assert store.get(b"term") == b"value"
    assert "term" in store


def test_insert_returns_previous_value(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    store.insert(b"k", b"one")
    assert store.insert(b"k", b"two") == b"one"
    assert store.get(b"k") == b"two"
    assert len(store) == 1


def test_remove_returns_previous_value(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    store.insert(b"k", b"v")
    assert store.remove(b"k") == b"v"
    assert store.remove(b"k") is None
    assert len(store) == 0


def test_items_in_key_order(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    for key in [b"pear", b"apple", b"mango"]:
        store.insert(key, key.upper())
    keys = [k for k, _ in store.items()]
    assert keys == sorted(keys)
    assert dict(store.items()) == {
        b"pear": b"PEAR",
        b"apple": b"APPLE",
        b"mango": b"MANGO",
    }


def test_flush_persists_across_instances(tmp_path):
    path = tmp_path / "db"
    store = KeyValueStore(path)
    store.insert(b"a", b"1")
    store.insert(b"b", b"2")
    store.flush()
    reopened = KeyValueStore(path)
    assert dict(reopened.items()) == {b"a": b"1", b"b": b"2"}


def test_unflushed_changes_are_not_persisted(tmp_path):
    path = tmp_path / "db"
    store = KeyValueStore(path)
    store.insert(b"a", b"1")
    reopened = KeyValueStore(path)
    assert len(reopened) == 0


def test_close_flushes_and_blocks_further_use(tmp_path):
    path = tmp_path / "db"
    with KeyValueStore(path) as store:
        store.insert(b"x", b"y")
    assert store.closed
    with pytest.raises(ValueError):
        store.get(b"x")
    assert KeyValueStore(path).get(b"x") == b"y"


def test_remove_persists(tmp_path):
    path = tmp_path / "db"
    store = KeyValueStore(path)
    store.insert(b"a", b"1")
    store.insert(b"b", b"2")
    store.flush()
    store.remove(b"a")
    store.close()
    assert dict(KeyValueStore(path).items()) == {b"b": b"2"}


def test_temporary_store_writes_nothing(tmp_path):
    path = tmp_path / "db"
    store = KeyValueStore(path, temporary=True)
    store.insert(b"a", b"1")
    store.close()
    assert store.path is None
    assert not path.exists()


def test_in_memory_store_without_path():
    store = KeyValueStore()
    store.insert(b"a", b"1")
    store.flush()
    assert store.get(b"a") == b"1"


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "db"
    path.mkdir()
    (path / DATA_FILE).write_bytes(b"\xc1\xc1\xc1")
    with pytest.raises(ValueError):
        KeyValueStore(path)


def test_rejects_non_bytes_key(tmp_path):
    store = KeyValueStore(tmp_path / "db")
    with pytest.raises(TypeError):
        store.insert(42, b"v")


def test_binary_values_round_trip(tmp_path):
    path = tmp_path / "db"
    payload = bytes(range(256))
    store = KeyValueStore(path)
    store.insert(b"blob", payload)
    store.close()
    assert KeyValueStore(path).get(b"blob") == payload