"""
Tests for the bucket/transaction storage backend.

Tests cover:
- Opening, creating and closing store files
- Exclusive file lock between two stores
- Bucket creation and bucket-scoped get/put/delete/keys/count
- Commit on success, rollback on exceptions, read-only views
"""
import logging
import sqlite3

import pytest

from lockbox.exceptions import StorageError
from lockbox.storage import Store


@pytest.fixture
def store(tmp_path):
    s = Store.open(tmp_path / "store.db")
    yield s
    s.close()


@pytest.fixture
def bucket(store):
    with store.update() as tx:
        tx.create_bucket_if_not_exists("data")
    return "data"


class TestOpenClose:

    def test_creates_file(self, tmp_path):
        path = tmp_path / "new.db"
        store = Store.open(path)
        assert path.exists()
        assert not store.closed
        store.close()
        assert store.closed

    def test_close_is_idempotent(self, store):
        store.close()
        store.close()

    def test_closed_store_rejects_transactions(self, store):
        store.close()
        with pytest.raises(StorageError):
            with store.view():
                pass

    def test_second_open_fails_while_locked(self, tmp_path):
        path = tmp_path / "locked.db"
        first = Store.open(path)
        try:
            with pytest.raises(StorageError):
                Store.open(path)
        finally:
            first.close()

    def test_reopen_after_close(self, tmp_path):
        path = tmp_path / "reopen.db"
        first = Store.open(path)
        with first.update() as tx:
            tx.create_bucket_if_not_exists("b")
            tx.put("b", "k", b"v")
        first.close()
        second = Store.open(path)
        with second.view() as tx:
            assert tx.get("b", "k") == b"v"
        second.close()

    def test_not_a_database(self, tmp_path):
        path = tmp_path / "garbage.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        with pytest.raises(StorageError):
            Store.open(path)

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(StorageError):
            Store.open(tmp_path / "missing-dir" / "store.db")


class TestBuckets:

    def test_create_bucket_once(self, store):
        with store.update() as tx:
            assert tx.create_bucket_if_not_exists("a") is True
            assert tx.create_bucket_if_not_exists("a") is False
            assert tx.bucket_exists("a")
            assert not tx.bucket_exists("b")

    def test_empty_bucket_name(self, store):
        with pytest.raises(StorageError):
            with store.update() as tx:
                tx.create_bucket_if_not_exists("")

    def test_missing_bucket(self, store):
        with store.view() as tx:
            with pytest.raises(StorageError):
                tx.get("nope", "k")

    def test_buckets_are_isolated(self, store):
        with store.update() as tx:
            tx.create_bucket_if_not_exists("a")
            tx.create_bucket_if_not_exists("b")
            tx.put("a", "k", b"from-a")
        with store.view() as tx:
            assert tx.get("a", "k") == b"from-a"
            assert tx.get("b", "k") is None


class TestEntries:

    def test_put_get_overwrite(self, store, bucket):
        with store.update() as tx:
            tx.put(bucket, "k", b"one")
            tx.put(bucket, "k", b"two")
        with store.view() as tx:
            assert tx.get(bucket, "k") == b"two"
            assert tx.get(bucket, b"k") == b"two"

    def test_delete(self, store, bucket):
        with store.update() as tx:
            tx.put(bucket, "k", b"v")
        with store.update() as tx:
            assert tx.delete(bucket, "k") is True
            assert tx.delete(bucket, "k") is False
        with store.view() as tx:
            assert tx.get(bucket, "k") is None

    def test_keys_and_prefix(self, store, bucket):
        with store.update() as tx:
            for key in ("keys/meh/2", "keys/foo/1", "keys/meh/1", "other"):
                tx.put(bucket, key, b"x")
        with store.view() as tx:
            assert tx.keys(bucket) == [
                b"keys/foo/1", b"keys/meh/1", b"keys/meh/2", b"other",
            ]
            assert tx.keys(bucket, "keys/meh/") == [b"keys/meh/1", b"keys/meh/2"]
            assert tx.count(bucket) == 4

    def test_prefix_bounds(self, store, bucket):
        keys = (b"a", b"a\x00", b"a\xff", b"a\xff\xff", b"b", b"\xff", b"\xff\x01")
        with store.update() as tx:
            for key in keys:
                tx.put(bucket, key, b"x")
        with store.view() as tx:
            assert tx.keys(bucket, b"a") == [b"a", b"a\x00", b"a\xff", b"a\xff\xff"]
            assert tx.keys(bucket, b"a\xff") == [b"a\xff", b"a\xff\xff"]
            assert tx.keys(bucket, b"\xff") == [b"\xff", b"\xff\x01"]
            assert tx.keys(bucket, b"c") == []

    def test_binary_keys(self, store, bucket):
        with store.update() as tx:
            tx.put(bucket, b"\x00\xff", b"bin")
        with store.view() as tx:
            assert tx.get(bucket, b"\x00\xff") == b"bin"


class TestTransactions:

    def test_rollback_on_exception(self, store, bucket):
        with pytest.raises(RuntimeError):
            with store.update() as tx:
                tx.put(bucket, "k", b"v")
                raise RuntimeError("boom")
        with store.view() as tx:
            assert tx.get(bucket, "k") is None

    def test_view_is_read_only(self, store, bucket):
        with store.view() as tx:
            with pytest.raises(StorageError):
                tx.put(bucket, "k", b"v")
            with pytest.raises(StorageError):
                tx.delete(bucket, "k")
            with pytest.raises(StorageError):
                tx.create_bucket_if_not_exists("other")

    def test_transaction_unusable_after_block(self, store, bucket):
        with store.view() as tx:
            pass
        with pytest.raises(StorageError):
            tx.get(bucket, "k")


class RollbackFails:
    """Connection stand-in whose ROLLBACK fails."""

    def __init__(self, conn):
        self._conn = conn

    @property
    def in_transaction(self):
        return self._conn.in_transaction

    def execute(self, sql, params=()):
        if sql == "ROLLBACK":
            raise sqlite3.OperationalError("cannot rollback")
        return self._conn.execute(sql, params)


class TestRollbackFailure:

    @pytest.fixture
    def broken(self, store, bucket):
        conn = store._conn
        store._conn = RollbackFails(conn)
        yield store
        conn.execute("ROLLBACK")
        store._conn = conn

    def test_original_error_wins(self, broken, bucket, caplog):
        with caplog.at_level(logging.ERROR, logger="lockbox.storage"):
            with pytest.raises(RuntimeError, match="boom"):
                with broken.update() as tx:
                    tx.put(bucket, "k", b"v")
                    raise RuntimeError("boom")
        assert "Rollback failed" in caplog.text

    def test_view_rollback_error_is_wrapped(self, broken, bucket):
        with pytest.raises(StorageError, match="Rollback failed"):
            with broken.view() as tx:
                tx.get(bucket, "k")
