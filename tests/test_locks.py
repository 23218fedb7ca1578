"""
Tests for lexbrain.locks — advisory named locks.
"""

import threading

import pytest

from lexbrain.db import Database
from lexbrain.locks import LockTable


@pytest.fixture
def db():
    d = Database(":memory:")
    yield d
    d.close()


@pytest.fixture
def locks(db):
    return LockTable(db)


class TestLockSequence:
    def test_acquire_release_cycle(self, locks):
        assert locks.acquire("L") is True
        assert locks.acquire("L") is False
        assert locks.release("L") is True
        assert locks.acquire("L") is True

    def test_release_unheld_is_false(self, locks):
        assert locks.release("never-taken") is False

    def test_double_release(self, locks):
        locks.acquire("L")
        assert locks.release("L") is True
        assert locks.release("L") is False

    def test_names_are_independent(self, locks):
        assert locks.acquire("a")
        assert locks.acquire("b")
        assert locks.list_locks() == ["a", "b"]

    def test_is_held(self, locks):
        assert not locks.is_held("L")
        locks.acquire("L")
        assert locks.is_held("L")

    def test_empty_name_rejected(self, locks):
        with pytest.raises(ValueError):
            locks.acquire("")
        with pytest.raises(ValueError):
            locks.release("")


class TestConcurrency:
    def test_exactly_one_winner(self, locks):
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(locks.acquire("contended"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_shared_across_instances(self, tmp_path):
        path = str(tmp_path / "locks.db")
        a, b = Database(path), Database(path)
        try:
            assert LockTable(a).acquire("L")
            assert not LockTable(b).acquire("L")
            assert LockTable(b).release("L")
            assert LockTable(a).acquire("L")
        finally:
            a.close()
            b.close()


class TestAudit:
    def test_events_logged(self, locks, db):
        locks.acquire("L")
        locks.release("L")
        actions = [e["action"] for e in db.read_events()]
        assert set(actions) == {"lock", "unlock"}
