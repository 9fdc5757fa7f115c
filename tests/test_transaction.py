"""Tests for UnitOfWork and TransactionManager."""

import logging

import pytest

from userdir.errors import DuplicateKeyError, PersistenceError, TransactionStateError
from userdir.store import RecordStore
from userdir.transaction import (
    FlushPolicy,
    TransactionManager,
    TxState,
    UnitOfWork,
    WritePolicy,
)


def _on_disk(user_file, key):
    return RecordStore.open(user_file).get(key)


@pytest.fixture
def jon(stark_store):
    return stark_store.get("jon.snow@winterfell.com")


def _failing_flush(calls, failures):
    def _flush():
        calls.append(1)
        if len(calls) <= failures:
            msg = "disk full"
            raise PersistenceError(msg)

    return _flush


# ---------------------------------------------------------------------------
# Eager writes
# ---------------------------------------------------------------------------


class TestEager:
    def test_stage_applies_immediately(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon)
        uow.stage("first_name", "Aegon")
        assert jon.first_name == "Aegon"
        assert stark_store.dirty

    def test_commit_flushes(self, stark_store, jon, user_file):
        uow = UnitOfWork(stark_store, jon)
        uow.stage("last_name", "Targaryen")
        uow.commit()
        assert uow.state is TxState.COMMITTED
        assert not stark_store.dirty
        assert _on_disk(user_file, jon.username).last_name == "Targaryen"

    def test_rollback_only_logs(self, stark_store, jon, user_file, caplog):
        uow = UnitOfWork(stark_store, jon)
        uow.stage("first_name", "Aegon")
        with caplog.at_level(logging.INFO, logger="userdir.transaction"):
            uow.rollback()
        assert uow.state is TxState.ROLLED_BACK
        assert jon.first_name == "Aegon"
        assert "no recovery" in caplog.text
        assert _on_disk(user_file, jon.username).first_name == "Jon"

    def test_stage_username_rekeys_now(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon)
        uow.stage("username", "aegon@dragonstone.com")
        assert stark_store.get("jon.snow@winterfell.com") is None
        assert stark_store.get("aegon@dragonstone.com") is jon

    def test_stage_username_reports_rekey(self, stark_store, jon):
        moves = []
        uow = UnitOfWork(stark_store, jon, on_rekey=lambda old, new: moves.append((old, new)))
        uow.stage("username", "aegon@dragonstone.com")
        assert moves == [("jon.snow@winterfell.com", "aegon@dragonstone.com")]

    def test_failed_rekey_reports_nothing(self, stark_store, jon):
        moves = []
        uow = UnitOfWork(stark_store, jon, on_rekey=lambda old, new: moves.append((old, new)))
        with pytest.raises(DuplicateKeyError):
            uow.stage("username", "arya@winterfell.com")
        assert moves == []

    def test_commit_with_nothing_to_do_skips_flush(self, stark_store, jon, monkeypatch):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 0))
        uow = UnitOfWork(stark_store, jon)
        uow.commit()
        assert uow.state is TxState.COMMITTED
        assert calls == []


# ---------------------------------------------------------------------------
# Deferred writes
# ---------------------------------------------------------------------------


class TestDeferred:
    def test_stage_buffers(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon, write_policy=WritePolicy.DEFERRED)
        uow.stage("first_name", "Aegon")
        assert jon.first_name == "Jon"
        assert uow.read("first_name") == "Aegon"
        assert not stark_store.dirty

    def test_commit_applies_and_flushes(self, stark_store, jon, user_file):
        uow = UnitOfWork(stark_store, jon, write_policy=WritePolicy.DEFERRED)
        uow.stage("first_name", "Aegon")
        uow.stage("favourite_line", "Fire and blood")
        uow.commit()
        assert jon.first_name == "Aegon"
        on_disk = _on_disk(user_file, jon.username)
        assert on_disk.first_name == "Aegon"
        assert on_disk.favourite_line == "Fire and blood"

    def test_rollback_drops_buffer(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon, write_policy=WritePolicy.DEFERRED)
        uow.stage("first_name", "Aegon")
        uow.rollback()
        assert jon.first_name == "Jon"
        assert uow.pending == {}
        assert not stark_store.dirty

    def test_username_rekeyed_at_commit(self, stark_store, jon, user_file):
        uow = UnitOfWork(stark_store, jon, write_policy=WritePolicy.DEFERRED)
        uow.stage("username", "aegon@dragonstone.com")
        assert stark_store.get("jon.snow@winterfell.com") is jon
        uow.commit()
        assert stark_store.get("aegon@dragonstone.com") is jon
        assert _on_disk(user_file, "aegon@dragonstone.com") is not None
        assert _on_disk(user_file, "jon.snow@winterfell.com") is None

    def test_rekey_reported_only_at_commit(self, stark_store, jon):
        moves = []
        uow = UnitOfWork(
            stark_store, jon, write_policy=WritePolicy.DEFERRED, on_rekey=lambda old, new: moves.append((old, new))
        )
        uow.stage("username", "aegon@dragonstone.com")
        assert moves == []
        uow.commit()
        assert moves == [("jon.snow@winterfell.com", "aegon@dragonstone.com")]

    def test_rolled_back_rename_reports_nothing(self, stark_store, jon):
        moves = []
        uow = UnitOfWork(
            stark_store, jon, write_policy=WritePolicy.DEFERRED, on_rekey=lambda old, new: moves.append((old, new))
        )
        uow.stage("username", "aegon@dragonstone.com")
        uow.rollback()
        assert moves == []
        assert stark_store.get("jon.snow@winterfell.com") is jon

    def test_rename_onto_taken_key_at_commit_reports_nothing(self, stark_store, jon):
        moves = []
        uow = UnitOfWork(
            stark_store, jon, write_policy=WritePolicy.DEFERRED, on_rekey=lambda old, new: moves.append((old, new))
        )
        uow.stage("username", "arya@winterfell.com")
        uow.stage("first_name", "Aegon")
        with pytest.raises(DuplicateKeyError):
            uow.commit()
        assert moves == []
        assert jon.first_name == "Jon"
        assert uow.pending == {"username": "arya@winterfell.com", "first_name": "Aegon"}


# ---------------------------------------------------------------------------
# Flush policies
# ---------------------------------------------------------------------------


class TestFlushPolicy:
    def test_fail_fast_raises(self, stark_store, jon, monkeypatch):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 1))
        uow = UnitOfWork(stark_store, jon)
        uow.stage("first_name", "Aegon")
        with pytest.raises(PersistenceError):
            uow.commit()
        assert uow.state is TxState.COMMITTED
        assert len(calls) == 1
        assert stark_store.dirty

    def test_retry_recovers(self, stark_store, jon, monkeypatch):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 2))
        uow = UnitOfWork(stark_store, jon, flush_policy=FlushPolicy.RETRY, retries=3, retry_delay=0)
        uow.stage("first_name", "Aegon")
        uow.commit()
        assert len(calls) == 3

    def test_retry_gives_up(self, stark_store, jon, monkeypatch):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 10))
        uow = UnitOfWork(stark_store, jon, flush_policy=FlushPolicy.RETRY, retries=2, retry_delay=0)
        uow.stage("first_name", "Aegon")
        with pytest.raises(PersistenceError):
            uow.commit()
        assert len(calls) == 3

    def test_log_swallows(self, stark_store, jon, monkeypatch, caplog):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 1))
        uow = UnitOfWork(stark_store, jon, flush_policy=FlushPolicy.LOG)
        uow.stage("first_name", "Aegon")
        with caplog.at_level(logging.ERROR, logger="userdir.transaction"):
            uow.commit()
        assert uow.state is TxState.COMMITTED
        assert "in memory only" in caplog.text


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestState:
    def test_commit_twice_raises(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon)
        uow.commit()
        with pytest.raises(TransactionStateError):
            uow.commit()

    def test_rollback_after_commit_raises(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon)
        uow.commit()
        with pytest.raises(TransactionStateError):
            uow.rollback()

    def test_stage_after_rollback_raises(self, stark_store, jon):
        uow = UnitOfWork(stark_store, jon)
        uow.rollback()
        with pytest.raises(TransactionStateError):
            uow.stage("first_name", "x")

    def test_stage_unknown_field_raises(self, stark_store, jon):
        with pytest.raises(ValueError):
            UnitOfWork(stark_store, jon).stage("age", 3)


class TestTransactionManager:
    def test_enlist_once(self, stark_store, jon):
        manager = TransactionManager()
        uow = UnitOfWork(stark_store, jon)
        assert manager.enlist(uow) is True
        assert manager.enlist(uow) is False
        assert len(manager) == 1

    def test_finished_unit_is_not_enlisted(self, stark_store, jon):
        manager = TransactionManager()
        uow = UnitOfWork(stark_store, jon)
        uow.rollback()
        assert manager.enlist(uow) is False

    def test_commit_runs_every_unit_and_reraises_first_error(self, stark_store, monkeypatch):
        calls = []
        monkeypatch.setattr(stark_store, "flush", _failing_flush(calls, 1))
        manager = TransactionManager()
        a = UnitOfWork(stark_store, stark_store.get("arya@winterfell.com"), write_policy=WritePolicy.DEFERRED)
        b = UnitOfWork(stark_store, stark_store.get("sansa@winterfell.com"), write_policy=WritePolicy.DEFERRED)
        a.stage("first_name", "No One")
        b.stage("first_name", "Queen")
        manager.enlist(a)
        manager.enlist(b)
        with pytest.raises(PersistenceError):
            manager.commit()
        assert a.state is TxState.COMMITTED
        assert b.state is TxState.COMMITTED
        assert len(calls) == 2
        assert len(manager) == 0

    def test_rollback_all(self, stark_store, jon):
        manager = TransactionManager()
        uow = UnitOfWork(stark_store, jon, write_policy=WritePolicy.DEFERRED)
        manager.enlist(uow)
        uow.stage("first_name", "Aegon")
        manager.rollback()
        assert uow.state is TxState.ROLLED_BACK
        assert jon.first_name == "Jon"