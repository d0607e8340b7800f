#!/usr/bin/env python3
"""
Replay Guard Test

Validates:
1. First delivery passes, second is a replay
2. Entries expire after the tolerance window (sweep on read)
3. Guards are isolated per instance
4. Concurrent deliveries of one event: exactly one wins
5. Released events can be processed again

Usage:
    pytest tests/test_replay_guard.py -v
"""

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from expense_billing.lib.replay import InMemoryReplayStore, PostgresReplayStore, ReplayGuard


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_first_delivery_is_not_replay():
    guard = ReplayGuard()
    assert not guard.is_replay("evt_1")
    assert guard.check_and_mark("evt_1") is False


def test_second_delivery_is_replay():
    guard = ReplayGuard()
    guard.check_and_mark("evt_1")
    assert guard.check_and_mark("evt_1") is True
    assert guard.is_replay("evt_1")


def test_mark_then_check():
    guard = ReplayGuard()
    guard.mark_processed("evt_1")
    assert guard.is_replay("evt_1")
    assert not guard.is_replay("evt_2")


def test_entries_expire_after_window():
    clock = FakeClock()
    guard = ReplayGuard(window_seconds=300, clock=clock)
    guard.check_and_mark("evt_1")

    clock.now += 300
    assert guard.is_replay("evt_1")

    clock.now += 1
    assert not guard.is_replay("evt_1")
    assert len(guard.store) == 0


def test_sweep_only_removes_expired():
    clock = FakeClock()
    store = InMemoryReplayStore()
    guard = ReplayGuard(store=store, clock=clock)

    guard.check_and_mark("evt_old")
    clock.now += 200
    guard.check_and_mark("evt_new")
    clock.now += 150
    guard.check_and_mark("evt_other")

    assert not store.contains("evt_old")
    assert store.contains("evt_new")
    assert len(store) == 2


def test_guards_are_isolated():
    first = ReplayGuard()
    second = ReplayGuard()
    first.check_and_mark("evt_1")
    assert not second.is_replay("evt_1")


def test_release_allows_retry():
    guard = ReplayGuard()
    guard.check_and_mark("evt_1")
    guard.release("evt_1")
    assert guard.check_and_mark("evt_1") is False


def test_concurrent_deliveries_single_winner():
    guard = ReplayGuard()
    results = []
    barrier = threading.Barrier(16)

    def deliver():
        barrier.wait()
        results.append(guard.check_and_mark("evt_race"))

    threads = [threading.Thread(target=deliver) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(False) == 1
    assert results.count(True) == 15


def _postgres_store(rowcount=1, fetch=None):
    cursor = MagicMock()
    cursor.rowcount = rowcount
    cursor.fetchone.return_value = fetch
    conn = MagicMock()
    conn.closed = 0
    conn.cursor.return_value.__enter__.return_value = cursor
    return PostgresReplayStore(lambda: conn), conn, cursor


def test_postgres_store_insert_if_absent():
    store, conn, cursor = _postgres_store(rowcount=1)
    assert store.add("evt_1", 1000.0) is True
    sql = cursor.execute.call_args[0][0]
    assert "ON CONFLICT (event_id) DO NOTHING" in sql
    assert conn.autocommit is True


def test_postgres_store_conflict_means_seen():
    store, _, _ = _postgres_store(rowcount=0)
    guard = ReplayGuard(store=store)
    assert guard.check_and_mark("evt_1") is True


def test_postgres_store_contains():
    store, _, cursor = _postgres_store(fetch=(1,))
    assert store.contains("evt_1")
    assert cursor.execute.call_args[0][1] == ("evt_1",)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
