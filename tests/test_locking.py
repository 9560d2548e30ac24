"""Tests for the keyed mutex."""

import threading
import time

import pytest

from bookingbot.errors import SessionBusy
from bookingbot.locking import KeyedLock


class TestKeyedLock:
    def test_entry_dropped_after_release(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert locks.active_keys() == ["a"]
        assert locks.active_keys() == []

    def test_distinct_keys_do_not_block(self):
        locks = KeyedLock()
        with locks.hold("a"):
            with locks.hold("b", timeout=0.1):
                assert locks.active_keys() == ["a", "b"]

    def test_same_key_times_out(self):
        locks = KeyedLock()
        with locks.hold("salon-1:U1"):
            with pytest.raises(SessionBusy, match="salon-1:U1"):
                with locks.hold("salon-1:U1", timeout=0.05):
                    pass
        assert locks.active_keys() == []

    def test_serializes_same_key(self):
        locks = KeyedLock()
        inside = []
        overlap = []

        def worker():
            with locks.hold("k"):
                if inside:
                    overlap.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlap == []
        assert locks.active_keys() == []

    def test_hold_many_releases_everything(self):
        locks = KeyedLock()
        with locks.hold_many(["b", "a", "b"]):
            assert locks.active_keys() == ["a", "b"]
        assert locks.active_keys() == []

    def test_hold_many_partial_failure_releases_held(self):
        locks = KeyedLock()
        with locks.hold("b"):
            with pytest.raises(SessionBusy):
                with locks.hold_many(["a", "b"], timeout=0.05):
                    pass
            assert locks.active_keys() == ["b"]

    def test_hold_many_opposite_orders_do_not_deadlock(self):
        locks = KeyedLock()
        done = []

        def worker(keys):
            for _ in range(50):
                with locks.hold_many(keys):
                    pass
            done.append(True)

        threads = [
            threading.Thread(target=worker, args=(["x", "y"],)),
            threading.Thread(target=worker, args=(["y", "x"],)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert len(done) == 2
