"""
Unit tests for keyed locks.

Tests cover:
- Entries released once the last holder exits
- Re-entrant holds on one thread
- Waiters on a busy key
"""

import threading
import time

import pytest

from marketdb.realm_core.access import KeyedLocks


class TestKeyedLocks:
    """Tests for KeyedLocks.hold."""

    @pytest.fixture
    def locks(self):
        return KeyedLocks()

    def test_entry_removed_after_hold(self, locks):
        with locks.hold("realm", "shop/acme", "product"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_many_keys_leave_nothing_behind(self, locks):
        for i in range(100):
            with locks.hold("member", f"shop/{i}", "u1"):
                pass
        assert len(locks) == 0

    def test_reentrant_hold_keeps_one_entry(self, locks):
        with locks.hold("onboarding", "ann"):
            with locks.hold("onboarding", "ann"):
                assert len(locks) == 1
            assert len(locks) == 1
        assert len(locks) == 0

    def test_entry_removed_when_block_raises(self, locks):
        with pytest.raises(RuntimeError):
            with locks.hold("cart", "ann"):
                raise RuntimeError("boom")
        assert len(locks) == 0

    def test_waiter_blocks_until_release(self, locks):
        """A second thread on the same key runs only after the holder exits."""
        order = []
        held = threading.Event()

        def waiter():
            held.wait(5)
            with locks.hold("realm", "shop/acme"):
                order.append("waiter")

        thread = threading.Thread(target=waiter)
        thread.start()
        with locks.hold("realm", "shop/acme"):
            held.set()
            time.sleep(0.2)
            order.append("holder")
        thread.join(5)

        assert order == ["holder", "waiter"]
        assert len(locks) == 0
