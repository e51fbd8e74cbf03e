import threading
import time

import pytest

from nodectl.errors import LeaseTimeout
from nodectl.modules.leases import LeaseManager


def test_second_holder_waits_then_times_out():
    leases = LeaseManager(ttl=60, wait=0.05)
    with leases.acquire("node:a", "first"):
        assert leases.holder("node:a") == "first"
        with pytest.raises(LeaseTimeout) as exc:
            leases.acquire_lease("node:a", "second")
        assert exc.value.holder == "first"
    assert leases.holder("node:a") is None


def test_keys_are_independent():
    leases = LeaseManager(ttl=60, wait=0.05)
    with leases.acquire(LeaseManager.node_key("a"), "x"):
        with leases.acquire(LeaseManager.lb_key("10.0.0.1"), "y"):
            assert leases.holder("lb:10.0.0.1") == "y"


def test_expired_lease_is_taken_over(caplog):
    leases = LeaseManager(ttl=0.01, wait=1)
    stale = leases.acquire_lease("node:a", "crashed")
    time.sleep(0.02)
    fresh = leases.acquire_lease("node:a", "rescuer")
    assert fresh.owner == "rescuer"
    assert "expired" in caplog.text
    # the stale holder cannot release the new lease
    assert leases.release(stale) is False
    assert leases.holder("node:a") == "rescuer"
    assert leases.release(fresh) is True


def test_waiter_wakes_on_release():
    leases = LeaseManager(ttl=60, wait=2)
    first = leases.acquire_lease("node:a", "first")
    acquired = []

    def waiter():
        with leases.acquire("node:a", "second"):
            acquired.append(time.monotonic())

    thread = threading.Thread(target=waiter)
    thread.start()
    time.sleep(0.05)
    assert acquired == []
    leases.release(first)
    thread.join(timeout=2)
    assert len(acquired) == 1


def test_lease_released_when_body_raises():
    leases = LeaseManager(ttl=60, wait=0.05)
    with pytest.raises(RuntimeError):
        with leases.acquire("node:a", "first"):
            raise RuntimeError("boom")
    assert leases.try_acquire("node:a", "second") is not None
