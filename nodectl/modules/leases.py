"""Per-key mutual exclusion with a bounded hold time."""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from ..config import get_settings
from ..errors import LeaseTimeout

logger = logging.getLogger("nodectl.leases")


@dataclass
class Lease:
    key: str
    owner: str
    token: str
    expires_at: float

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class LeaseManager:
    """Hands out leases keyed by ``node:<id>``, ``lb:<host>`` or ``infra:<id>``.

    A lease held past its TTL is treated as abandoned and may be taken over,
    so a crashed worker cannot block a key forever.
    """

    def __init__(self, ttl: Optional[float] = None, wait: Optional[float] = None):
        settings = get_settings().lease
        self.ttl = ttl if ttl is not None else settings.ttl
        self.wait = wait if wait is not None else settings.wait
        self._leases: Dict[str, Lease] = {}
        self._cond = threading.Condition()

    @staticmethod
    def node_key(node_id: str) -> str:
        return f"node:{node_id}"

    @staticmethod
    def lb_key(host: str) -> str:
        return f"lb:{host}"

    @staticmethod
    def infra_key(infra_id: str) -> str:
        return f"infra:{infra_id}"

    def try_acquire(self, key: str, owner: str, ttl: Optional[float] = None) -> Optional[Lease]:
        with self._cond:
            return self._take(key, owner, ttl if ttl is not None else self.ttl)

    def _take(self, key: str, owner: str, ttl: float) -> Optional[Lease]:
        current = self._leases.get(key)
        if current is not None and not current.expired:
            return None
        if current is not None:
            logger.warning("Lease %s held by %s expired; taking over for %s", key, current.owner, owner)
        lease = Lease(key=key, owner=owner, token=uuid.uuid4().hex, expires_at=time.monotonic() + ttl)
        self._leases[key] = lease
        return lease

    def acquire_lease(self, key: str, owner: str, ttl: Optional[float] = None,
                      wait: Optional[float] = None) -> Lease:
        """Block until the lease is free, expired, or ``wait`` elapses.

        Raises:
            LeaseTimeout: If the lease could not be taken in time
        """
        ttl = ttl if ttl is not None else self.ttl
        wait = wait if wait is not None else self.wait
        deadline = time.monotonic() + wait
        with self._cond:
            while True:
                lease = self._take(key, owner, ttl)
                if lease is not None:
                    logger.debug("Lease %s acquired by %s", key, owner)
                    return lease
                current = self._leases[key]
                remaining = min(deadline, current.expires_at) - time.monotonic()
                if time.monotonic() >= deadline:
                    raise LeaseTimeout(key, current.owner)
                self._cond.wait(timeout=max(remaining, 0.01))

    def release(self, lease: Lease) -> bool:
        """Release a lease; a lease already taken over by someone else is left alone."""
        with self._cond:
            current = self._leases.get(lease.key)
            if current is None or current.token != lease.token:
                logger.warning("Lease %s no longer held by %s at release", lease.key, lease.owner)
                return False
            del self._leases[lease.key]
            self._cond.notify_all()
            logger.debug("Lease %s released by %s", lease.key, lease.owner)
            return True

    def holder(self, key: str) -> Optional[str]:
        with self._cond:
            current = self._leases.get(key)
            if current is None or current.expired:
                return None
            return current.owner

    @contextmanager
    def acquire(self, key: str, owner: str, ttl: Optional[float] = None, wait: Optional[float] = None):
        """Context manager around :meth:`acquire_lease` / :meth:`release`."""
        lease = self.acquire_lease(key, owner, ttl=ttl, wait=wait)
        try:
            yield lease
        finally:
            self.release(lease)
