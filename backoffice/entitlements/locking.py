"""
Per-tenant mutation locks.

In-process half of tenant serialisation. The cross-process half is the
SELECT ... FOR UPDATE on the tenant's restaurants row taken inside the
mutating transaction.
"""

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, List


class TenantLockRegistry:
    """
    One lock per tenant, created on first use and dropped when the last
    holder or waiter releases it.

    Mutations for different tenants proceed in parallel; mutations for the
    same tenant run one at a time.
    """

    def __init__(self):
        # tenant_id -> [lock, refcount]
        self._locks: Dict[str, List] = {}
        self._registry_lock = Lock()

    def _acquire_entry(self, tenant_id: str) -> Lock:
        with self._registry_lock:
            entry = self._locks.get(tenant_id)
            if entry is None:
                entry = [Lock(), 0]
                self._locks[tenant_id] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, tenant_id: str) -> None:
        with self._registry_lock:
            entry = self._locks.get(tenant_id)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                self._locks.pop(tenant_id, None)

    @contextmanager
    def hold(self, tenant_id: str) -> Iterator[None]:
        lock = self._acquire_entry(tenant_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(tenant_id)

    def active_count(self) -> int:
        """Number of tenants with a held or awaited lock."""
        with self._registry_lock:
            return len(self._locks)


tenant_locks = TenantLockRegistry()
