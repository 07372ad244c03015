"""
Per-customer allocation locks.

At most one allocation per customer is in flight inside this process.
Waiting is bounded: ``acquire`` gives up after ``timeout`` seconds and the
caller reports a conflict instead of blocking forever.

Locks are reference counted and dropped when the last holder or waiter
leaves, so the registry does not grow with the number of customers seen.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from billing_kernel.logging_config import get_logger

logger = get_logger("services.locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class CustomerLockRegistry:
    """Named locks keyed by customer id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, customer_id: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(customer_id)
            if entry is None:
                entry = self._entries[customer_id] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, customer_id: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[customer_id]

    @contextmanager
    def hold(self, customer_id: str, timeout: float) -> Iterator[bool]:
        """
        Hold the customer's lock for the duration of the block.

        Yields True when the lock was obtained, False when ``timeout``
        elapsed first. The block runs in both cases; callers check the
        flag.
        """
        entry = self._checkout(customer_id)
        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                logger.warning("customer_lock_timeout", extra={
                    "customer_id": customer_id,
                    "timeout": timeout,
                })
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            self._checkin(customer_id, entry)

    def is_locked(self, customer_id: str) -> bool:
        with self._guard:
            entry = self._entries.get(customer_id)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
