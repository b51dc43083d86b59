"""
cogs_services.product_lock -- In-process mutual exclusion per product.

Responsibility:
    Hand out one lock per product id so that concurrent recordings for the
    same product inside this process run one at a time, while different
    products never block each other.

Architecture position:
    Services -- concurrency support for the COGS recorder.  Process-local:
    cross-process serialization relies on row locks and the layer version
    column.

Invariants enforced:
    - At most one live lock object per product id.
    - Entries are reference counted and dropped when no holder or waiter
      remains, so the registry does not grow with the product catalog.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from cogs_kernel.logging_config import get_logger

logger = get_logger("services.product_lock")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ProductLockRegistry:
    """Per-product locks, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, product_id: str) -> Iterator[None]:
        """Block until the product's lock is free, then hold it for the block."""
        with self._guard:
            entry = self._entries.get(product_id)
            if entry is None:
                entry = self._entries[product_id] = _Entry()
            entry.users += 1

        try:
            if not entry.lock.acquire(blocking=False):
                logger.debug("product_lock_wait", extra={"product_id": product_id})
                entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[product_id]

    def active_count(self) -> int:
        """Number of products with a holder or waiter."""
        with self._guard:
            return len(self._entries)


_default_registry = ProductLockRegistry()


def get_default_registry() -> ProductLockRegistry:
    """The process-wide registry shared by recorders that are not given one."""
    return _default_registry
