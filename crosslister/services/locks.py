"""
Per-product mutual exclusion.

Every engine operation that reads or changes a product's listings holds that
product's lock for its whole duration, so a sale cannot interleave with a
create or update for the same product. Locks for different products are
independent.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class ProductLockManager:
    """asyncio locks keyed by product id, released on every exit path."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, product_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(product_id, asyncio.Lock())
        self._waiters[product_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[product_id] -= 1
            # Drop idle locks so the table does not grow with the catalog
            if self._waiters[product_id] == 0:
                self._waiters.pop(product_id, None)
                self._locks.pop(product_id, None)

    def is_locked(self, product_id: int) -> bool:
        lock = self._locks.get(product_id)
        return bool(lock and lock.locked())


# Process-wide instance shared by request handlers, the scheduler and the CLI
product_locks = ProductLockManager()
