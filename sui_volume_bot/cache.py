"""
Balance Cache
=============
Time-windowed cache of balances per (address, asset) so repeated strategy
iterations do not re-query the full node for every read.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .models import BalanceKey, CacheEntry, normalize_asset
from .utils import logger, format_address, short_asset, BalanceQueryError


BalanceQuery = Callable[[str, str], Awaitable[int]]


class BalanceCache:
    """
    Caches balance lookups for ``window_seconds``.

    Reads for the same key are serialized by a per-key lock, so two
    concurrent misses issue a single query. Query failures propagate as
    BalanceQueryError; a stale or zero value is never returned in their
    place.
    """

    def __init__(
        self,
        query: BalanceQuery,
        window_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._query = query
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Dict[BalanceKey, CacheEntry] = {}
        self._locks: Dict[BalanceKey, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def _lock_for(self, key: BalanceKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _fresh(self, key: BalanceKey) -> Optional[int]:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp < self.window_seconds:
            return entry.balance
        return None

    async def get(self, address: str, asset: str) -> int:
        """Return the balance of ``asset`` held by ``address``."""
        key = BalanceKey(address, normalize_asset(asset))

        async with self._lock_for(key):
            cached = self._fresh(key)
            if cached is not None:
                self.hits += 1
                return cached

            self.misses += 1
            try:
                balance = int(await self._query(key.address, key.asset))
            except BalanceQueryError:
                raise
            except Exception as e:
                raise BalanceQueryError(key.address, key.asset, e) from e

            self._entries[key] = CacheEntry(balance=balance, timestamp=self._clock())
            logger.debug(
                f"Balance {format_address(key.address)} {short_asset(key.asset)}: {balance}"
            )
            return balance

    async def get_many(self, pairs: Iterable[Tuple[str, str]]) -> List[int]:
        """Fetch several balances concurrently; keys must be distinct."""
        return list(await asyncio.gather(*(self.get(a, t) for a, t in pairs)))

    def invalidate(self, address: str, asset: Optional[str] = None):
        """Drop cached entries for an owner, or one of its assets."""
        if asset is not None:
            self._entries.pop(BalanceKey(address, normalize_asset(asset)), None)
            return
        for key in [k for k in self._entries if k.address == address]:
            del self._entries[key]

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
