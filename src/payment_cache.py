"""
Verified payment cache

In-memory record of transactions that already passed on-chain verification
"""
import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional

from src.x402_types import VerifiedPayment

logger = logging.getLogger(__name__)


class VerifiedPaymentCache:
    """
    Bounded cache of verified payments keyed by transaction hash

    Entries expire after ``ttl_seconds`` (never, if None) and the least
    recently used entry is evicted once ``max_entries`` is reached.
    Each verifier owns its own instance; nothing is shared across processes.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = 3600.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, VerifiedPayment]" = OrderedDict()
        # transaction hash -> [lock, number of holders/waiters]
        self._claims: Dict[str, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, transaction_id: str) -> bool:
        return self.get(transaction_id) is not None

    def _expired(self, entry: VerifiedPayment) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.observed_at > self.ttl_seconds

    def get(self, transaction_id: str) -> Optional[VerifiedPayment]:
        """Return the live entry for a transaction, refreshing its recency"""
        entry = self._entries.get(transaction_id)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[transaction_id]
            logger.debug(f"Expired verified payment {transaction_id}")
            return None
        self._entries.move_to_end(transaction_id)
        return entry

    def put(
        self,
        transaction_id: str,
        amount: Optional[str] = None,
        from_address: Optional[str] = None,
    ) -> VerifiedPayment:
        """Insert or replace the entry for a transaction"""
        entry = VerifiedPayment(
            transaction_id=transaction_id,
            observed_at=self._clock(),
            amount=amount,
            from_address=from_address,
        )
        self._entries[transaction_id] = entry
        self._entries.move_to_end(transaction_id)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted verified payment {evicted}")
        return entry

    def purge_expired(self) -> int:
        """Drop every expired entry, returning how many were removed"""
        stale = [tx for tx, entry in self._entries.items() if self._expired(entry)]
        for tx in stale:
            del self._entries[tx]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    @asynccontextmanager
    async def claim(self, transaction_id: str) -> AsyncIterator[None]:
        """
        Hold the per-transaction critical section

        Concurrent verifications of the same transaction run one at a time;
        different transactions never wait on each other.
        """
        claim = self._claims.setdefault(transaction_id, [asyncio.Lock(), 0])
        claim[1] += 1
        try:
            async with claim[0]:
                yield
        finally:
            claim[1] -= 1
            if claim[1] == 0:
                del self._claims[transaction_id]
