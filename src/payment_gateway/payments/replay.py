"""
In-memory record of settlements that already unlocked a request.
"""

import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class ConsumedSettlements:
    """
    Set of accepted settlement signatures with a TTL.

    Entries only need to live as long as the recency window: an older
    settlement is rejected by the verifier anyway. Access happens on the event
    loop thread and claim() never awaits, so no lock is needed.
    """

    def __init__(
        self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the consumed-settlement set.

        Args:
            ttl_seconds: Time-to-live for each entry in seconds
            clock: Monotonic clock
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def __contains__(self, signature: str) -> bool:
        self._evict()
        return signature in self._expiry

    def __len__(self) -> int:
        self._evict()
        return len(self._expiry)

    def claim(self, signature: str) -> bool:
        """
        Record ``signature`` as consumed.

        Returns:
            False if it had already been claimed and has not expired
        """
        self._evict()
        if signature in self._expiry:
            logger.warning("settlement_reuse_rejected", settlement_ref=signature)
            return False

        self._expiry[signature] = self._clock() + self.ttl_seconds
        return True

    def _evict(self) -> None:
        now = self._clock()
        expired = [sig for sig, expiry in self._expiry.items() if expiry <= now]
        for sig in expired:
            del self._expiry[sig]
