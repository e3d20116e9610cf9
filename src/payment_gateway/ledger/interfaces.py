"""
Protocol-based interface for the settlement ledger.
The verifier only depends on this contract, never on a concrete chain client.
"""

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class SettlementSignature:
    """
    Lightweight reference to a ledger event addressed to a recipient.
    Returned by recent-activity queries, most recent first.
    """

    signature: str  # Ledger transaction ID
    block_time: int | None  # Unix seconds, None if the ledger has not stamped it
    failed: bool = False  # The transaction was recorded but failed


@dataclass(frozen=True)
class Settlement:
    """
    Outcome of a single ledger transaction.
    Balances are in the ledger's base unit (lamports on Solana).
    """

    signature: str
    block_time: int | None
    failed: bool
    account_keys: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    memos: tuple[str, ...] = field(default_factory=tuple)
    slot: int | None = None

    def balance_delta(self, address: str) -> int | None:
        """
        Net balance change for ``address`` in this transaction.

        Returns:
            Post minus pre balance, or None if the address did not take part.
        """
        try:
            index = self.account_keys.index(address)
        except ValueError:
            return None

        pre = self.pre_balances[index] if index < len(self.pre_balances) else 0
        post = self.post_balances[index] if index < len(self.post_balances) else 0
        return post - pre


class LedgerClient(Protocol):
    """
    Protocol defining the ledger capabilities the gateway consumes.

    Implementations must raise VerificationTransportError for every transport,
    protocol or decoding fault so that callers can fail closed.
    """

    async def recent_settlements(
        self, address: str, limit: int
    ) -> list[SettlementSignature]:
        """
        Lists the most recent ledger events that involve ``address``.

        Args:
            address: Recipient address
            limit: Maximum number of events to return

        Returns:
            Event references, most recent first
        """
        ...

    async def fetch_settlement(self, signature: str) -> Settlement | None:
        """
        Fetches the outcome of a single event.

        Returns:
            Settlement, or None when the ledger does not (yet) know the signature
        """
        ...

    async def check_health(self) -> bool:
        """Returns True when the ledger endpoint reports itself healthy."""
        ...

    async def close(self) -> None:
        """Releases network resources."""
        ...
