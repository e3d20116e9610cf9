"""Ledger access for settlement verification."""

from .interfaces import LedgerClient, Settlement, SettlementSignature
from .solana import CLUSTER_RPC_URLS, LAMPORTS_PER_SOL, SolanaLedgerClient

__all__ = [
    "CLUSTER_RPC_URLS",
    "LAMPORTS_PER_SOL",
    "LedgerClient",
    "Settlement",
    "SettlementSignature",
    "SolanaLedgerClient",
]
