"""
Solana JSON-RPC ledger client.
Lists recent signatures for the receiving wallet and decodes transaction outcomes.
"""

from typing import Any

import httpx
import structlog

from ..errors import VerificationTransportError
from .interfaces import Settlement, SettlementSignature

logger = structlog.get_logger(__name__)

CLUSTER_RPC_URLS: dict[str, str] = {
    "devnet": "https://api.devnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "testnet": "https://api.testnet.solana.com",
}

# Solana RPC commitment level used for every query
CONFIRMED_COMMITMENT = "confirmed"

LAMPORTS_PER_SOL = 1_000_000_000

MEMO_PROGRAM_NAME = "spl-memo"


def rpc_url_for_cluster(cluster: str) -> str:
    try:
        return CLUSTER_RPC_URLS[cluster]
    except KeyError as exc:
        raise ValueError(f"Unknown Solana cluster: {cluster}") from exc


class SolanaLedgerClient:
    """
    Ledger client backed by a Solana JSON-RPC endpoint.

    Every RPC call is bounded by the HTTP client's timeout, so a stalled node
    cannot hold a verification attempt past its deadline by more than one call.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        commitment: str = CONFIRMED_COMMITMENT,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the ledger client.

        Args:
            rpc_url: Solana RPC endpoint URL
            timeout: Per-call timeout in seconds (ignored when client is given)
            commitment: RPC commitment level
            client: Pre-built HTTP client, mostly for tests
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def recent_settlements(
        self, address: str, limit: int
    ) -> list[SettlementSignature]:
        result = await self._rpc(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        if not isinstance(result, list):
            raise VerificationTransportError(
                "Malformed getSignaturesForAddress result"
            )

        try:
            return [
                SettlementSignature(
                    signature=entry["signature"],
                    block_time=entry.get("blockTime"),
                    failed=entry.get("err") is not None,
                )
                for entry in result
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise VerificationTransportError(
                f"Malformed signature entry: {e}"
            ) from e

    async def fetch_settlement(self, signature: str) -> Settlement | None:
        result = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None

        try:
            return self._parse_transaction(signature, result)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise VerificationTransportError(
                f"Malformed transaction {signature}: {e}"
            ) from e

    async def check_health(self) -> bool:
        try:
            return await self._rpc("getHealth", []) == "ok"
        except VerificationTransportError as e:
            logger.warning("ledger_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Closes the HTTP client connection."""
        if self._owns_client:
            await self.client.aclose()

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("ledger_query_failed", method=method, error=str(e))
            raise VerificationTransportError(f"{method} failed: {e}") from e
        except ValueError as e:
            logger.error("ledger_rpc_invalid_json", method=method, error=str(e))
            raise VerificationTransportError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise VerificationTransportError(f"{method} returned a non-object payload")

        if "error" in data:
            logger.error("ledger_rpc_error", method=method, error=data["error"])
            raise VerificationTransportError(f"{method} RPC error: {data['error']}")

        return data.get("result")

    def _parse_transaction(self, signature: str, tx: dict[str, Any]) -> Settlement:
        meta = tx.get("meta")
        if meta is None:
            # Transactions without status metadata cannot prove anything.
            raise ValueError("missing meta")

        message = tx["transaction"]["message"]
        account_keys = tuple(
            key if isinstance(key, str) else key["pubkey"]
            for key in message.get("accountKeys", [])
        )

        return Settlement(
            signature=signature,
            block_time=tx.get("blockTime"),
            slot=tx.get("slot"),
            failed=meta.get("err") is not None,
            account_keys=account_keys,
            pre_balances=tuple(int(b) for b in meta.get("preBalances", [])),
            post_balances=tuple(int(b) for b in meta.get("postBalances", [])),
            memos=self._extract_memos(message),
        )

    def _extract_memos(self, message: dict[str, Any]) -> tuple[str, ...]:
        memos = []
        for instr in message.get("instructions", []):
            if instr.get("program") != MEMO_PROGRAM_NAME:
                continue
            parsed = instr.get("parsed")
            if isinstance(parsed, str):
                memos.append(parsed)
        return tuple(memos)
