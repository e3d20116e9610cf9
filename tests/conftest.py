"""Pytest configuration and shared fixtures."""

import time
from decimal import Decimal

import httpx
import pytest
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from payment_gateway.config import Settings
from payment_gateway.ledger.interfaces import Settlement, SettlementSignature

FEE_AMOUNT = Decimal("0.001")
FEE_LAMPORTS = 1_000_000
UPSTREAM_URL = "http://upstream.test"

PAYER_ADDRESS = str(Pubkey.new_unique())


def make_settlement(
    signature: str,
    receiver: str,
    delta: int = FEE_LAMPORTS,
    block_time: int | None = None,
    failed: bool = False,
    memos: tuple[str, ...] = (),
    payer: str = PAYER_ADDRESS,
) -> Settlement:
    """Transfer of ``delta`` lamports from ``payer`` to ``receiver``."""
    if block_time is None:
        block_time = int(time.time()) - 5
    return Settlement(
        signature=signature,
        block_time=block_time,
        failed=failed,
        account_keys=(payer, receiver),
        pre_balances=(5_000_000_000, 1_000_000_000),
        post_balances=(5_000_000_000 - delta - 5_000, 1_000_000_000 + delta),
        memos=memos,
        slot=250_000_000,
    )


class FakeLedger:
    """In-memory ledger for verifier and gateway tests."""

    def __init__(self):
        self.signatures: list[SettlementSignature] = []
        self.settlements: dict[str, Settlement] = {}
        self.error: Exception | None = None
        self.healthy = True
        self.recent_calls = 0
        self.fetched: list[str] = []
        self.closed = False

    def add(self, settlement: Settlement) -> None:
        # Most recent first, like the real RPC
        self.signatures.insert(
            0,
            SettlementSignature(
                signature=settlement.signature,
                block_time=settlement.block_time,
                failed=settlement.failed,
            ),
        )
        self.settlements[settlement.signature] = settlement

    async def recent_settlements(
        self, address: str, limit: int
    ) -> list[SettlementSignature]:
        self.recent_calls += 1
        if self.error is not None:
            raise self.error
        return self.signatures[:limit]

    async def fetch_settlement(self, signature: str) -> Settlement | None:
        self.fetched.append(signature)
        if self.error is not None:
            raise self.error
        return self.settlements.get(signature)

    async def check_health(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class RecordingUpstream:
    """Echoing upstream API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.error: Exception | None = None
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            headers={"x-upstream": "yes"},
            json={
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query.decode(),
                "body": request.content.decode(),
            },
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def receiver_keypair():
    return Keypair()


@pytest.fixture
def receiver_address(receiver_keypair):
    return str(receiver_keypair.pubkey())


@pytest.fixture
def make_settings(receiver_keypair):
    """Builds Settings without reading the environment or a .env file."""

    def factory(**overrides) -> Settings:
        values = {
            "target_api_url": UPSTREAM_URL,
            "spg_wallet_keypair": list(bytes(receiver_keypair)),
            "facilitator_address": str(Pubkey.new_unique()),
            "fee_amount": FEE_AMOUNT,
            "solana_cluster": "devnet",
            "payment_timeout_ms": 200,
            "payment_poll_interval_ms": 20,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def upstream_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))
