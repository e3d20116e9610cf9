"""
Request gating: 402 challenge, settlement verification, upstream pass-through.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx

from .config import Settings
from .errors import UpstreamForwardingError
from .ledger.interfaces import LedgerClient
from .ledger.solana import SolanaLedgerClient
from .logging_config import get_logger
from .messages import GatewayRequest, GatewayResponse
from .payments.challenge import PaymentChallengeFactory
from .payments.replay import ConsumedSettlements
from .payments.types import FailureReason, PaymentChallenge, VerificationMode
from .payments.verifier import PaymentVerifier
from .proxy import UpstreamForwarder

logger = get_logger("gateway")

PAYMENT_SIGNATURE_HEADER = "x-payment-signature"
PAYMENT_MEMO_HEADER = "x-payment-memo"

# Payment evidence is consumed here and never leaks to the upstream
PAYMENT_EVIDENCE_HEADERS = (PAYMENT_SIGNATURE_HEADER, PAYMENT_MEMO_HEADER)

# Client-facing messages; failure detail stays in the server logs
FAILURE_MESSAGES = {
    FailureReason.TIMEOUT: "Payment timeout - no matching transaction found",
    FailureReason.LEDGER_ERROR: "Payment could not be verified due to a ledger error",
    FailureReason.MEMO_REQUIRED: "A payment memo is required to verify this payment",
    FailureReason.CANCELLED: "Payment verification was cancelled",
}


class GatewayProtocol:
    """
    Decides, per inbound request, between challenge, verification and forwarding.

    Every per-request failure is converted into a response here; nothing raised
    by verification or forwarding escapes to the serving process.
    """

    def __init__(
        self,
        settings: Settings,
        challenges: PaymentChallengeFactory,
        verifier: PaymentVerifier,
        forwarder: UpstreamForwarder,
    ):
        self.settings = settings
        self.challenges = challenges
        self.verifier = verifier
        self.forwarder = forwarder

    async def handle(
        self, request: GatewayRequest, cancelled: asyncio.Event | None = None
    ) -> GatewayResponse:
        try:
            return await self._handle(request, cancelled)
        except UpstreamForwardingError as e:
            logger.error(
                "upstream_forwarding_failed",
                method=request.method,
                path=request.path,
                error=str(e),
            )
            return GatewayResponse.from_json(
                500,
                {
                    "error": "Internal Server Error",
                    "message": "Upstream service unavailable",
                },
            )
        except Exception as e:
            logger.error(
                "gateway_handler_error",
                method=request.method,
                path=request.path,
                error=str(e),
                exc_info=True,
            )
            return GatewayResponse.from_json(
                500,
                {
                    "error": "Internal Server Error",
                    "message": "An internal error occurred",
                },
            )

    async def _handle(
        self, request: GatewayRequest, cancelled: asyncio.Event | None
    ) -> GatewayResponse:
        signature = request.headers.get(PAYMENT_SIGNATURE_HEADER) or None
        memo = request.headers.get(PAYMENT_MEMO_HEADER) or None

        if not signature and not memo:
            logger.info("payment_required", method=request.method, path=request.path)
            return self._payment_required()

        if self.settings.verification_mode is VerificationMode.STRICT and not memo:
            logger.info("payment_memo_missing", signature=signature)
            return self._verification_failed(FailureReason.MEMO_REQUIRED)

        outcome = await self.verifier.verify(
            memo,
            expected_address=self.challenges.recipient,
            expected_amount=self.settings.fee_amount,
            timeout_seconds=self.settings.payment_timeout_seconds,
            signature=signature,
            cancelled=cancelled,
        )
        if not outcome.verified:
            logger.info(
                "payment_verification_failed",
                failure_reason=outcome.failure_reason and outcome.failure_reason.value,
                detail=outcome.message,
            )
            return self._verification_failed(
                outcome.failure_reason or FailureReason.LEDGER_ERROR
            )

        upstream = await self.forwarder.forward(
            request.without_headers(PAYMENT_EVIDENCE_HEADERS)
        )
        return GatewayResponse.from_upstream(upstream)

    def _payment_block(self, challenge: PaymentChallenge) -> dict[str, Any]:
        return {
            "amount": float(challenge.amount),
            "recipient": challenge.recipient,
            "memo": challenge.correlation_token,
            "facilitator": self.settings.facilitator_address,
            "network": self.settings.solana_cluster,
            "issuedAt": int(challenge.issued_at.timestamp() * 1000),
        }

    def _payment_required(self) -> GatewayResponse:
        challenge = self.challenges.generate()
        return GatewayResponse.from_json(
            402,
            {
                "error": "Payment Required",
                "message": "This API requires payment via x402 protocol",
                "payment": self._payment_block(challenge),
                "instructions": {
                    "1": "Make a payment to the recipient address with the provided memo",
                    "2": "Include the memo in the X-Payment-Memo header",
                    "3": "Optionally include the transaction signature in the "
                    "X-Payment-Signature header",
                    "4": "Retry your request with the payment headers",
                },
            },
        )

    def _verification_failed(self, reason: FailureReason) -> GatewayResponse:
        challenge = self.challenges.generate()
        return GatewayResponse.from_json(
            402,
            {
                "error": "Payment Verification Failed",
                "message": FAILURE_MESSAGES[reason],
                "failureReason": reason.value,
                "payment": self._payment_block(challenge),
            },
        )


@asynccontextmanager
async def open_gateway(
    settings: Settings,
    ledger: LedgerClient | None = None,
    upstream_client: httpx.AsyncClient | None = None,
    consumed: ConsumedSettlements | None = None,
) -> AsyncIterator[GatewayProtocol]:
    """
    Builds a GatewayProtocol and the network clients it needs.

    Clients passed in are owned by the caller; clients created here are closed
    on exit. In strict mode a fresh consumed-settlement set is created unless
    the caller shares one that outlives this gateway.
    """
    async with AsyncExitStack() as stack:
        if ledger is None:
            ledger = SolanaLedgerClient(
                rpc_url=settings.ledger_rpc_url,
                timeout=settings.ledger_rpc_timeout_seconds,
            )
            stack.push_async_callback(ledger.close)

        if upstream_client is None:
            upstream_client = await stack.enter_async_context(
                httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
            )

        if consumed is None and settings.verification_mode is VerificationMode.STRICT:
            consumed = ConsumedSettlements(
                ttl_seconds=settings.payment_recency_window_seconds
            )

        verifier = PaymentVerifier(
            ledger,
            mode=settings.verification_mode,
            signature_limit=settings.ledger_signature_limit,
            recency_window_seconds=settings.payment_recency_window_seconds,
            poll_interval_seconds=settings.payment_poll_interval_seconds,
            consumed=consumed,
        )
        challenges = PaymentChallengeFactory(
            amount=settings.fee_amount, recipient=settings.receiver_address
        )
        forwarder = UpstreamForwarder(settings.target_api_url, upstream_client)

        yield GatewayProtocol(settings, challenges, verifier, forwarder)
