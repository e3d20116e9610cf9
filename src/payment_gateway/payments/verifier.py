"""
Settlement verification by polling the ledger.

A verification attempt starts in POLLING and ends in exactly one of VERIFIED,
TIMED_OUT, ERRORED or CANCELLED. No state survives between attempts apart from
the optional consumed-settlement set shared in strict mode.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

import structlog

from ..errors import VerificationTransportError
from ..ledger.interfaces import LedgerClient, Settlement, SettlementSignature
from ..ledger.solana import LAMPORTS_PER_SOL
from .replay import ConsumedSettlements
from .types import FailureReason, VerificationMode, VerificationOutcome, VerificationState

logger = structlog.get_logger(__name__)

DEFAULT_SIGNATURE_LIMIT = 10
DEFAULT_RECENCY_WINDOW_SECONDS = 5 * 60
DEFAULT_POLL_INTERVAL_SECONDS = 1.0

TIMEOUT_MESSAGE = "Payment timeout - no matching transaction found"
CANCELLED_MESSAGE = "Verification cancelled by caller"


def to_base_units(amount: Decimal) -> int:
    """Converts a SOL amount to lamports, rounding to the nearest lamport."""
    return int((amount * LAMPORTS_PER_SOL).to_integral_value())


class PaymentVerifier:
    """
    Polls a LedgerClient until a qualifying settlement shows up.

    A ledger event qualifies when it is younger than the recency window,
    succeeded on the ledger, involves the expected address and increased that
    address's balance. Strict mode additionally requires the exact fee amount
    and a memo equal to the caller's correlation token.

    Ledger faults of any kind end the attempt immediately with ERRORED: access
    is never granted on a failed query. The deadline is checked before every
    transaction fetch, so a slow ledger overruns it by at most one RPC call.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        mode: VerificationMode = VerificationMode.LENIENT,
        signature_limit: int = DEFAULT_SIGNATURE_LIMIT,
        recency_window_seconds: float = DEFAULT_RECENCY_WINDOW_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        consumed: ConsumedSettlements | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the verifier.

        Args:
            ledger: Ledger capability used for every poll
            mode: Lenient (legacy) or strict matching
            signature_limit: Number of recent events inspected per poll
            recency_window_seconds: Maximum age of an eligible event
            poll_interval_seconds: Pause between polls
            consumed: Settlements that already unlocked a request; None disables
                reuse protection
            clock: Monotonic clock for deadline tracking
            wall_clock: Unix-time clock for comparing with ledger block times
        """
        if signature_limit < 1:
            raise ValueError("signature_limit must be at least 1")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self.ledger = ledger
        self.mode = mode
        self.signature_limit = signature_limit
        self.recency_window_seconds = recency_window_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.consumed = consumed
        self._clock = clock
        self._wall_clock = wall_clock

    async def verify(
        self,
        memo: str | None,
        expected_address: str,
        expected_amount: Decimal,
        timeout_seconds: float,
        signature: str | None = None,
        cancelled: asyncio.Event | None = None,
    ) -> VerificationOutcome:
        """
        Runs one verification attempt.

        Args:
            memo: Correlation token supplied by the caller
            expected_address: Receiving ledger address
            expected_amount: Fee in SOL
            timeout_seconds: Verification deadline, measured from now
            signature: When given, only the event with this signature can qualify
            cancelled: Set by the caller to stop polling early

        Returns:
            Terminal VerificationOutcome
        """
        if self.mode is VerificationMode.STRICT and not memo:
            raise ValueError("Strict verification requires a memo")

        deadline = self._clock() + timeout_seconds
        expected_lamports = to_base_units(expected_amount)
        log = logger.bind(
            memo=memo,
            signature=signature,
            expected_address=expected_address,
            mode=self.mode.value,
        )
        log.info("verification_started", timeout_seconds=timeout_seconds)

        polls = 0
        while True:
            if cancelled is not None and cancelled.is_set():
                return self._cancelled(log, polls)

            polls += 1
            try:
                settlement = await self._poll_once(
                    expected_address, expected_lamports, memo, signature, deadline
                )
            except Exception as e:
                # Every ledger fault fails closed, including ones outside the
                # LedgerClient contract.
                log.error(
                    "verification_errored",
                    error=str(e),
                    polls=polls,
                    exc_info=not isinstance(e, VerificationTransportError),
                )
                return VerificationOutcome(
                    state=VerificationState.ERRORED,
                    failure_reason=FailureReason.LEDGER_ERROR,
                    message=f"Verification error: {e}",
                )

            if settlement is not None:
                log.info(
                    "payment_verified",
                    settlement_ref=settlement.signature,
                    slot=settlement.slot,
                    polls=polls,
                )
                return VerificationOutcome(
                    state=VerificationState.VERIFIED,
                    settlement_ref=settlement.signature,
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                log.info("verification_timed_out", polls=polls)
                return VerificationOutcome(
                    state=VerificationState.TIMED_OUT,
                    failure_reason=FailureReason.TIMEOUT,
                    message=TIMEOUT_MESSAGE,
                )

            if await self._pause(min(self.poll_interval_seconds, remaining), cancelled):
                return self._cancelled(log, polls)

    async def _poll_once(
        self,
        address: str,
        expected_lamports: int,
        memo: str | None,
        signature: str | None,
        deadline: float,
    ) -> Settlement | None:
        refs = await self.ledger.recent_settlements(address, self.signature_limit)
        now = self._wall_clock()

        for ref in refs:
            if not self._is_candidate(ref, now, signature):
                continue

            if self._clock() >= deadline:
                logger.debug("poll_stopped_at_deadline", next_ref=ref.signature)
                return None

            settlement = await self.ledger.fetch_settlement(ref.signature)
            if settlement is None or settlement.failed:
                continue

            delta = settlement.balance_delta(address)
            if delta is None or delta <= 0:
                continue

            if self.mode is VerificationMode.STRICT and not self._matches_strictly(
                settlement, delta, expected_lamports, memo
            ):
                continue

            if self.consumed is not None and not self.consumed.claim(
                settlement.signature
            ):
                continue

            return settlement

        return None

    def _is_candidate(
        self, ref: SettlementSignature, now: float, signature: str | None
    ) -> bool:
        if signature is not None and ref.signature != signature:
            return False
        if ref.failed:
            return False
        # Unstamped events count as infinitely old.
        if ref.block_time is None:
            return False
        if now - ref.block_time >= self.recency_window_seconds:
            return False
        if self.consumed is not None and ref.signature in self.consumed:
            return False
        return True

    def _matches_strictly(
        self,
        settlement: Settlement,
        delta: int,
        expected_lamports: int,
        memo: str | None,
    ) -> bool:
        if delta != expected_lamports:
            logger.debug(
                "settlement_amount_mismatch",
                settlement_ref=settlement.signature,
                delta=delta,
                expected=expected_lamports,
            )
            return False
        return memo in settlement.memos

    async def _pause(self, delay: float, cancelled: asyncio.Event | None) -> bool:
        """Sleeps for ``delay`` seconds; returns True if cancelled meanwhile."""
        if cancelled is None:
            await asyncio.sleep(delay)
            return False

        try:
            await asyncio.wait_for(cancelled.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    def _cancelled(self, log, polls: int) -> VerificationOutcome:
        log.info("verification_cancelled", polls=polls)
        return VerificationOutcome(
            state=VerificationState.CANCELLED,
            failure_reason=FailureReason.CANCELLED,
            message=CANCELLED_MESSAGE,
        )
