"""
Payment challenge generation for the 402 response.
"""

import itertools
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

from .types import PaymentChallenge

DEFAULT_TOKEN_PREFIX = "x402-spg"


class PaymentChallengeFactory:
    """
    Builds payment challenges from the configured fee and receiving address.

    Correlation tokens combine a random per-process tag, the issue time in
    milliseconds and a per-process sequence number, so two challenges issued in
    the same millisecond (or by two gateway processes) never share a token.
    """

    def __init__(
        self,
        amount: Decimal,
        recipient: str,
        prefix: str = DEFAULT_TOKEN_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        if amount <= 0:
            raise ValueError("Challenge amount must be positive")

        self.amount = amount
        self.recipient = recipient
        self.prefix = prefix
        self._clock = clock
        self._process_tag = secrets.token_hex(4)
        self._sequence = itertools.count()

    def generate(self, memo: str | None = None) -> PaymentChallenge:
        """
        Generate a payment challenge.

        Args:
            memo: Caller-supplied correlation token; synthesized when absent

        Returns:
            Immutable PaymentChallenge
        """
        now = self._clock()
        token = memo or self._next_token(now)
        return PaymentChallenge(
            amount=self.amount,
            recipient=self.recipient,
            correlation_token=token,
            issued_at=datetime.fromtimestamp(now, UTC),
        )

    def _next_token(self, now: float) -> str:
        millis = int(now * 1000)
        return f"{self.prefix}-{millis}-{self._process_tag}{next(self._sequence):x}"
