"""Payment challenges and settlement verification."""

from .challenge import PaymentChallengeFactory
from .replay import ConsumedSettlements
from .types import (
    FailureReason,
    PaymentChallenge,
    VerificationMode,
    VerificationOutcome,
    VerificationState,
)
from .verifier import PaymentVerifier

__all__ = [
    "ConsumedSettlements",
    "FailureReason",
    "PaymentChallenge",
    "PaymentChallengeFactory",
    "PaymentVerifier",
    "VerificationMode",
    "VerificationOutcome",
    "VerificationState",
]
