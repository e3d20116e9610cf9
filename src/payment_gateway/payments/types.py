from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class VerificationMode(str, Enum):
    """How much evidence a settlement must carry to unlock a request."""

    LENIENT = "lenient"  # Any positive balance delta at the receiver
    STRICT = "strict"  # Exact fee amount plus matching memo


class VerificationState(str, Enum):
    POLLING = "polling"
    VERIFIED = "verified"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    LEDGER_ERROR = "ledger_error"
    MEMO_REQUIRED = "memo_required"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PaymentChallenge:
    """Payment instructions returned with a 402 response."""

    amount: Decimal
    recipient: str
    correlation_token: str
    issued_at: datetime


@dataclass(frozen=True)
class VerificationOutcome:
    """Terminal result of one verification attempt."""

    state: VerificationState
    settlement_ref: str | None = None
    failure_reason: FailureReason | None = None
    message: str | None = None  # Server-side detail, not for clients

    @property
    def verified(self) -> bool:
        return self.state is VerificationState.VERIFIED
