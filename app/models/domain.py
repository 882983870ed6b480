"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The transaction metadata bag is the one open key/value field.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from app.exceptions import InvalidAmountError, InvalidTransitionError
from app.models.api import TransactionStatus, UsageKind

# ============================================================================
# Transaction State Machine
# ============================================================================

ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.SUCCESS: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.FAILED: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.REFUNDED: frozenset(),
}

SETTLEMENT_STATUSES = frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED})


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """Check whether a status transition is allowed."""
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


# ============================================================================
# Ledger Intents
# ============================================================================


@dataclass(frozen=True)
class Attribution:
    """Optional link of a transaction to the provider/model that incurred it."""

    provider_id: str | None = None
    provider_slug: str | None = None
    model_id: str | None = None
    model_slug: str | None = None


@dataclass(frozen=True)
class PrechargeIntent:
    """Reservation of an estimated cost before an external call."""

    user_id: str
    amount: int
    reason: str
    attribution: Attribution = field(default_factory=Attribution)
    request_id: str | None = None

    def __post_init__(self) -> None:
        """Validate precharge constraints."""
        if self.amount <= 0:
            raise InvalidAmountError(self.amount, "Precharge amount must be positive")
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.reason:
            raise ValueError("Reason cannot be empty")


@dataclass(frozen=True)
class SettlementIntent:
    """Finalization of a pending transaction with its realized cost."""

    transaction_id: UUID
    status: TransactionStatus
    actual_cost: int | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate settlement constraints."""
        if self.status not in SETTLEMENT_STATUSES:
            raise InvalidTransitionError(TransactionStatus.PENDING.value, self.status.value)
        if self.actual_cost is not None and self.actual_cost < 0:
            raise InvalidAmountError(self.actual_cost, "Actual cost cannot be negative")


@dataclass(frozen=True)
class AdjustmentIntent:
    """Out-of-band admin grant (positive) or penalty (negative)."""

    admin_id: str
    user_id: str
    amount: int
    reason: str

    def __post_init__(self) -> None:
        """Validate adjustment constraints."""
        if self.amount == 0:
            raise InvalidAmountError(self.amount, "Adjustment amount must be non-zero")
        if not self.admin_id:
            raise ValueError("admin_id cannot be empty")
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


# ============================================================================
# Ledger Snapshots
# ============================================================================


@dataclass(frozen=True)
class TransactionData:
    """Immutable credit transaction snapshot after persistence."""

    transaction_id: UUID
    user_id: str | None
    delta: int
    status: TransactionStatus
    reason: str
    provider_slug: str | None
    model_slug: str | None
    request_id: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @property
    def charged(self) -> int:
        """Credits currently held or spent by this transaction."""
        return abs(self.delta)

    def is_pending(self) -> bool:
        """Check if the transaction still awaits settlement."""
        return self.status == TransactionStatus.PENDING


@dataclass(frozen=True)
class BalanceData:
    """Immutable user balance snapshot."""

    user_id: str
    credits: int
    pending_holds: int = 0

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.credits < 0:
            raise ValueError(f"Balance cannot be negative: {self.credits}")


# ============================================================================
# Usage Records
# ============================================================================


@dataclass(frozen=True)
class UsageRecordIntent:
    """Telemetry entry created before an external call."""

    request_id: str
    kind: UsageKind
    user_id: str | None = None
    attribution: Attribution = field(default_factory=Attribution)

    def __post_init__(self) -> None:
        """Validate usage record fields."""
        if not self.request_id:
            raise ValueError("request_id cannot be empty")


@dataclass(frozen=True)
class UsagePatch:
    """Fields written to a usage record after the call; None means unchanged."""

    status: TransactionStatus | None = None
    duration_ms: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost: int | None = None
    provider_slug: str | None = None
    model_slug: str | None = None

    def changed_fields(self) -> dict[str, Any]:
        """Column values to write, skipping unset fields."""
        values: dict[str, Any] = {}
        if self.status is not None:
            values["status"] = self.status.value
        for name in (
            "duration_ms",
            "input_tokens",
            "output_tokens",
            "cost",
            "provider_slug",
            "model_slug",
        ):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values
