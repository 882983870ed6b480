"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class BillingError(Exception):
    """Base exception for all ledger errors."""

    pass


class InvalidAmountError(BillingError):
    """Raised when a non-positive precharge or zero adjustment is requested."""

    def __init__(self, amount: int, message: str = "Invalid amount") -> None:
        self.amount = amount
        super().__init__(f"{message}: {amount}")


class InsufficientCreditsError(BillingError):
    """Raised when the balance cannot cover the requested debit."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class UserNotFoundError(BillingError):
    """Raised when the user owning a balance doesn't exist."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class TransactionNotFoundError(BillingError):
    """Raised when a transaction id is unknown at settle/refund time."""

    def __init__(self, transaction_id: UUID) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidTransitionError(BillingError):
    """Raised when a transaction status transition is not allowed."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid transaction transition: {current} -> {target}")


class PricingConfigError(BillingError):
    """Raised when a model's pricing configuration is missing or malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Pricing configuration error: {message}")


class WriteVerificationError(BillingError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(BillingError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")
