"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed, except the
free-form transaction metadata bag which is persisted as JSONB.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TransactionStatus(str, Enum):
    """Credit transaction status (persisted as a string)."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class UsageKind(str, Enum):
    """Kind of billed AI operation."""

    CHAT = "chat"
    IMAGE_GENERATE = "image.generate"
    IMAGE_EDIT = "image.edit"


class ImageMode(str, Enum):
    """Image pricing mode."""

    GENERATE = "generate"
    EDIT = "edit"


class UserRole(str, Enum):
    """User role enumeration."""

    USER = "user"
    ADMIN = "admin"


# ============================================================================
# Ledger Models
# ============================================================================


class AttributionModel(BaseModel):
    """Provider/model attribution for a transaction."""

    provider_id: str | None = Field(None, max_length=255)
    provider_slug: str | None = Field(None, max_length=255)
    model_id: str | None = Field(None, max_length=255)
    model_slug: str | None = Field(None, max_length=255)


class PrechargeRequest(BaseModel):
    """POST /v1/ledger/precharges request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., gt=0, description="Credits to reserve")
    reason: str = Field(..., min_length=1, max_length=255)
    request_id: str | None = Field(None, max_length=255)
    attribution: AttributionModel = Field(default_factory=AttributionModel)


class SettleRequest(BaseModel):
    """POST /v1/ledger/transactions/{id}/settle request body."""

    status: TransactionStatus
    actual_cost: int | None = Field(None, ge=0)
    metadata: dict[str, Any] | None = None

    @field_validator("status")
    @classmethod
    def validate_terminal_status(cls, v: TransactionStatus) -> TransactionStatus:
        """Settlement finalizes to success or failed only."""
        if v not in (TransactionStatus.SUCCESS, TransactionStatus.FAILED):
            raise ValueError("status must be 'success' or 'failed'")
        return v


class RefundRequest(BaseModel):
    """POST /v1/ledger/transactions/{id}/refund request body."""

    reason: str | None = Field(None, max_length=500)


class AdminAdjustRequest(BaseModel):
    """POST /v1/admin/credits/adjust request body."""

    user_id: str | None = Field(None, min_length=1, max_length=255)
    email: str | None = Field(None, min_length=3, max_length=255)
    amount: int = Field(..., description="Positive grants credits, negative deducts")
    reason: str = Field("admin adjustment", min_length=1, max_length=500)

    @field_validator("amount")
    @classmethod
    def validate_non_zero(cls, v: int) -> int:
        """Adjustment must change the balance."""
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v


class TransactionResponse(BaseModel):
    """Credit transaction representation."""

    transaction_id: UUID
    user_id: str | None
    delta: int
    status: TransactionStatus
    reason: str
    provider_slug: str | None = None
    model_slug: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class TransactionListResponse(BaseModel):
    """Paginated transaction history."""

    transactions: list[TransactionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class BalanceResponse(BaseModel):
    """GET /v1/ledger/users/{user_id}/balance response."""

    user_id: str
    credits: int
    pending_holds: int = Field(0, description="Number of unsettled precharges")


class AdminAdjustResponse(BaseModel):
    """POST /v1/admin/credits/adjust response."""

    transaction: TransactionResponse
    balance: BalanceResponse


class StaleRefundResponse(BaseModel):
    """POST /v1/admin/transactions/stale/refund response."""

    refunded: list[TransactionResponse]
    count: int


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime
