"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a string primary key."""
    return uuid4().hex


class User(Base):
    """
    ORM model for users table.

    Holds the credit balance. Only the ledger service mutates `credits`.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    # Balance
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),
        CheckConstraint("role IN ('user', 'admin')", name="ck_user_role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, credits={self.credits})>"


class AiProvider(Base):
    """ORM model for upstream AI providers."""

    __tablename__ = "ai_providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    models: Mapped[list["AiModel"]] = relationship(back_populates="provider")


class AiModel(Base):
    """
    ORM model for billable AI models.

    `pricing` holds the pricing configuration JSON, discriminated by `unit`.
    """

    __tablename__ = "ai_models"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("ai_providers.id"), nullable=False, index=True
    )
    pricing: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    provider: Mapped[AiProvider] = relationship(back_populates="models")


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Permanent ledger of balance-affecting events. Rows are never deleted;
    a row changes at most once after creation (status finalization).
    """

    __tablename__ = "credit_transactions"

    # Primary Key - generated at precharge time, used as idempotency key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id"), nullable=True
    )

    # Attribution
    provider_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("ai_providers.id"), nullable=True
    )
    provider_slug: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("ai_models.id"), nullable=True
    )
    model_slug: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Signed amount: negative = debit
    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Correlation with a usage record (not a foreign key)
    request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'refunded')",
            name="ck_credit_transaction_status",
        ),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
        Index("idx_credit_transactions_status_created", "status", "created_at"),
        Index(
            "idx_credit_transactions_request_id",
            "request_id",
            postgresql_where=(request_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"delta={self.delta}, status={self.status})>"
        )


class UsageRecord(Base):
    """
    ORM model for ai_usage table.

    Best-effort telemetry per external call, keyed by request_id.
    Deliberately unlinked from credit_transactions.
    """

    __tablename__ = "ai_usage"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    request_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    model_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model_slug: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider_slug: Mapped[str | None] = mapped_column(String(100), nullable=True)

    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_ai_usage_created_at", "created_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UsageRecord(request_id={self.request_id}, kind={self.kind}, status={self.status})>"
