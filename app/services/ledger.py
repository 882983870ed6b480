"""
Ledger Service - Precharge, settlement, refund and admin adjustment.

NO DICTIONARIES - All operations use strongly typed domain models.

Every mutation is one database transaction:
1. Lock the rows it touches (SELECT FOR UPDATE, transaction row before user row)
2. Validate and write
3. Flush, read back and verify
4. Commit

Any error rolls the unit of work back before propagating, so no row lock
outlives the call. Provider calls never run inside these transactions.
"""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import CreditTransaction, User
from app.exceptions import (
    BillingError,
    DataIntegrityError,
    InsufficientCreditsError,
    TransactionNotFoundError,
    UserNotFoundError,
    WriteVerificationError,
)
from app.models.api import TransactionStatus
from app.models.domain import (
    AdjustmentIntent,
    BalanceData,
    PrechargeIntent,
    SettlementIntent,
    TransactionData,
    ensure_transition,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation

logger = get_logger(__name__)

STALE_REFUND_REASON = "reconcile.stale_pending"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class LedgerService:
    """
    Credit ledger with write verification.

    The user balance is only ever read and written under a row lock inside
    the same transaction that writes the matching CreditTransaction row.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger service with database session."""
        self.session = session

    async def precharge(self, intent: PrechargeIntent) -> TransactionData:
        """
        Reserve credits before an external call.

        Raises:
            UserNotFoundError: User doesn't exist
            InsufficientCreditsError: Balance below the requested amount
        """
        start = time.perf_counter()
        try:
            with trace_operation("ledger.precharge", user_id=intent.user_id, amount=intent.amount):
                async with self._atomic():
                    user = await self._lock_user_for_update(intent.user_id)
                    if user is None:
                        raise UserNotFoundError(intent.user_id)

                    if user.credits < intent.amount:
                        raise InsufficientCreditsError(user.credits, intent.amount)

                    balance_after = user.credits - intent.amount
                    now = _utc_now()

                    transaction = CreditTransaction(
                        id=uuid4(),
                        user_id=user.id,
                        provider_id=intent.attribution.provider_id,
                        provider_slug=intent.attribution.provider_slug,
                        model_id=intent.attribution.model_id,
                        model_slug=intent.attribution.model_slug,
                        delta=-intent.amount,
                        reason=intent.reason,
                        status=TransactionStatus.PENDING.value,
                        request_id=intent.request_id,
                        metadata_={},
                        created_at=now,
                        updated_at=now,
                    )
                    self.session.add(transaction)
                    await self.session.flush()

                    verified = await self._verify_transaction(transaction.id)

                    user.credits = balance_after
                    await self.session.flush()
                    await self._verify_balance(user.id, balance_after)

                    data = self._transaction_to_domain(verified)
                    await self.session.commit()
        except BillingError as exc:
            metrics.record_precharge(
                False, intent.amount, time.perf_counter() - start, type(exc).__name__
            )
            logger.info(
                "precharge_rejected",
                user_id=intent.user_id,
                amount=intent.amount,
                reason=intent.reason,
                error=type(exc).__name__,
            )
            raise

        metrics.record_precharge(True, intent.amount, time.perf_counter() - start)
        logger.info(
            "precharge_created",
            transaction_id=str(data.transaction_id),
            user_id=intent.user_id,
            amount=intent.amount,
            reason=intent.reason,
            balance_after=balance_after,
            model_slug=intent.attribution.model_slug,
        )
        return data

    async def settle(self, intent: SettlementIntent) -> TransactionData:
        """
        Finalize a pending transaction, reconciling the precharge with the actual cost.

        Returns the existing record unchanged if the transaction is no longer
        pending, so replays never double-apply.

        Raises:
            TransactionNotFoundError: Unknown transaction id
            DataIntegrityError: Transaction references a missing user
        """
        start = time.perf_counter()
        with trace_operation(
            "ledger.settle",
            transaction_id=intent.transaction_id,
            status=intent.status.value,
            actual_cost=intent.actual_cost,
        ):
            async with self._atomic():
                transaction = await self._lock_transaction_for_update(intent.transaction_id)
                if transaction is None:
                    raise TransactionNotFoundError(intent.transaction_id)

                current = TransactionStatus(transaction.status)
                if current != TransactionStatus.PENDING:
                    data = self._transaction_to_domain(transaction)
                    await self.session.rollback()
                    metrics.record_settlement(
                        current.value, False, None, time.perf_counter() - start
                    )
                    logger.info(
                        "settlement_noop",
                        transaction_id=str(intent.transaction_id),
                        current_status=current.value,
                        requested_status=intent.status.value,
                    )
                    return data

                ensure_transition(current, intent.status)

                metadata = dict(transaction.metadata_ or {})
                if intent.metadata:
                    metadata.update(intent.metadata)

                adjustment: int | None = None
                expected_balance: int | None = None

                if intent.actual_cost is not None:
                    precharged = abs(transaction.delta)
                    charged = intent.actual_cost
                    adjustment = precharged - charged

                    if adjustment != 0 and transaction.user_id is not None:
                        user = await self._lock_user_for_update(transaction.user_id)
                        if user is None:
                            raise DataIntegrityError(
                                f"Transaction {transaction.id} references missing user "
                                f"{transaction.user_id}"
                            )

                        expected_balance = user.credits + adjustment
                        if expected_balance < 0:
                            # Collect what the balance covers, record the rest
                            uncollected = -expected_balance
                            charged -= uncollected
                            adjustment = precharged - charged
                            expected_balance = 0
                            metadata["uncollected_credits"] = uncollected
                            logger.warning(
                                "settlement_overdraft_clamped",
                                transaction_id=str(transaction.id),
                                user_id=transaction.user_id,
                                actual_cost=intent.actual_cost,
                                collected=charged,
                                uncollected=uncollected,
                            )

                        user.credits = expected_balance

                    transaction.delta = -charged

                transaction.status = intent.status.value
                transaction.metadata_ = metadata
                transaction.updated_at = _utc_now()
                await self.session.flush()

                verified = await self._verify_transaction(transaction.id)
                if verified.status != intent.status.value:
                    raise DataIntegrityError(
                        f"Status mismatch: expected {intent.status.value}, got {verified.status}"
                    )
                if expected_balance is not None and transaction.user_id is not None:
                    await self._verify_balance(transaction.user_id, expected_balance)

                data = self._transaction_to_domain(verified)
                await self.session.commit()

        metrics.record_settlement(
            intent.status.value, True, adjustment, time.perf_counter() - start
        )
        logger.info(
            "settlement_applied",
            transaction_id=str(data.transaction_id),
            user_id=data.user_id,
            status=data.status.value,
            delta=data.delta,
            adjustment=adjustment,
        )
        return data

    async def refund(self, transaction_id: UUID, reason: str | None = None) -> TransactionData:
        """
        Reverse the transaction's delta and mark it refunded.

        Debits (precharges, settled charges, penalties) are credited back;
        an admin grant is taken back. No-op if already refunded.

        Raises:
            TransactionNotFoundError: Unknown transaction id
            InsufficientCreditsError: Taking back a grant would overdraw the balance
            DataIntegrityError: Transaction references a missing user
        """
        data, _ = await self._refund(transaction_id, reason)
        return data

    async def _refund(
        self, transaction_id: UUID, reason: str | None, only_pending: bool = False
    ) -> tuple[TransactionData, bool]:
        """
        Refund and report whether anything was applied.

        With only_pending, a transaction that has already settled is left alone.

        Raises:
            TransactionNotFoundError: Unknown transaction id
            InsufficientCreditsError: Taking back a grant would overdraw the balance
            DataIntegrityError: Transaction references a missing user
        """
        start = time.perf_counter()
        with trace_operation("ledger.refund", transaction_id=transaction_id):
            async with self._atomic():
                transaction = await self._lock_transaction_for_update(transaction_id)
                if transaction is None:
                    raise TransactionNotFoundError(transaction_id)

                current = TransactionStatus(transaction.status)
                if current == TransactionStatus.REFUNDED or (
                    only_pending and current != TransactionStatus.PENDING
                ):
                    data = self._transaction_to_domain(transaction)
                    await self.session.rollback()
                    metrics.record_refund(False, time.perf_counter() - start)
                    logger.info(
                        "refund_noop",
                        transaction_id=str(transaction_id),
                        current_status=current.value,
                    )
                    return data, False

                ensure_transition(current, TransactionStatus.REFUNDED)

                # Reverse the delta: debits come back, grants are taken back
                amount = -transaction.delta
                expected_balance: int | None = None

                if amount and transaction.user_id is not None:
                    user = await self._lock_user_for_update(transaction.user_id)
                    if user is None:
                        raise DataIntegrityError(
                            f"Transaction {transaction.id} references missing user "
                            f"{transaction.user_id}"
                        )
                    expected_balance = user.credits + amount
                    if expected_balance < 0:
                        raise InsufficientCreditsError(user.credits, -amount)
                    user.credits = expected_balance

                metadata = dict(transaction.metadata_ or {})
                metadata["refunded_from"] = current.value
                if reason:
                    metadata["refund_reason"] = reason

                transaction.status = TransactionStatus.REFUNDED.value
                transaction.metadata_ = metadata
                transaction.updated_at = _utc_now()
                await self.session.flush()

                verified = await self._verify_transaction(transaction.id)
                if expected_balance is not None and transaction.user_id is not None:
                    await self._verify_balance(transaction.user_id, expected_balance)

                data = self._transaction_to_domain(verified)
                await self.session.commit()

        metrics.record_refund(True, time.perf_counter() - start)
        logger.info(
            "refund_applied",
            transaction_id=str(transaction_id),
            user_id=data.user_id,
            balance_change=amount,
            previous_status=current.value,
            refund_reason=reason,
        )
        return data, True

    async def admin_adjust(self, intent: AdjustmentIntent) -> TransactionData:
        """
        Grant (positive) or deduct (negative) credits outside the precharge lifecycle.

        Writes a transaction that is already `success`.

        Raises:
            UserNotFoundError: User doesn't exist
            InsufficientCreditsError: Deduction exceeds the balance
        """
        try:
            with trace_operation(
                "ledger.admin_adjust", user_id=intent.user_id, amount=intent.amount
            ):
                async with self._atomic():
                    user = await self._lock_user_for_update(intent.user_id)
                    if user is None:
                        raise UserNotFoundError(intent.user_id)

                    balance_after = user.credits + intent.amount
                    if balance_after < 0:
                        raise InsufficientCreditsError(user.credits, -intent.amount)

                    now = _utc_now()
                    transaction = CreditTransaction(
                        id=uuid4(),
                        user_id=user.id,
                        delta=intent.amount,
                        reason="admin.grant" if intent.amount > 0 else "admin.penalty",
                        status=TransactionStatus.SUCCESS.value,
                        metadata_={
                            "admin_id": intent.admin_id,
                            "adjustment_reason": intent.reason,
                        },
                        created_at=now,
                        updated_at=now,
                    )
                    self.session.add(transaction)
                    await self.session.flush()

                    verified = await self._verify_transaction(transaction.id)

                    user.credits = balance_after
                    await self.session.flush()
                    await self._verify_balance(user.id, balance_after)

                    data = self._transaction_to_domain(verified)
                    await self.session.commit()
        except BillingError:
            metrics.record_adjustment(intent.amount, False)
            raise

        metrics.record_adjustment(intent.amount, True)
        logger.info(
            "admin_adjustment_applied",
            transaction_id=str(data.transaction_id),
            admin_id=intent.admin_id,
            user_id=intent.user_id,
            amount=intent.amount,
            balance_after=balance_after,
        )
        return data

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_transaction(self, transaction_id: UUID) -> TransactionData:
        """
        Get a transaction by id.

        Raises:
            TransactionNotFoundError: Unknown transaction id
        """
        transaction = await self.session.get(CreditTransaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return self._transaction_to_domain(transaction)

    async def get_balance(self, user_id: str) -> BalanceData:
        """
        Get the current balance and number of unsettled holds.

        Raises:
            UserNotFoundError: User doesn't exist
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        stmt = select(func.count(CreditTransaction.id)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.status == TransactionStatus.PENDING.value,
        )
        result = await self.session.execute(stmt)
        pending_holds = result.scalar_one()

        return BalanceData(user_id=user.id, credits=user.credits, pending_holds=pending_holds)

    async def list_transactions(
        self,
        user_id: str | None = None,
        status: TransactionStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[TransactionData], int]:
        """List transactions newest first; returns (page items, total count)."""
        stmt = select(CreditTransaction)
        if user_id is not None:
            stmt = stmt.where(CreditTransaction.user_id == user_id)
        if status is not None:
            stmt = stmt.where(CreditTransaction.status == status.value)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total_result = await self.session.execute(count_stmt)
        total = total_result.scalar_one()

        stmt = (
            stmt.order_by(CreditTransaction.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(stmt)
        transactions = result.scalars().all()

        return [self._transaction_to_domain(t) for t in transactions], total

    async def find_stale_pending(
        self, older_than: timedelta | None = None, limit: int = 100
    ) -> list[TransactionData]:
        """
        Find pending transactions older than the TTL.

        A pending row that outlives the TTL is a leaked hold: the request
        crashed between the provider call and settlement.
        """
        if older_than is None:
            older_than = timedelta(seconds=settings.pending_transaction_ttl_seconds)
        cutoff = _utc_now() - older_than

        stmt = (
            select(CreditTransaction)
            .where(
                CreditTransaction.status == TransactionStatus.PENDING.value,
                CreditTransaction.created_at < cutoff,
            )
            .order_by(CreditTransaction.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        stale = [self._transaction_to_domain(t) for t in result.scalars().all()]

        metrics.stale_pending_found.set(len(stale))
        if stale:
            logger.warning(
                "stale_pending_transactions_found",
                count=len(stale),
                oldest_created_at=stale[0].created_at.isoformat(),
                cutoff=cutoff.isoformat(),
            )
        return stale

    async def refund_stale_pending(
        self, older_than: timedelta | None = None, limit: int = 100
    ) -> list[TransactionData]:
        """Refund every stale pending hold; rows settled in the meantime are left alone."""
        stale = await self.find_stale_pending(older_than, limit)
        # Release the read transaction before taking row locks one by one
        await self.session.commit()

        refunded: list[TransactionData] = []
        for transaction in stale:
            data, applied = await self._refund(
                transaction.transaction_id, STALE_REFUND_REASON, only_pending=True
            )
            if applied:
                refunded.append(data)

        logger.info("stale_pending_refunded", found=len(stale), refunded=len(refunded))
        return refunded

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    @asynccontextmanager
    async def _atomic(self) -> AsyncIterator[None]:
        """Roll back the unit of work if anything inside it fails."""
        try:
            yield
        except Exception:
            await self.session.rollback()
            raise

    async def _lock_user_for_update(self, user_id: str) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE), refreshing cached state."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_transaction_for_update(
        self, transaction_id: UUID
    ) -> CreditTransaction | None:
        """Lock transaction row for update (SELECT FOR UPDATE), refreshing cached state."""
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _verify_transaction(self, transaction_id: UUID) -> CreditTransaction:
        """Read back a transaction row after flush."""
        verified = await self.session.get(CreditTransaction, transaction_id)
        if verified is None:
            raise WriteVerificationError(f"Transaction {transaction_id} not found after write")
        return verified

    async def _verify_balance(self, user_id: str, expected: int) -> None:
        """Read back a user balance after flush."""
        verified = await self.session.get(User, user_id)
        if verified is None:
            raise WriteVerificationError(f"User {user_id} disappeared after update")
        if verified.credits != expected:
            raise DataIntegrityError(
                f"Balance mismatch: expected {expected}, got {verified.credits}"
            )

    def _transaction_to_domain(self, transaction: CreditTransaction) -> TransactionData:
        """Convert ORM transaction to domain model."""
        return TransactionData(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            delta=transaction.delta,
            status=TransactionStatus(transaction.status),
            reason=transaction.reason,
            provider_slug=transaction.provider_slug,
            model_slug=transaction.model_slug,
            request_id=transaction.request_id,
            metadata=dict(transaction.metadata_ or {}),
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )
