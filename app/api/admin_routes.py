"""
Admin API routes for credit management and reconciliation.

Protected by the service API key plus an X-Admin-ID header naming a user
with the admin role.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_current_admin
from app.api.routes import balance_response, transaction_list_response, transaction_response
from app.db.models import User
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    DataIntegrityError,
    InsufficientCreditsError,
    InvalidAmountError,
    UserNotFoundError,
    WriteVerificationError,
)
from app.models.api import (
    AdminAdjustRequest,
    AdminAdjustResponse,
    StaleRefundResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatus,
)
from app.models.domain import AdjustmentIntent
from app.services.ledger import LedgerService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


async def _resolve_user_id(db: AsyncSession, request: AdminAdjustRequest) -> str:
    """Pick the target user by id, or look it up by email."""
    if request.user_id:
        return request.user_id

    if not request.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either user_id or email is required",
        )

    result = await db.execute(select(User.id).where(User.email == request.email))
    user_id = result.scalar_one_or_none()
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user_id


@router.post("/credits/adjust", response_model=AdminAdjustResponse)
async def adjust_credits(
    request: AdminAdjustRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(get_current_admin),
) -> AdminAdjustResponse:
    """
    Grant or deduct credits.

    A deduction larger than the balance is rejected and changes nothing.
    """
    user_id = await _resolve_user_id(db, request)
    service = LedgerService(db)

    try:
        intent = AdjustmentIntent(
            admin_id=admin.id,
            user_id=user_id,
            amount=request.amount,
            reason=request.reason,
        )
        transaction = await service.admin_adjust(intent)
        balance = await service.get_balance(user_id)

    except InvalidAmountError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient credits. Balance: {exc.balance}, Required: {exc.required}",
        ) from exc

    except (WriteVerificationError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    logger.info(
        "admin_credits_adjusted",
        admin_id=admin.id,
        user_id=user_id,
        amount=request.amount,
        transaction_id=str(transaction.transaction_id),
    )

    return AdminAdjustResponse(
        transaction=transaction_response(transaction),
        balance=balance_response(balance),
    )


@router.get("/credit-logs", response_model=TransactionListResponse)
async def list_credit_logs(
    user_id: str | None = Query(None),
    status_filter: TransactionStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_read_db),
    admin: User = Depends(get_current_admin),
) -> TransactionListResponse:
    """All credit transactions, newest first, filtered by user and status."""
    service = LedgerService(db)

    items, total = await service.list_transactions(
        user_id=user_id, status=status_filter, page=page, page_size=page_size
    )
    return transaction_list_response(items, total, page, page_size)


@router.get("/transactions/stale", response_model=list[TransactionResponse])
async def list_stale_pending(
    older_than_seconds: int | None = Query(None, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_read_db),
    admin: User = Depends(get_current_admin),
) -> list[TransactionResponse]:
    """Pending precharges older than the TTL (leaked holds)."""
    service = LedgerService(db)

    older_than = timedelta(seconds=older_than_seconds) if older_than_seconds else None
    stale = await service.find_stale_pending(older_than, limit)
    return [transaction_response(item) for item in stale]


@router.post("/transactions/stale/refund", response_model=StaleRefundResponse)
async def refund_stale_pending(
    older_than_seconds: int | None = Query(None, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_write_db),
    admin: User = Depends(get_current_admin),
) -> StaleRefundResponse:
    """Refund every leaked hold still pending."""
    service = LedgerService(db)

    older_than = timedelta(seconds=older_than_seconds) if older_than_seconds else None
    try:
        refunded = await service.refund_stale_pending(older_than, limit)
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    logger.info("admin_stale_pending_refunded", admin_id=admin.id, count=len(refunded))

    return StaleRefundResponse(
        refunded=[transaction_response(item) for item in refunded],
        count=len(refunded),
    )
