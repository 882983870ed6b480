"""
API Routes - FastAPI endpoints for ledger operations.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import require_api_key
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    DataIntegrityError,
    InsufficientCreditsError,
    InvalidAmountError,
    InvalidTransitionError,
    TransactionNotFoundError,
    UserNotFoundError,
    WriteVerificationError,
)
from app.models.api import (
    BalanceResponse,
    HealthResponse,
    PrechargeRequest,
    RefundRequest,
    SettleRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatus,
)
from app.models.domain import (
    Attribution,
    BalanceData,
    PrechargeIntent,
    SettlementIntent,
    TransactionData,
)
from app.services.ledger import LedgerService

router = APIRouter()


def transaction_response(data: TransactionData) -> TransactionResponse:
    """Convert a domain transaction to its API shape."""
    return TransactionResponse(
        transaction_id=data.transaction_id,
        user_id=data.user_id,
        delta=data.delta,
        status=data.status,
        reason=data.reason,
        provider_slug=data.provider_slug,
        model_slug=data.model_slug,
        request_id=data.request_id,
        metadata=data.metadata,
        created_at=data.created_at,
        updated_at=data.updated_at,
    )


def balance_response(data: BalanceData) -> BalanceResponse:
    """Convert a domain balance to its API shape."""
    return BalanceResponse(
        user_id=data.user_id,
        credits=data.credits,
        pending_holds=data.pending_holds,
    )


def transaction_list_response(
    items: list[TransactionData], total: int, page: int, page_size: int
) -> TransactionListResponse:
    """Build a paginated transaction listing."""
    return TransactionListResponse(
        transactions=[transaction_response(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.post(
    "/v1/ledger/precharges",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
async def create_precharge(
    request: PrechargeRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TransactionResponse:
    """
    Reserve credits before an external call.

    Write operation - requires primary database.
    """
    service = LedgerService(db)

    try:
        intent = PrechargeIntent(
            user_id=request.user_id,
            amount=request.amount,
            reason=request.reason,
            attribution=Attribution(
                provider_id=request.attribution.provider_id,
                provider_slug=request.attribution.provider_slug,
                model_id=request.attribution.model_id,
                model_slug=request.attribution.model_slug,
            ),
            request_id=request.request_id,
        )
        transaction = await service.precharge(intent)
        return transaction_response(transaction)

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


@router.post(
    "/v1/ledger/transactions/{transaction_id}/settle",
    response_model=TransactionResponse,
    dependencies=[Depends(require_api_key)],
)
async def settle_transaction(
    transaction_id: UUID,
    request: SettleRequest,
    db: AsyncSession = Depends(get_write_db),
) -> TransactionResponse:
    """
    Finalize a pending precharge as success or failed.

    Replaying a settlement returns the already-final transaction unchanged.
    """
    service = LedgerService(db)

    try:
        intent = SettlementIntent(
            transaction_id=transaction_id,
            status=request.status,
            actual_cost=request.actual_cost,
            metadata=request.metadata,
        )
        transaction = await service.settle(intent)
        return transaction_response(transaction)

    except TransactionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        ) from exc

    except (InvalidTransitionError, InvalidAmountError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except (WriteVerificationError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc


@router.post(
    "/v1/ledger/transactions/{transaction_id}/refund",
    response_model=TransactionResponse,
    dependencies=[Depends(require_api_key)],
)
async def refund_transaction(
    transaction_id: UUID,
    request: RefundRequest | None = None,
    db: AsyncSession = Depends(get_write_db),
) -> TransactionResponse:
    """Return the held or charged credits; refunding twice is a no-op."""
    service = LedgerService(db)

    try:
        transaction = await service.refund(
            transaction_id, reason=request.reason if request else None
        )
        return transaction_response(transaction)

    except TransactionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        ) from exc

    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
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


@router.get(
    "/v1/ledger/transactions/{transaction_id}",
    response_model=TransactionResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> TransactionResponse:
    """Read operation - served from replica."""
    service = LedgerService(db)

    try:
        transaction = await service.get_transaction(transaction_id)
    except TransactionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        ) from exc

    return transaction_response(transaction)


@router.get(
    "/v1/ledger/users/{user_id}/balance",
    response_model=BalanceResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_balance(
    user_id: str,
    db: AsyncSession = Depends(get_read_db),
) -> BalanceResponse:
    """Current balance plus the number of unsettled precharges."""
    service = LedgerService(db)

    try:
        balance = await service.get_balance(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    return balance_response(balance)


@router.get(
    "/v1/ledger/users/{user_id}/transactions",
    response_model=TransactionListResponse,
    dependencies=[Depends(require_api_key)],
)
async def list_user_transactions(
    user_id: str,
    status_filter: TransactionStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_read_db),
) -> TransactionListResponse:
    """Transaction history for a user, newest first."""
    service = LedgerService(db)

    items, total = await service.list_transactions(
        user_id=user_id, status=status_filter, page=page, page_size=page_size
    )
    return transaction_list_response(items, total, page, page_size)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
