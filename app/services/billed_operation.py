"""
Billed Operation Runner - Precharge, call, settle.

Wraps a single external AI call so that the user is charged the estimate up
front, settled to the real cost on success, and made whole on any failure.

The provider call never runs inside a database transaction: precharge has
committed before it starts and settlement opens a new one after it ends.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4


from app.config import settings
from app.exceptions import PricingConfigError
from app.models.api import TransactionStatus, UsageKind
from app.models.domain import (
    Attribution,
    PrechargeIntent,
    SettlementIntent,
    TransactionData,
    UsagePatch,
    UsageRecordIntent,
)
from app.models.pricing import PricingConfig, UsageFacts
from app.observability.logging import get_logger, log_context
from app.services.ai_provider import ProviderCall, ProviderResult
from app.services.ledger import LedgerService
from app.services.pricing import estimate, parse_pricing
from app.services.usage import UsageRecorder

logger = get_logger(__name__)


@dataclass(frozen=True)
class BilledOperationRequest:
    """Everything needed to bill one external call."""

    user_id: str
    kind: UsageKind
    pricing: Any
    estimate_facts: UsageFacts
    attribution: Attribution = field(default_factory=Attribution)
    reason: str | None = None
    request_id: str | None = None

    @property
    def precharge_reason(self) -> str:
        """Classification written on the transaction, e.g. `chat.precharge`."""
        return self.reason or f"{self.kind.value}.precharge"


@dataclass(frozen=True)
class BilledOperationResult:
    """Provider payload plus the settled ledger entry."""

    payload: Any
    transaction: TransactionData
    estimated_cost: int
    actual_cost: int
    request_id: str


class BilledOperationRunner:
    """
    Runs the canonical billing sequence around a provider call.

    1. Estimate and precharge (no call is made if this fails)
    2. Create the usage record (best effort)
    3. Call the provider under a deadline
    4. Settle success with the actual cost, or failed with zero cost
    5. Update the usage record (best effort)
    """

    def __init__(
        self,
        ledger: LedgerService,
        recorder: UsageRecorder,
        timeout_seconds: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.recorder = recorder
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.provider_call_timeout_seconds
        )

    async def run(self, request: BilledOperationRequest, call: ProviderCall) -> BilledOperationResult:
        """
        Bill and perform one provider call.

        Raises:
            PricingConfigError: Model pricing is unusable (nothing charged)
            InsufficientCreditsError: Balance below the estimate (nothing charged)
            TimeoutError: Provider exceeded the deadline (fully refunded)
            Exception: Whatever the provider raised (fully refunded)
        """
        request_id = request.request_id or f"req_{uuid4().hex}"

        with log_context(request_id=request_id, user_id=request.user_id, kind=request.kind.value):
            return await self._run(request, call, request_id)

    async def _run(
        self, request: BilledOperationRequest, call: ProviderCall, request_id: str
    ) -> BilledOperationResult:
        pricing: PricingConfig = parse_pricing(request.pricing)
        estimated_cost = estimate(pricing, request.estimate_facts)

        transaction = await self.ledger.precharge(
            PrechargeIntent(
                user_id=request.user_id,
                amount=estimated_cost,
                reason=request.precharge_reason,
                attribution=request.attribution,
                request_id=request_id,
            )
        )

        start = time.perf_counter()
        try:
            await self.recorder.create(
                UsageRecordIntent(
                    request_id=request_id,
                    kind=request.kind,
                    user_id=request.user_id,
                    attribution=request.attribution,
                )
            )
            result: ProviderResult = await asyncio.wait_for(call(), timeout=self.timeout_seconds)
        except (Exception, asyncio.CancelledError) as exc:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.warning(
                "provider_call_failed",
                transaction_id=transaction.transaction_id,
                error_type=type(exc).__name__,
                duration_ms=duration_ms,
            )
            await self._settle_failed(transaction, request_id, duration_ms, exc)
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        actual_cost = self._actual_cost(pricing, result, estimated_cost)

        settled = await self.ledger.settle(
            SettlementIntent(
                transaction_id=transaction.transaction_id,
                status=TransactionStatus.SUCCESS,
                actual_cost=actual_cost,
                metadata={
                    "request_id": request_id,
                    "estimated_cost": estimated_cost,
                    "duration_ms": duration_ms,
                },
            )
        )

        await self.recorder.update(
            request_id,
            UsagePatch(
                status=TransactionStatus.SUCCESS,
                duration_ms=duration_ms,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost=settled.charged,
            ),
        )

        logger.info(
            "billed_operation_completed",
            transaction_id=settled.transaction_id,
            estimated_cost=estimated_cost,
            actual_cost=actual_cost,
            charged=settled.charged,
        )

        return BilledOperationResult(
            payload=result.payload,
            transaction=settled,
            estimated_cost=estimated_cost,
            actual_cost=actual_cost,
            request_id=request_id,
        )

    def _actual_cost(
        self,
        pricing: PricingConfig,
        result: ProviderResult,
        estimated_cost: int,
    ) -> int:
        """Cost from the reported usage, or the precharged estimate if it is missing or unusable."""
        if result.realized_usage is None:
            return estimated_cost
        try:
            return estimate(pricing, result.realized_usage)
        except PricingConfigError as exc:
            logger.warning(
                "realized_usage_unusable",
                usage_type=type(result.realized_usage).__name__,
                error=str(exc),
                estimated_cost=estimated_cost,
            )
            return estimated_cost

    async def _settle_failed(
        self,
        transaction: TransactionData,
        request_id: str,
        duration_ms: int,
        error: BaseException,
    ) -> None:
        """Return the full precharge; the original provider error is re-raised by the caller."""
        try:
            await self.ledger.settle(
                SettlementIntent(
                    transaction_id=transaction.transaction_id,
                    status=TransactionStatus.FAILED,
                    actual_cost=0,
                    metadata={
                        "request_id": request_id,
                        "error_type": type(error).__name__,
                        "duration_ms": duration_ms,
                    },
                )
            )
        except Exception:
            # The hold stays pending and is picked up by reconciliation
            logger.error(
                "failed_settlement_not_applied",
                transaction_id=str(transaction.transaction_id),
                exc_info=True,
            )

        await self.recorder.update(
            request_id,
            UsagePatch(status=TransactionStatus.FAILED, duration_ms=duration_ms, cost=0),
        )
