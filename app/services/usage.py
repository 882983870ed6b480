"""
Usage Recorder - Best-effort telemetry for external calls.

Usage rows are observability, not accounting. A failed write is logged and
counted, never raised, and runs in its own session so it can never commit
or roll back a ledger transaction.
"""

from collections.abc import Callable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import UsageRecord
from app.db.session import get_write_session_factory
from app.models.api import TransactionStatus
from app.models.domain import UsagePatch, UsageRecordIntent
from app.observability.metrics import metrics

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class UsageRecorder:
    """Creates and patches ai_usage rows keyed by request_id."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory

    def _new_session(self) -> AsyncSession:
        factory = self._session_factory or get_write_session_factory()
        return factory()

    async def create(self, intent: UsageRecordIntent) -> bool:
        """Insert a pending usage record. Returns False if the write failed."""
        try:
            async with self._new_session() as session:
                session.add(
                    UsageRecord(
                        request_id=intent.request_id,
                        kind=intent.kind.value,
                        user_id=intent.user_id,
                        model_id=intent.attribution.model_id,
                        model_slug=intent.attribution.model_slug,
                        provider_slug=intent.attribution.provider_slug,
                        status=TransactionStatus.PENDING.value,
                    )
                )
                await session.commit()
        except Exception as exc:
            logger.warning(
                "usage_record_create_failed",
                request_id=intent.request_id,
                kind=intent.kind.value,
                error=str(exc),
                exc_info=True,
            )
            metrics.record_usage_failure("create")
            return False

        logger.debug("usage_record_created", request_id=intent.request_id, kind=intent.kind.value)
        return True

    async def update(self, request_id: str, patch: UsagePatch) -> bool:
        """
        Write only the fields set on the patch.

        Matching zero rows (the create failed earlier) is not an error.
        Returns False if the write failed.
        """
        values = patch.changed_fields()
        if not values:
            return True

        try:
            async with self._new_session() as session:
                stmt = (
                    update(UsageRecord)
                    .where(UsageRecord.request_id == request_id)
                    .values(**values)
                )
                result = await session.execute(stmt)
                await session.commit()
        except Exception as exc:
            logger.warning(
                "usage_record_update_failed",
                request_id=request_id,
                fields=sorted(values),
                error=str(exc),
                exc_info=True,
            )
            metrics.record_usage_failure("update")
            return False

        if result.rowcount == 0:
            logger.debug("usage_record_update_no_match", request_id=request_id)
        return True
