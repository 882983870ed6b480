"""
Tests for admin API routes.

Handlers are called directly with a patched LedgerService, the admin
dependency chain is checked through the TestClient.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from conftest import execute_result, transaction_data
from fastapi import HTTPException

from app.api.admin_routes import (
    _resolve_user_id,
    adjust_credits,
    list_credit_logs,
    list_stale_pending,
    refund_stale_pending,
)
from app.db.models import User
from app.exceptions import InsufficientCreditsError, UserNotFoundError
from app.models.api import AdminAdjustRequest, TransactionStatus
from app.models.domain import BalanceData

# ============================================================================
# User Resolution
# ============================================================================


class TestResolveUserId:
    async def test_user_id_wins(self, db_session: AsyncMock):
        request = AdminAdjustRequest(user_id="user-1", email="other@example.com", amount=5)

        assert await _resolve_user_id(db_session, request) == "user-1"
        db_session.execute.assert_not_awaited()

    async def test_lookup_by_email(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=execute_result(scalar="user-7"))
        request = AdminAdjustRequest(email="seven@example.com", amount=5)

        assert await _resolve_user_id(db_session, request) == "user-7"

    async def test_unknown_email_is_404(self, db_session: AsyncMock):
        request = AdminAdjustRequest(email="nobody@example.com", amount=5)

        with pytest.raises(HTTPException) as exc_info:
            await _resolve_user_id(db_session, request)

        assert exc_info.value.status_code == 404

    async def test_no_target_is_400(self, db_session: AsyncMock):
        with pytest.raises(HTTPException) as exc_info:
            await _resolve_user_id(db_session, AdminAdjustRequest(amount=5))

        assert exc_info.value.status_code == 400


# ============================================================================
# Credit Adjustment
# ============================================================================


class TestAdjustCredits:
    async def test_grant(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            service = MockService.return_value
            service.admin_adjust = AsyncMock(
                return_value=transaction_data(
                    delta=100, status=TransactionStatus.SUCCESS, reason="admin.grant"
                )
            )
            service.get_balance = AsyncMock(
                return_value=BalanceData(user_id="user-1", credits=600)
            )

            response = await adjust_credits(
                AdminAdjustRequest(user_id="user-1", amount=100, reason="goodwill"),
                db=db_session,
                admin=admin_user,
            )

        assert response.transaction.delta == 100
        assert response.balance.credits == 600
        intent = service.admin_adjust.await_args.args[0]
        assert intent.admin_id == "admin-1"
        assert intent.reason == "goodwill"

    async def test_overdrawing_penalty_is_402(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            MockService.return_value.admin_adjust = AsyncMock(
                side_effect=InsufficientCreditsError(10, 50)
            )

            with pytest.raises(HTTPException) as exc_info:
                await adjust_credits(
                    AdminAdjustRequest(user_id="user-1", amount=-50),
                    db=db_session,
                    admin=admin_user,
                )

        assert exc_info.value.status_code == 402

    async def test_unknown_user_is_404(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            MockService.return_value.admin_adjust = AsyncMock(
                side_effect=UserNotFoundError("ghost")
            )

            with pytest.raises(HTTPException) as exc_info:
                await adjust_credits(
                    AdminAdjustRequest(user_id="ghost", amount=5),
                    db=db_session,
                    admin=admin_user,
                )

        assert exc_info.value.status_code == 404

    def test_zero_amount_rejected_by_model(self):
        with pytest.raises(ValueError):
            AdminAdjustRequest(user_id="user-1", amount=0)


# ============================================================================
# Credit Logs and Reconciliation
# ============================================================================


class TestCreditLogs:
    async def test_filters_forwarded(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            service = MockService.return_value
            service.list_transactions = AsyncMock(return_value=([transaction_data()], 1))

            response = await list_credit_logs(
                user_id="user-1",
                status_filter=TransactionStatus.PENDING,
                page=1,
                page_size=20,
                db=db_session,
                admin=admin_user,
            )

        assert response.total == 1
        assert response.total_pages == 1
        service.list_transactions.assert_awaited_once_with(
            user_id="user-1", status=TransactionStatus.PENDING, page=1, page_size=20
        )


class TestStalePending:
    async def test_list_uses_custom_age(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            service = MockService.return_value
            service.find_stale_pending = AsyncMock(return_value=[transaction_data()])

            response = await list_stale_pending(
                older_than_seconds=3600, limit=10, db=db_session, admin=admin_user
            )

        assert len(response) == 1
        service.find_stale_pending.assert_awaited_once_with(timedelta(seconds=3600), 10)

    async def test_list_defaults_to_ttl(self, db_session: AsyncMock, admin_user: User):
        with patch("app.api.admin_routes.LedgerService") as MockService:
            service = MockService.return_value
            service.find_stale_pending = AsyncMock(return_value=[])

            await list_stale_pending(
                older_than_seconds=None, limit=100, db=db_session, admin=admin_user
            )

        service.find_stale_pending.assert_awaited_once_with(None, 100)

    async def test_refund(self, db_session: AsyncMock, admin_user: User):
        refunded = [
            transaction_data(status=TransactionStatus.REFUNDED),
            transaction_data(status=TransactionStatus.REFUNDED),
        ]

        with patch("app.api.admin_routes.LedgerService") as MockService:
            MockService.return_value.refund_stale_pending = AsyncMock(return_value=refunded)

            response = await refund_stale_pending(
                older_than_seconds=None, limit=100, db=db_session, admin=admin_user
            )

        assert response.count == 2
        assert all(t.status == TransactionStatus.REFUNDED for t in response.refunded)


# ============================================================================
# HTTP-Level Tests
# ============================================================================


class TestAdminHttpAuth:
    def test_missing_admin_header_is_401(self, client, api_headers):
        response = client.get("/v1/admin/credit-logs", headers=api_headers)

        assert response.status_code == 401

    def test_non_admin_is_403(self, client, api_headers, db_session: AsyncMock):
        from conftest import create_user

        db_session.get = AsyncMock(return_value=create_user("user-1"))

        response = client.get(
            "/v1/admin/credit-logs", headers={**api_headers, "X-Admin-ID": "user-1"}
        )

        assert response.status_code == 403

    def test_admin_lists_logs(self, client, api_headers, db_session: AsyncMock, admin_user):
        db_session.get = AsyncMock(return_value=admin_user)

        with patch("app.api.admin_routes.LedgerService") as MockService:
            MockService.return_value.list_transactions = AsyncMock(return_value=([], 0))

            response = client.get(
                "/v1/admin/credit-logs", headers={**api_headers, "X-Admin-ID": "admin-1"}
            )

        assert response.status_code == 200
        assert response.json()["total"] == 0
        assert response.json()["total_pages"] == 0
