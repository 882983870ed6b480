"""
Hypothesis Property-Based Tests for the ledger.

Balance invariants over arbitrary sequences of ledger operations.
"""

import pytest
from conftest import LedgerStore
from hypothesis import given, settings
from hypothesis import strategies as st

from app.exceptions import InsufficientCreditsError
from app.models.api import TransactionStatus
from app.models.domain import PrechargeIntent, SettlementIntent

# ============================================================================
# Hypothesis Strategies
# ============================================================================

balances = st.integers(min_value=0, max_value=10_000)
positive_amounts = st.integers(min_value=1, max_value=2_000)
costs = st.integers(min_value=0, max_value=2_000)


def intent(amount: int) -> PrechargeIntent:
    return PrechargeIntent(user_id="user-1", amount=amount, reason="chat.precharge")


# ============================================================================
# Properties
# ============================================================================


class TestNoOverdraft:
    """Successful precharges never sum beyond the starting balance."""

    @given(balances, st.lists(positive_amounts, min_size=1, max_size=20))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_precharges_never_exceed_balance(self, balance, amounts):
        store = LedgerStore()
        store.add_user("user-1", credits=balance)
        ledger = store.service()

        accepted = 0
        for amount in amounts:
            try:
                await ledger.precharge(intent(amount))
                accepted += amount
            except InsufficientCreditsError:
                pass

        assert accepted <= balance
        assert store.balance() == balance - accepted
        assert store.balance() >= 0


class TestRoundTrips:
    """Balance restoration properties."""

    @given(balances, positive_amounts)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_refund_restores_exact_balance(self, balance, amount):
        store = LedgerStore()
        store.add_user("user-1", credits=balance + amount)
        ledger = store.service()

        pending = await ledger.precharge(intent(amount))
        await ledger.refund(pending.transaction_id)

        assert store.balance() == balance + amount

    @given(balances, positive_amounts)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_failed_settlement_restores_exact_balance(self, balance, amount):
        store = LedgerStore()
        store.add_user("user-1", credits=balance + amount)
        ledger = store.service()

        pending = await ledger.precharge(intent(amount))
        await ledger.settle(
            SettlementIntent(
                transaction_id=pending.transaction_id,
                status=TransactionStatus.FAILED,
                actual_cost=0,
            )
        )

        assert store.balance() == balance + amount


class TestSettlementMath:
    """Settling with cost C leaves initial - C when the balance covers it."""

    @given(positive_amounts, costs, balances)
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_settled_balance_is_initial_minus_cost(self, amount, cost, headroom):
        initial = max(amount, cost) + headroom
        store = LedgerStore()
        store.add_user("user-1", credits=initial)
        ledger = store.service()

        pending = await ledger.precharge(intent(amount))
        settled = await ledger.settle(
            SettlementIntent(
                transaction_id=pending.transaction_id,
                status=TransactionStatus.SUCCESS,
                actual_cost=cost,
            )
        )

        assert store.balance() == initial - cost
        assert settled.delta == -cost

    @given(positive_amounts, costs)
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_settlement_never_goes_negative(self, amount, cost):
        store = LedgerStore()
        store.add_user("user-1", credits=amount)
        ledger = store.service()

        pending = await ledger.precharge(intent(amount))
        settled = await ledger.settle(
            SettlementIntent(
                transaction_id=pending.transaction_id,
                status=TransactionStatus.SUCCESS,
                actual_cost=cost,
            )
        )

        assert store.balance() >= 0
        collected = -settled.delta
        assert collected + settled.metadata.get("uncollected_credits", 0) == cost
        assert store.balance() == amount - collected

    @given(positive_amounts, costs, costs)
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_settle_twice_equals_settle_once(self, amount, first_cost, second_cost):
        store = LedgerStore()
        store.add_user("user-1", credits=amount + 2_000)
        ledger = store.service()

        pending = await ledger.precharge(intent(amount))
        await ledger.settle(
            SettlementIntent(pending.transaction_id, TransactionStatus.SUCCESS, first_cost)
        )
        after_first = store.balance()
        await ledger.settle(
            SettlementIntent(pending.transaction_id, TransactionStatus.SUCCESS, second_cost)
        )

        assert store.balance() == after_first
