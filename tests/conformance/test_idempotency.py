"""
Idempotency Conformance Tests

INVARIANT: Interest for an interval is charged exactly once.

    ∀ pool p, position q, time t:
        accrue(accrue(p, t), t) = accrue(p, t)
        accrue(accrue(q, t), t) = accrue(q, t)

Every operation accrues the pools it touches before acting, so two
operations at the same market time must not charge twice. Views accrue in
memory only, so reading never changes state. A committed session cannot be
committed again.
"""

import pytest
from dataclasses import replace
from datetime import timedelta
from hypothesis import given, settings
from hypothesis import strategies as st

from olend import InputValidationError
from olend import liquidity_pool, position_ledger
from tests.conftest import (
    T0, ONE_YEAR, ONE_SUI, ONE_USDC, DEFAULT_PARAMS,
    make_borrowed_market, market_state, pool_with,
)


def without_logs(state):
    return {k: v for k, v in state.items() if k not in ('operations', 'events')}


class TestAccrualIdempotency:

    @given(
        st.integers(min_value=1, max_value=10 ** 12),
        st.integers(min_value=0, max_value=100),
        st.integers(min_value=0, max_value=10 * 365 * 24 * 3600),
    )
    @settings(max_examples=200, deadline=None)
    def test_pool_accrual_twice_is_once(self, deposits, percent_borrowed, seconds):
        """PROPERTY: a second accrual to the same time is a no-op."""
        pool = pool_with('USDC', 6, deposits, borrowed=deposits * percent_borrowed // 100)
        now = T0 + timedelta(seconds=seconds)
        once = liquidity_pool.accrue(pool, now)
        twice = liquidity_pool.accrue(once.pool, now)
        assert twice.pool == once.pool
        assert twice.interest == 0
        assert twice.reserve_shares == 0

    def test_position_accrual_twice_is_once(self, borrowed_position):
        position, pools = borrowed_position
        later = T0 + ONE_YEAR
        pools = {a: liquidity_pool.accrue(p, later).pool for a, p in pools.items()}
        once = position_ledger.accrue(position, pools, later)
        assert once.debts['USDC'].principal > 7_500_000
        assert position_ledger.accrue(once, pools, later) is once

    def test_market_accrue_twice(self):
        market, position_id = make_borrowed_market()
        market.advance_time(T0 + ONE_YEAR)
        market.accrue()
        after_first = market_state(market)
        debt = market.debt_of(position_id, 'USDC')

        market.accrue()

        assert without_logs(market_state(market)) == without_logs(after_first)
        assert market.debt_of(position_id, 'USDC') == debt

    def test_operations_at_same_time_charge_once(self):
        """Two deposits in the same instant: only the first accrues interest."""
        market, _ = make_borrowed_market()
        market.advance_time(T0 + ONE_YEAR)
        market.deposit('bob', 'USDC', ONE_USDC)
        pool = market.get_pool('USDC')
        market.deposit('bob', 'USDC', ONE_USDC)
        again = market.get_pool('USDC')
        assert again.total_borrowed == pool.total_borrowed
        assert again.borrow_index == pool.borrow_index
        assert again.total_deposits == pool.total_deposits + ONE_USDC

    def test_reserve_minted_once(self):
        market, _ = make_borrowed_market(params=replace(DEFAULT_PARAMS, reserve_factor=10_000_000))
        market.advance_time(T0 + ONE_YEAR)
        market.accrue(asset='USDC')
        reserve = market.get_balance('reserve:USDC', 'yUSDC')
        assert reserve > 0
        market.accrue(asset='USDC')
        assert market.get_balance('reserve:USDC', 'yUSDC') == reserve


class TestViewsDoNotMutate:

    def test_repeated_views(self):
        market, position_id = make_borrowed_market()
        market.advance_time(T0 + ONE_YEAR)
        before = market_state(market)

        for _ in range(3):
            market.health(position_id)
            market.debt_of(position_id, 'USDC')
            market.exchange_rate('USDC')
            market.pool_rates('USDC')
            market.max_borrowable_usd(position_id)
            market.max_liquidatable_repay(position_id, 'USDC')

        assert market_state(market) == before
        assert market.get_pool('USDC').last_interest_update == T0


class TestSessionCommitOnce:

    def test_second_commit_rejected(self, liquid_market):
        session = liquid_market.session('alice').begin()
        claim = session.deposit('SUI', 10 * ONE_SUI)
        session.borrow('USDC', ONE_USDC, collateral=[claim])
        session.commit()
        after = market_state(liquid_market)

        with pytest.raises(InputValidationError):
            session.commit()
        with pytest.raises(InputValidationError):
            session.begin()
        assert market_state(liquid_market) == after
