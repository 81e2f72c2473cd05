"""
test_health.py - Unit tests for the solvency engine

Tests:
- Single-collateral health factor (10 SUI @ $1 vs 7.5 USDC -> 1.0666...)
- Price drop into liquidation range
- Zero debt reports the sentinel maximum
- Multi-collateral weighting by per-pool thresholds
- Exchange-rate conversion of collateral shares
- Borrow index growth of debt
- Liquidation price and remaining borrow capacity
"""

import pytest
from dataclasses import replace
from datetime import timedelta

from olend import (
    SCALE, INDEX_SCALE, MAX_HEALTH_FACTOR,
    PoolConfig, PriceGuard, PriceOracle, DebtEntry, Position,
    calculate_health_factor, evaluate, is_liquidatable,
    OraclePriceStale, PoolNotFound,
)
from olend.health import evaluate_balances, debt_amounts, max_borrowable_usd, liquidation_price
from tests.conftest import T0, ONE_SUI, ONE_USDC, pool_with, make_pools


def position(collateral=None, debts=None):
    return Position(
        position_id='pos-1',
        borrower='alice',
        pool_id='USDC',
        collateral=collateral if collateral is not None else {'SUI': 10 * ONE_SUI},
        debts=debts if debts is not None else {'USDC': DebtEntry(7_500_000, INDEX_SCALE)},
    )


class TestCalculateHealthFactor:

    def test_worked_example(self):
        assert calculate_health_factor(1_000_000_000, 80_000_000, 750_000_000) == 106_666_666

    def test_no_debt_is_max(self):
        assert calculate_health_factor(1_000_000_000, 80_000_000, 0) == MAX_HEALTH_FACTOR

    def test_boundary(self):
        assert calculate_health_factor(1_000_000_000, 80_000_000, 800_000_000) == SCALE


class TestEvaluate:

    def test_healthy_position(self, pools, oracle):
        snapshot = evaluate(position(), pools, oracle, T0)
        assert snapshot.collateral_value_usd == 1_000_000_000
        assert snapshot.risk_adjusted_collateral_usd == 800_000_000
        assert snapshot.debt_value_usd == 750_000_000
        assert snapshot.health_factor == 106_666_666
        assert not is_liquidatable(snapshot)

    def test_debt_price_rise_makes_liquidatable(self, pools, oracle, prices):
        prices.set('USDC', 120_000_000)
        snapshot = evaluate(position(), pools, oracle, T0)
        assert snapshot.debt_value_usd == 900_000_000
        assert snapshot.health_factor == 88_888_888
        assert is_liquidatable(snapshot)

    def test_no_debt(self, pools, oracle):
        snapshot = evaluate(position(debts={}), pools, oracle, T0)
        assert snapshot.health_factor == MAX_HEALTH_FACTOR
        assert not snapshot.has_debt
        assert not is_liquidatable(snapshot)

    def test_no_debt_ignores_stale_collateral_price(self, pools, oracle, prices):
        prices.set('SUI', SCALE, timestamp=T0 - timedelta(days=30))
        snapshot = evaluate(position(debts={}), pools, oracle, T0)
        assert snapshot.health_factor == MAX_HEALTH_FACTOR
        assert snapshot.collateral_value_usd == 0

    def test_debt_price_checked_first(self, pools, oracle, prices):
        prices.remove('SUI')
        prices.set('USDC', SCALE, timestamp=T0 - timedelta(hours=1))
        with pytest.raises(OraclePriceStale):
            evaluate(position(), pools, oracle, T0)

    def test_no_collateral_with_debt(self, pools, oracle):
        snapshot = evaluate(position(collateral={}), pools, oracle, T0)
        assert snapshot.health_factor == 0
        assert is_liquidatable(snapshot)

    def test_multi_collateral_uses_each_threshold(self, prices):
        prices.set('ETH', 2_000_000_000)
        pools = {
            **make_pools(),
            'ETH': pool_with('ETH', 18, 10 ** 18, config=PoolConfig(liquidation_threshold=50_000_000)),
        }
        oracle = PriceOracle(prices, PriceGuard(), {'SUI': 9, 'USDC': 6, 'ETH': 18})
        snapshot = evaluate_balances(
            {'SUI': 10 * ONE_SUI, 'ETH': 10 ** 18}, {'USDC': 9 * ONE_USDC}, pools, oracle, T0,
        )
        # (10 * 0.80 + 20 * 0.50) / 9 = 2.0
        assert snapshot.collateral_value_usd == 3_000_000_000
        assert snapshot.health_factor == 2 * SCALE

    def test_collateral_shares_use_exchange_rate(self, oracle):
        pools = {
            'SUI': pool_with('SUI', 9, 20 * ONE_SUI, shares=10 * ONE_SUI),
            'USDC': pool_with('USDC', 6, 1_000 * ONE_USDC),
        }
        snapshot = evaluate(position(), pools, oracle, T0)
        assert snapshot.collateral_value_usd == 2_000_000_000

    def test_debt_grows_with_borrow_index(self, pools, oracle):
        grown = {**pools, 'USDC': replace(pools['USDC'], borrow_index=2 * INDEX_SCALE)}
        assert debt_amounts(position(), grown) == {'USDC': 15_000_000}

    def test_stale_price_propagates(self, pools, oracle, prices):
        prices.set('SUI', SCALE, timestamp=T0 - timedelta(hours=1))
        with pytest.raises(OraclePriceStale):
            evaluate(position(), pools, oracle, T0)

    def test_unknown_pool(self, pools, oracle):
        with pytest.raises(PoolNotFound):
            evaluate(position(collateral={'ETH': 1}), pools, oracle, T0)


class TestDerivedViews:

    def test_max_borrowable(self, pools, oracle):
        assert max_borrowable_usd(position(), pools, oracle, T0) == 50_000_000

    def test_max_borrowable_never_negative(self, pools, oracle, prices):
        prices.set('USDC', 120_000_000)
        assert max_borrowable_usd(position(), pools, oracle, T0) == 0

    def test_max_borrowable_without_debt_prices_collateral(self, pools, oracle):
        assert max_borrowable_usd(position(debts={}), pools, oracle, T0) == 800_000_000

    def test_liquidation_price(self, pools, oracle):
        # 10 SUI * p * 0.80 = $7.50  ->  p = $0.9375
        assert liquidation_price(position(), pools, oracle, 'SUI', T0) == 93_750_000

    def test_liquidation_price_without_debt(self, pools, oracle):
        assert liquidation_price(position(debts={}), pools, oracle, 'SUI', T0) is None

    def test_liquidation_price_unheld_asset(self, pools, oracle):
        assert liquidation_price(position(), pools, oracle, 'USDC', T0) is None
