"""
conftest.py - Shared pytest fixtures for olend tests

Provides common fixtures used across unit, conformance and functional tests:
- Rate parameters and pool configurations
- Fake price collaborator
- Markets (empty, funded, with supplied liquidity, with an open position)
- State comparison utilities
"""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict

from olend import (
    Market,
    MarketConfig,
    InterestRateParams,
    Pool,
    PoolConfig,
    PriceGuard,
    PriceOracle,
    create_pool,
    SCALE,
)
from olend.position_ledger import borrow, open_position

from tests.fake_prices import FakePriceSource


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = datetime(2025, 1, 1)
ONE_YEAR = timedelta(days=365)

SUI_DECIMALS = 9
USDC_DECIMALS = 6
ONE_SUI = 10 ** SUI_DECIMALS
ONE_USDC = 10 ** USDC_DECIMALS

ONE_DOLLAR = SCALE

# base 2%, kink at 80%, slope1 10%, slope2 100%
DEFAULT_PARAMS = InterestRateParams(
    base_rate=2_000_000,
    optimal_utilization=80_000_000,
    slope1=10_000_000,
    slope2=100_000_000,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_market(
    prices: Dict[str, int] = None,
    params: InterestRateParams = DEFAULT_PARAMS,
    sui_config: PoolConfig = None,
    usdc_config: PoolConfig = None,
    config: MarketConfig = None,
) -> Market:
    """Market with SUI and USDC pools and wallets alice, bob and liquidator."""
    source = FakePriceSource(prices or {'SUI': ONE_DOLLAR, 'USDC': ONE_DOLLAR})
    market = Market("test", source, T0, config=config, verbose=False)
    market.create_pool("SUI", SUI_DECIMALS, params, sui_config)
    market.create_pool("USDC", USDC_DECIMALS, params, usdc_config)
    for wallet in ("alice", "bob", "liquidator"):
        market.register_wallet(wallet)
    return market


def fund_all(market: Market) -> Market:
    """Give alice SUI, and bob and the liquidator USDC."""
    market.fund("alice", "SUI", 1_000 * ONE_SUI)
    market.fund("bob", "USDC", 1_000_000 * ONE_USDC)
    market.fund("liquidator", "USDC", 1_000_000 * ONE_USDC)
    return market


def pool_with(
    asset: str,
    decimals: int,
    deposits: int = 0,
    shares: int = None,
    borrowed: int = 0,
    config: PoolConfig = None,
    params: InterestRateParams = DEFAULT_PARAMS,
) -> Pool:
    """Pool snapshot with the given totals (shares default to 1:1)."""
    pool = create_pool(asset, decimals, params, T0, config)
    return replace(
        pool,
        total_deposits=deposits,
        total_shares=deposits if shares is None else shares,
        total_borrowed=borrowed,
    )


def make_pools(usdc_config: PoolConfig = None) -> Dict[str, Pool]:
    """100 SUI and 1,000 USDC supplied, nothing borrowed."""
    return {
        'SUI': pool_with('SUI', SUI_DECIMALS, 100 * ONE_SUI),
        'USDC': pool_with('USDC', USDC_DECIMALS, 1_000 * ONE_USDC, config=usdc_config),
    }


def open_borrow(pools, oracle, sui=10 * ONE_SUI, usdc=7_500_000, position_id='pos-1'):
    """alice pledges sui shares and borrows usdc; returns (position, pools)."""
    position = open_position(position_id, 'alice', 'USDC', T0)
    result = borrow(position, pools, oracle, {'SUI': sui}, 'USDC', usdc, T0)
    return result.position, {**pools, 'USDC': result.pool}


def make_borrowed_market(**kwargs):
    """(market, position_id): alice pledged 10 SUI and borrowed 7.5 USDC."""
    market = fund_all(make_market(**kwargs))
    market.deposit("bob", "USDC", 1_000 * ONE_USDC)
    shares = market.deposit("alice", "SUI", 10 * ONE_SUI)
    position_id = market.borrow("alice", "USDC", 7_500_000, collateral={"SUI": shares})
    return market, position_id


def market_state(market: Market) -> Dict[str, Any]:
    """Everything an operation may change, in comparable form."""
    return {
        'pools': dict(market.pools),
        'positions': dict(market.positions),
        'balances': {
            w: {a: q for a, q in b.items() if q != 0}
            for w, b in market.balances.items()
        },
        'wallets': set(market.registered_wallets),
        'events': len(market.event_log),
        'operations': len(market.operation_log),
        'liquidations': len(market.liquidation_log),
    }


def assert_sound(market: Market) -> None:
    """Conservation holds and no structural invariant is broken."""
    conservation = market.verify_conservation()
    assert conservation['valid'], conservation['discrepancies']
    assert market.verify_invariants() == []


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def params():
    return DEFAULT_PARAMS


@pytest.fixture
def prices():
    return FakePriceSource({'SUI': ONE_DOLLAR, 'USDC': ONE_DOLLAR})


@pytest.fixture
def oracle(prices):
    return PriceOracle(prices, PriceGuard(), {'SUI': SUI_DECIMALS, 'USDC': USDC_DECIMALS})


@pytest.fixture
def pools():
    return make_pools()


@pytest.fixture
def borrowed_position(pools, oracle):
    """(position, pools): 10 SUI pledged, 7.5 USDC borrowed, health 1.0666..."""
    return open_borrow(pools, oracle)


@pytest.fixture
def market():
    """Pools and wallets, no balances."""
    return make_market()


@pytest.fixture
def funded_market():
    """Pools, wallets and funded balances, nothing supplied."""
    return fund_all(make_market())


@pytest.fixture
def liquid_market():
    """bob has supplied 1,000 USDC of liquidity."""
    market = fund_all(make_market())
    market.deposit("bob", "USDC", 1_000 * ONE_USDC)
    return market


@pytest.fixture
def borrowed_market():
    """
    alice pledged 10 SUI ($10) and borrowed 7.5 USDC ($7.50).

    health factor = 10 * 0.80 / 7.5 = 1.0666...
    """
    return make_borrowed_market()


@pytest.fixture
def strict_guard():
    return PriceGuard(max_age_seconds=60, max_confidence_ratio=2_000_000, max_deviation=10_000_000)
