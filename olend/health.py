"""
health.py - Solvency evaluation

PURE FUNCTIONS. Nothing here mutates a position or a pool; the engine reads
frozen snapshots plus prices and returns a derived HealthSnapshot.

    health_factor = sum(collateral_usd_i * liquidation_threshold_i) / debt_usd

With a single collateral asset this is exactly

    collateral_usd * liquidation_threshold / debt_usd

The weighted sum is formed in full before the one division, so the result is
truncated once. A position with no debt reports MAX_HEALTH_FACTOR and can
never be liquidated.

Collateral is held as pool shares and converted to underlying through the
collateral pool's exchange rate before it is priced.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Tuple

from .core import SCALE, MAX_HEALTH_FACTOR, PoolNotFound
from .fixed_point import check_u128, mul_div, pow10, saturating_sub
from .interest_rate import debt_at_index
from .liquidity_pool import Pool, shares_to_amount
from .price_source import PriceOracle

if TYPE_CHECKING:
    from .position_ledger import Position


@dataclass(frozen=True, slots=True)
class HealthSnapshot:
    """
    Derived solvency view of a position (never stored).

    Attributes:
        collateral_value_usd: Market value of all collateral (8-decimal USD)
        risk_adjusted_collateral_usd: Sum of value_i * liquidation_threshold_i
        debt_value_usd: Market value of all debt (8-decimal USD)
        health_factor: 8-decimal ratio; < SCALE means liquidatable
    """
    collateral_value_usd: int
    risk_adjusted_collateral_usd: int
    debt_value_usd: int
    health_factor: int

    @property
    def has_debt(self) -> bool:
        return self.debt_value_usd > 0


def calculate_health_factor(collateral_usd: int, liquidation_threshold: int, debt_usd: int) -> int:
    """
    Health factor for a single collateral value.

    Example:
        >>> calculate_health_factor(1_000_000_000, 80_000_000, 750_000_000)
        106666666
    """
    if debt_usd == 0:
        return MAX_HEALTH_FACTOR
    return min(mul_div(collateral_usd, liquidation_threshold, debt_usd), MAX_HEALTH_FACTOR)


def _pool(pools: Mapping[str, Pool], asset: str) -> Pool:
    if asset not in pools:
        raise PoolNotFound(f"no pool for {asset}")
    return pools[asset]


def debt_amounts(position: Position, pools: Mapping[str, Pool]) -> Dict[str, int]:
    """Current debt per asset, grown to each pool's borrow index."""
    debts = {}
    for asset, entry in position.debts.items():
        pool = _pool(pools, asset)
        debts[asset] = debt_at_index(entry.principal, entry.index, pool.borrow_index)
    return debts


def collateral_value(
    collateral: Mapping[str, int],
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    now: datetime,
) -> Tuple[int, int]:
    """
    Market value of pledged shares.

    Returns:
        (collateral_usd, weighted) where weighted is the sum of
        value_i * liquidation_threshold_i, still scaled by SCALE
    """
    collateral_usd = 0
    weighted = 0
    for asset in sorted(collateral):
        shares = collateral[asset]
        if shares == 0:
            continue
        pool = _pool(pools, asset)
        value = oracle.get_usd_value(asset, shares_to_amount(pool, shares), now)
        collateral_usd += value
        weighted += check_u128(value * pool.config.liquidation_threshold)
    return collateral_usd, weighted


def debt_value(debts: Mapping[str, int], oracle: PriceOracle, now: datetime) -> int:
    """USD value of debts in native units. Zero entries are not priced."""
    debt_usd = 0
    for asset in sorted(debts):
        if debts[asset] == 0:
            continue
        debt_usd += oracle.get_usd_value(asset, debts[asset], now)
    return debt_usd


def evaluate_balances(
    collateral: Mapping[str, int],
    debts: Mapping[str, int],
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    now: datetime,
) -> HealthSnapshot:
    """
    Health of an arbitrary collateral/debt mix.

    Debts are priced first. With no debt the snapshot reports
    MAX_HEALTH_FACTOR without pricing any collateral, so a stale collateral
    quote never blocks a debt-free position. Its collateral fields are 0.

    Args:
        collateral: Asset -> pool shares pledged
        debts: Asset -> debt in native units
        pools: Asset -> Pool (for exchange rates and thresholds)
        oracle: Guarded price lookup
        now: Market time used for price freshness

    Raises:
        PoolNotFound: If an asset has no pool
        OraclePriceStale / PriceFeedMissing / PriceDeviationExceeded: On a bad
            quote for a debt asset, or for collateral when debt is nonzero
    """
    debt_usd = debt_value(debts, oracle, now)
    if debt_usd == 0:
        return HealthSnapshot(
            collateral_value_usd=0,
            risk_adjusted_collateral_usd=0,
            debt_value_usd=0,
            health_factor=MAX_HEALTH_FACTOR,
        )

    collateral_usd, weighted = collateral_value(collateral, pools, oracle, now)
    health_factor = min(check_u128(weighted) // debt_usd, MAX_HEALTH_FACTOR)

    return HealthSnapshot(
        collateral_value_usd=collateral_usd,
        risk_adjusted_collateral_usd=weighted // SCALE,
        debt_value_usd=debt_usd,
        health_factor=health_factor,
    )


def evaluate(position: Position, pools: Mapping[str, Pool], oracle: PriceOracle, now: datetime) -> HealthSnapshot:
    """Health of a position at now, with debt grown to each pool's borrow index."""
    return evaluate_balances(position.collateral, debt_amounts(position, pools), pools, oracle, now)


def is_liquidatable(snapshot: HealthSnapshot) -> bool:
    return snapshot.has_debt and snapshot.health_factor < SCALE


def max_borrowable_usd(position: Position, pools: Mapping[str, Pool], oracle: PriceOracle, now: datetime) -> int:
    """
    Additional debt (USD) the position could take on before health falls below 1.0.

    Unlike evaluate, this always prices the collateral.
    """
    _, weighted = collateral_value(position.collateral, pools, oracle, now)
    debt_usd = debt_value(debt_amounts(position, pools), oracle, now)
    return saturating_sub(weighted // SCALE, debt_usd)


def liquidation_price(
    position: Position,
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    collateral_asset: str,
    now: datetime,
) -> Optional[int]:
    """
    Price of collateral_asset at which the position's health reaches exactly 1.0.

    Every other price is held at its current quote. Returns None when the
    position has no debt or holds none of collateral_asset, and 0 when the
    remaining collateral covers the debt on its own.
    """
    shares = position.collateral.get(collateral_asset, 0)
    if shares == 0 or not position.debts:
        return None

    snapshot = evaluate(position, pools, oracle, now)
    if not snapshot.has_debt:
        return None

    pool = _pool(pools, collateral_asset)
    amount = shares_to_amount(pool, shares)
    if amount == 0:
        return None

    others = {a: s for a, s in position.collateral.items() if a != collateral_asset}
    other_weighted = 0
    for asset, other_shares in others.items():
        other_pool = _pool(pools, asset)
        value = oracle.get_usd_value(asset, shares_to_amount(other_pool, other_shares), now)
        other_weighted += value * other_pool.config.liquidation_threshold

    shortfall = saturating_sub(snapshot.debt_value_usd * SCALE, other_weighted)
    if shortfall == 0:
        return 0
    return shortfall * pow10(pool.decimals) // (amount * pool.config.liquidation_threshold)
