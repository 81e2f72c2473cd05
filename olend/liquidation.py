"""
liquidation.py - Settlement of undercollateralized positions

PURE FUNCTIONS. The engine takes a frozen Position and the pools it touches
and returns a LiquidationOutcome describing the new states; market.py applies
the outcome and the wallet moves that go with it.

State machine (PositionStatus):

    HEALTHY -> LIQUIDATABLE            health_factor drops below 1.0
    LIQUIDATABLE -> PARTIALLY_LIQUIDATED
    PARTIALLY_LIQUIDATED -> LIQUIDATABLE | HEALTHY
    LIQUIDATABLE -> FULLY_LIQUIDATED -> CLOSED   remaining debt reaches zero

Settlement:

    repay_usd      <= close_factor * total_debt_usd
    seize_usd       = repay_usd * (1 + liquidation_bonus)
    seize_amount    = seize_usd * 10**decimals / collateral_price
    seize_shares    = amount_to_shares(seize_amount), clamped to the balance held

Clamping shrinks the liquidator's bonus; the debt repaid is never increased.
A partial liquidation must strictly raise the health factor.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Mapping

from .core import (
    SCALE, PositionStatus,
    ZeroAmount, PoolNotFound, NoDebt, InsufficientCollateral,
    PositionHealthy, ExceedsCloseFactor, LiquidationNotImproving,
)
from .fixed_point import mul_div, saturating_sub
from .health import HealthSnapshot, evaluate, is_liquidatable
from .liquidity_pool import Pool, amount_to_shares, return_from_borrow, shares_to_amount
from .position_ledger import DebtEntry, Position, accrue, current_debt
from .price_source import PriceOracle


@dataclass(frozen=True, slots=True)
class LiquidationRecord:
    """
    Append-only record of one liquidation call.

    Attributes:
        position_id: Liquidated position
        liquidator: Caller who repaid the debt
        debt_asset: Asset repaid
        collateral_asset: Asset seized
        collateral_seized: Shares of collateral_asset moved to the liquidator
        debt_repaid: Native units of debt_asset repaid
        bonus: USD value seized beyond the debt repaid (8-decimal)
        timestamp: Market time of the liquidation
        health_factor_before: Health factor that made the position eligible
        health_factor_after: Health factor after settlement (MAX when debt is gone)
    """
    position_id: str
    liquidator: str
    debt_asset: str
    collateral_asset: str
    collateral_seized: int
    debt_repaid: int
    bonus: int
    timestamp: datetime
    health_factor_before: int
    health_factor_after: int


@dataclass(frozen=True, slots=True)
class LiquidationOutcome:
    """
    New states produced by a liquidation.

    Attributes:
        position: Position after settlement (status CLOSED if fully liquidated)
        debt_pool: Debt pool with the repaid liquidity returned
        record: The LiquidationRecord to append
        returned_collateral: Shares handed back to the borrower on full liquidation
        before: Health snapshot before settlement
        after: Health snapshot after settlement
    """
    position: Position
    debt_pool: Pool
    record: LiquidationRecord
    returned_collateral: Dict[str, int]
    before: HealthSnapshot
    after: HealthSnapshot

    @property
    def closed(self) -> bool:
        return self.position.status == PositionStatus.CLOSED

    @property
    def transition(self) -> PositionStatus:
        """PARTIALLY_LIQUIDATED, or FULLY_LIQUIDATED when the debt reached zero."""
        return PositionStatus.FULLY_LIQUIDATED if self.closed else PositionStatus.PARTIALLY_LIQUIDATED


def classify(snapshot: HealthSnapshot) -> PositionStatus:
    """Live status of a position from its health snapshot."""
    return PositionStatus.LIQUIDATABLE if is_liquidatable(snapshot) else PositionStatus.HEALTHY


def _pool(pools: Mapping[str, Pool], asset: str) -> Pool:
    if asset not in pools:
        raise PoolNotFound(f"no pool for {asset}")
    return pools[asset]


def max_liquidatable_repay(
    position: Position,
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    debt_asset: str,
    now: datetime,
) -> int:
    """
    Largest repay_amount of debt_asset a single liquidation call would accept.

    Returns 0 when the position is not liquidatable.
    """
    position = accrue(position, pools, now)
    snapshot = evaluate(position, pools, oracle, now)
    if not is_liquidatable(snapshot):
        return 0
    debt_pool = _pool(pools, debt_asset)
    cap_usd = mul_div(snapshot.debt_value_usd, debt_pool.config.close_factor, SCALE)
    cap_amount = oracle.amount_for_usd(debt_asset, cap_usd, now)
    return min(cap_amount, current_debt(position, pools, debt_asset))


def liquidate(
    position: Position,
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    liquidator: str,
    debt_asset: str,
    collateral_asset: str,
    repay_amount: int,
    now: datetime,
) -> LiquidationOutcome:
    """
    Repay part of a position's debt in exchange for collateral plus a bonus.

    The pools must already be accrued to now. The close factor comes from the
    debt pool and the bonus from the collateral pool.

    Raises:
        ZeroAmount: repay_amount is not positive, or too small to seize any share
        NoDebt: no debt in debt_asset
        InsufficientCollateral: no collateral in collateral_asset
        PositionHealthy: health factor >= 1.0
        ExceedsCloseFactor: repay exceeds close_factor of the debt value, or the debt itself
        LiquidationNotImproving: a partial liquidation would not raise the health factor
    """
    if repay_amount <= 0:
        raise ZeroAmount(f"repay amount must be positive, got {repay_amount}")
    if debt_asset not in position.debts:
        raise NoDebt(f"{position.position_id} has no {debt_asset} debt")
    if position.collateral.get(collateral_asset, 0) == 0:
        raise InsufficientCollateral(f"{position.position_id} has no {collateral_asset} collateral")

    debt_pool = _pool(pools, debt_asset)
    collateral_pool = _pool(pools, collateral_asset)

    position = accrue(position, pools, now)
    before = evaluate(position, pools, oracle, now)
    if not is_liquidatable(before):
        raise PositionHealthy(
            f"{position.position_id} health factor {before.health_factor} >= {SCALE}"
        )

    owed = current_debt(position, pools, debt_asset)
    if repay_amount > owed:
        raise ExceedsCloseFactor(
            f"repay {repay_amount} {debt_asset} exceeds outstanding debt {owed}"
        )
    repay_usd = oracle.get_usd_value(debt_asset, repay_amount, now)
    max_repay_usd = mul_div(before.debt_value_usd, debt_pool.config.close_factor, SCALE)
    if repay_usd > max_repay_usd:
        raise ExceedsCloseFactor(
            f"repay worth {repay_usd} exceeds close factor limit {max_repay_usd}"
        )

    seize_usd = mul_div(repay_usd, SCALE + collateral_pool.config.liquidation_bonus, SCALE)
    seize_amount = oracle.amount_for_usd(collateral_asset, seize_usd, now)
    held = position.collateral[collateral_asset]
    seized_shares = min(amount_to_shares(collateral_pool, seize_amount), held)
    if seized_shares == 0:
        raise ZeroAmount(f"repay of {repay_amount} {debt_asset} seizes no {collateral_asset} collateral")

    seized_usd = oracle.get_usd_value(
        collateral_asset, shares_to_amount(collateral_pool, seized_shares), now
    )
    bonus = saturating_sub(seized_usd, repay_usd)

    collateral = dict(position.collateral)
    if seized_shares == held:
        del collateral[collateral_asset]
    else:
        collateral[collateral_asset] = held - seized_shares

    debts = dict(position.debts)
    remaining = owed - repay_amount
    if remaining == 0:
        del debts[debt_asset]
    else:
        debts[debt_asset] = DebtEntry(principal=remaining, index=debt_pool.borrow_index)

    new_debt_pool = return_from_borrow(debt_pool, repay_amount)
    settled_pools = dict(pools)
    settled_pools[debt_asset] = new_debt_pool
    settled = replace(position, collateral=collateral, debts=debts)

    returned: Dict[str, int] = {}
    if debts:
        after = evaluate(settled, settled_pools, oracle, now)
        if after.health_factor <= before.health_factor:
            raise LiquidationNotImproving(
                f"health factor would go from {before.health_factor} to {after.health_factor}"
            )
        settled = replace(settled, status=PositionStatus.PARTIALLY_LIQUIDATED)
    else:
        after = evaluate(settled, settled_pools, oracle, now)
        returned = {asset: shares for asset, shares in collateral.items() if shares > 0}
        settled = replace(settled, collateral={}, status=PositionStatus.CLOSED)

    record = LiquidationRecord(
        position_id=position.position_id,
        liquidator=liquidator,
        debt_asset=debt_asset,
        collateral_asset=collateral_asset,
        collateral_seized=seized_shares,
        debt_repaid=repay_amount,
        bonus=bonus,
        timestamp=now,
        health_factor_before=before.health_factor,
        health_factor_after=after.health_factor,
    )
    return LiquidationOutcome(
        position=settled,
        debt_pool=new_debt_pool,
        record=record,
        returned_collateral=returned,
        before=before,
        after=after,
    )
