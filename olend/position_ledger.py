"""
position_ledger.py - Per-borrower collateral and debt

Follows the same pure function architecture as liquidity_pool.py:

1. FROZEN DATACLASSES:
   - DebtEntry: principal recorded against a pool borrow index
   - Position: one borrower's pledged shares and debts
   - BorrowResult / RepayResult: new states produced by an operation

2. PURE FUNCTIONS:
   - open_position: empty position for a borrower
   - accrue: bring every debt entry up to its pool's borrow index
   - borrow: pledge collateral and draw liquidity, health checked post-borrow
   - repay: pay down debt, reporting any excess back to the caller
   - release_collateral: unpledge shares while health stays >= 1.0

Debt accounting uses the pool borrow index:

    debt = ceil(principal * pool.borrow_index / entry.index)

Every function accrues first, so debt is always priced at the pool's current
index before any state is changed.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from .core import (
    SCALE, PositionStatus,
    InputValidationError, ZeroAmount, PoolNotFound,
    SelfCollateralization, InsufficientCollateral, NoDebt,
    BorrowCapacityExceeded,
)
from .fixed_point import check_u64
from .health import HealthSnapshot, debt_amounts, evaluate
from .interest_rate import debt_at_index
from .liquidity_pool import Pool, allocate_for_borrow, pool_utilization, return_from_borrow
from .price_source import PriceOracle


@dataclass(frozen=True, slots=True)
class DebtEntry:
    """
    Debt in one asset.

    Attributes:
        principal: Amount owed as of index
        index: Pool borrow index when principal was last updated
    """
    principal: int
    index: int


@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of one borrower's position.

    Collateral is expressed in pool shares keyed by collateral asset; debts are
    keyed by borrowed asset. No asset may appear on both sides.
    """
    position_id: str
    borrower: str
    pool_id: str
    collateral: Dict[str, int] = field(default_factory=dict)
    debts: Dict[str, DebtEntry] = field(default_factory=dict)
    interest_rate: int = 0
    last_interest_update: Optional[datetime] = None
    created_at: Optional[datetime] = None
    status: PositionStatus = PositionStatus.HEALTHY

    def __repr__(self) -> str:
        principals = {asset: entry.principal for asset, entry in self.debts.items()}
        return (
            f"Position({self.position_id} of {self.borrower}: "
            f"collateral={self.collateral}, debts={principals}, "
            f"status={self.status.value})"
        )


@dataclass(frozen=True, slots=True)
class BorrowResult:
    position: Position
    pool: Pool
    health: HealthSnapshot


@dataclass(frozen=True, slots=True)
class RepayResult:
    """
    Attributes:
        position: Position after repayment
        pool: Debt pool after the repaid liquidity is returned
        repaid: Amount actually applied to the debt
        excess: Part of the requested amount beyond the debt, left with the caller
    """
    position: Position
    pool: Pool
    repaid: int
    excess: int


def _pool(pools: Mapping[str, Pool], asset: str) -> Pool:
    if asset not in pools:
        raise PoolNotFound(f"no pool for {asset}")
    return pools[asset]


def open_position(position_id: str, borrower: str, pool_id: str, now: datetime) -> Position:
    """Create an empty position. pool_id is the pool of the first borrowed asset."""
    if not borrower or not borrower.strip():
        raise InputValidationError("Position borrower cannot be empty")
    return Position(
        position_id=position_id,
        borrower=borrower,
        pool_id=pool_id,
        last_interest_update=now,
        created_at=now,
    )


def current_debt(position: Position, pools: Mapping[str, Pool], asset: str) -> int:
    entry = position.debts.get(asset)
    if entry is None:
        return 0
    return debt_at_index(entry.principal, entry.index, _pool(pools, asset).borrow_index)


def has_debt(position: Position) -> bool:
    return any(entry.principal > 0 for entry in position.debts.values())


def is_closable(position: Position) -> bool:
    """True when the position holds neither debt nor collateral and can be deleted."""
    return not has_debt(position) and not any(position.collateral.values())


def position_violations(position: Position) -> List[str]:
    problems = []
    overlap = set(position.collateral) & set(position.debts)
    if overlap:
        problems.append(f"{position.position_id}: self-collateralized in {sorted(overlap)}")
    for asset, entry in position.debts.items():
        if entry.principal < 0:
            problems.append(f"{position.position_id}: negative debt {entry.principal} {asset}")
    for asset, shares in position.collateral.items():
        if shares < 0:
            problems.append(f"{position.position_id}: negative collateral {shares} y{asset}")
    return problems


def accrue(position: Position, pools: Mapping[str, Pool], now: datetime) -> Position:
    """
    Re-express every debt entry at its pool's current borrow index.

    The pools must already be accrued to now. No-op when now equals
    last_interest_update, so repeated calls within one operation never
    charge twice.

    Raises:
        InputValidationError: If now is before last_interest_update
    """
    if position.last_interest_update is not None:
        if now < position.last_interest_update:
            raise InputValidationError(
                f"cannot accrue {position.position_id} backwards: {now} < {position.last_interest_update}"
            )
        if now == position.last_interest_update:
            return position

    debts = {}
    for asset, amount in debt_amounts(position, pools).items():
        debts[asset] = DebtEntry(principal=amount, index=_pool(pools, asset).borrow_index)

    rate = position.interest_rate
    if position.pool_id in pools:
        primary = pools[position.pool_id]
        rate = primary.rate_model.borrow_rate(pool_utilization(primary))

    return replace(position, debts=debts, interest_rate=rate, last_interest_update=now)


def borrow(
    position: Position,
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    collateral_delta: Mapping[str, int],
    debt_asset: str,
    amount: int,
    now: datetime,
) -> BorrowResult:
    """
    Pledge collateral and borrow against it.

    Capacity is computed on the pre-borrow collateral plus collateral_delta;
    the borrow is accepted only if the post-borrow health factor is >= 1.0.

    Args:
        collateral_delta: Asset -> shares newly pledged (may be empty)
        debt_asset: Asset to borrow
        amount: Native units to borrow

    Returns:
        BorrowResult with the new position, the new debt pool and post-borrow health

    Raises:
        ZeroAmount: amount or a collateral delta is not positive
        PoolNotFound: an asset has no pool
        SelfCollateralization: an asset would be both collateral and debt
        PoolPaused / InsufficientLiquidity: from the debt pool
        BorrowCapacityExceeded: post-borrow health factor below 1.0
    """
    if amount <= 0:
        raise ZeroAmount(f"borrow amount must be positive, got {amount}")
    debt_pool = _pool(pools, debt_asset)
    for asset, shares in collateral_delta.items():
        _pool(pools, asset)
        if shares <= 0:
            raise ZeroAmount(f"collateral delta for {asset} must be positive, got {shares}")
        if asset == debt_asset or asset in position.debts:
            raise SelfCollateralization(f"{asset} cannot be both collateral and debt")
    if debt_asset in position.collateral:
        raise SelfCollateralization(f"{debt_asset} is already pledged as collateral")

    position = accrue(position, pools, now)

    collateral = dict(position.collateral)
    for asset, shares in collateral_delta.items():
        collateral[asset] = check_u64(collateral.get(asset, 0) + shares, "collateral")

    new_pool = allocate_for_borrow(debt_pool, amount)
    owed = current_debt(position, pools, debt_asset)
    debts = dict(position.debts)
    debts[debt_asset] = DebtEntry(
        principal=check_u64(owed + amount, "debt"),
        index=new_pool.borrow_index,
    )

    projected_pools = dict(pools)
    projected_pools[debt_asset] = new_pool
    projected = replace(position, collateral=collateral, debts=debts)
    snapshot = evaluate(projected, projected_pools, oracle, now)
    if snapshot.health_factor < SCALE:
        raise BorrowCapacityExceeded(
            f"borrow of {amount} {debt_asset} would leave health factor {snapshot.health_factor} < {SCALE}"
        )

    projected = replace(projected, status=PositionStatus.HEALTHY)
    return BorrowResult(position=projected, pool=new_pool, health=snapshot)


def repay(
    position: Position,
    pools: Mapping[str, Pool],
    asset: str,
    amount: int,
    now: datetime,
) -> RepayResult:
    """
    Repay debt in one asset.

    repaid = min(amount, debt); the remainder is reported as excess and is
    never absorbed by the pool. Allowed on paused pools.

    Raises:
        ZeroAmount: amount is not positive
        NoDebt: the position owes nothing in asset
    """
    if amount <= 0:
        raise ZeroAmount(f"repay amount must be positive, got {amount}")
    if asset not in position.debts:
        raise NoDebt(f"{position.position_id} has no {asset} debt")

    position = accrue(position, pools, now)
    owed = current_debt(position, pools, asset)
    if owed == 0:
        raise NoDebt(f"{position.position_id} has no {asset} debt")

    repaid = min(amount, owed)
    excess = amount - repaid

    debts = dict(position.debts)
    remaining = owed - repaid
    if remaining == 0:
        del debts[asset]
    else:
        debts[asset] = DebtEntry(principal=remaining, index=_pool(pools, asset).borrow_index)

    new_pool = return_from_borrow(_pool(pools, asset), repaid)
    status = position.status if debts else PositionStatus.HEALTHY
    return RepayResult(
        position=replace(position, debts=debts, status=status),
        pool=new_pool,
        repaid=repaid,
        excess=excess,
    )


def release_collateral(
    position: Position,
    pools: Mapping[str, Pool],
    oracle: PriceOracle,
    asset: str,
    shares: int,
    now: datetime,
) -> Position:
    """
    Unpledge collateral shares.

    With no debt outstanding the release needs no prices. Otherwise the
    projected health factor after the release must remain >= 1.0.

    Raises:
        ZeroAmount: shares is not positive
        InsufficientCollateral: more shares than pledged, or health would fall below 1.0
    """
    if shares <= 0:
        raise ZeroAmount(f"release shares must be positive, got {shares}")
    held = position.collateral.get(asset, 0)
    if shares > held:
        raise InsufficientCollateral(
            f"{position.position_id} holds {held} y{asset}, cannot release {shares}"
        )

    position = accrue(position, pools, now)

    collateral = dict(position.collateral)
    if shares == held:
        del collateral[asset]
    else:
        collateral[asset] = held - shares
    released = replace(position, collateral=collateral)

    if has_debt(released):
        snapshot = evaluate(released, pools, oracle, now)
        if snapshot.health_factor < SCALE:
            raise InsufficientCollateral(
                f"releasing {shares} y{asset} would leave health factor {snapshot.health_factor} < {SCALE}"
            )
    return released
