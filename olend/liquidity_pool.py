"""
liquidity_pool.py - Per-asset pooled liquidity and share accounting

This module follows the pure function architecture used across olend:

1. FROZEN DATACLASSES:
   - PoolConfig: per-pool risk parameters (threshold, bonus, close factor)
   - Pool: immutable snapshot of a pool's totals; every operation returns a NEW Pool
   - PoolAccrual: result of bringing a pool up to date

2. PURE FUNCTIONS:
   - deposit / withdraw: mint and burn shares against the underlying
   - allocate_for_borrow / return_from_borrow: reserve and release liquidity
   - accrue: lazy interest accrual (exchange-rate growth)

Only market.py stores Pools and applies the wallet moves that go with them.

Key Formulas:
    shares minted   = amount * total_shares / total_deposits   (1:1 when empty)
    amount redeemed = shares * total_deposits / total_shares
    available       = total_deposits - total_borrowed

Every division truncates, so rounding always favors the pool and never the
depositor.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional

from .core import (
    SCALE, INDEX_SCALE,
    DEFAULT_CLOSE_FACTOR, DEFAULT_LIQUIDATION_BONUS, DEFAULT_LIQUIDATION_THRESHOLD,
    InputValidationError, ZeroAmount, PoolPaused,
    InsufficientLiquidity, InsufficientShares,
)
from .fixed_point import add, check_u64, mul_div, saturating_sub, sub
from .interest_rate import (
    InterestRateModel, InterestRateParams,
    accrued_interest, grow_index, utilization,
)


@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Per-pool risk parameters (8-decimal fixed point).

    Attributes:
        liquidation_threshold: Collateral weight used in the health factor
        liquidation_bonus: Extra collateral paid to liquidators seizing this asset
        close_factor: Max fraction of a position's debt repayable per liquidation
    """
    liquidation_threshold: int = DEFAULT_LIQUIDATION_THRESHOLD
    liquidation_bonus: int = DEFAULT_LIQUIDATION_BONUS
    close_factor: int = DEFAULT_CLOSE_FACTOR

    def __post_init__(self):
        if not 0 < self.liquidation_threshold <= SCALE:
            raise InputValidationError(
                f"liquidation_threshold must be in (0, {SCALE}], got {self.liquidation_threshold}"
            )
        if not 0 <= self.liquidation_bonus <= SCALE:
            raise InputValidationError(
                f"liquidation_bonus must be in [0, {SCALE}], got {self.liquidation_bonus}"
            )
        if not 0 < self.close_factor <= SCALE:
            raise InputValidationError(
                f"close_factor must be in (0, {SCALE}], got {self.close_factor}"
            )


@dataclass(frozen=True, slots=True)
class Pool:
    """
    Immutable snapshot of one asset's liquidity pool.

    Invariants (see pool_violations):
        total_shares == 0  <=>  total_deposits == 0
        0 <= total_borrowed <= total_deposits
    """
    asset: str
    decimals: int
    total_deposits: int
    total_shares: int
    total_borrowed: int
    borrow_index: int
    paused: bool
    last_interest_update: datetime
    rate_params: InterestRateParams
    config: PoolConfig

    @property
    def reserve_factor(self) -> int:
        return self.rate_params.reserve_factor

    @property
    def rate_model(self) -> InterestRateModel:
        return InterestRateModel(self.rate_params)

    def __repr__(self) -> str:
        return (
            f"Pool({self.asset}: deposits={self.total_deposits}, shares={self.total_shares}, "
            f"borrowed={self.total_borrowed}, paused={self.paused})"
        )


@dataclass(frozen=True, slots=True)
class PoolAccrual:
    """
    Result of accruing a pool.

    Attributes:
        pool: Pool after accrual
        interest: Interest added to total_borrowed and total_deposits
        reserve_shares: Shares minted to the pool's reserve wallet
        elapsed_seconds: Whole seconds charged
    """
    pool: Pool
    interest: int
    reserve_shares: int
    elapsed_seconds: int


# ============================================================================
# CREATION & VALIDATION
# ============================================================================

def create_pool(
    asset: str,
    decimals: int,
    rate_params: InterestRateParams,
    created_at: datetime,
    config: Optional[PoolConfig] = None,
) -> Pool:
    """
    Create an empty pool for an asset.

    Raises:
        InputValidationError: If asset is empty or decimals out of range.
    """
    if not asset or not asset.strip():
        raise InputValidationError("Pool asset cannot be empty")
    if decimals < 0 or decimals > 18:
        raise InputValidationError(f"decimals must be in [0, 18], got {decimals}")
    return Pool(
        asset=asset,
        decimals=decimals,
        total_deposits=0,
        total_shares=0,
        total_borrowed=0,
        borrow_index=INDEX_SCALE,
        paused=False,
        last_interest_update=created_at,
        rate_params=rate_params,
        config=config or PoolConfig(),
    )


def pool_violations(pool: Pool) -> List[str]:
    """Return a description of every broken pool invariant (empty if sound)."""
    problems = []
    if (pool.total_shares == 0) != (pool.total_deposits == 0):
        problems.append(
            f"{pool.asset}: total_shares={pool.total_shares} but total_deposits={pool.total_deposits}"
        )
    if pool.total_borrowed < 0:
        problems.append(f"{pool.asset}: negative total_borrowed {pool.total_borrowed}")
    if pool.total_borrowed > pool.total_deposits:
        problems.append(
            f"{pool.asset}: total_borrowed {pool.total_borrowed} > total_deposits {pool.total_deposits}"
        )
    return problems


# ============================================================================
# VIEWS
# ============================================================================

def available_liquidity(pool: Pool) -> int:
    """Underlying not lent out: total_deposits - total_borrowed."""
    return pool.total_deposits - pool.total_borrowed


def pool_utilization(pool: Pool) -> int:
    return utilization(pool.total_borrowed, pool.total_deposits)


def exchange_rate(pool: Pool) -> int:
    """Underlying per share in 8-decimal fixed point (1.0 for an empty pool)."""
    if pool.total_shares == 0:
        return SCALE
    return mul_div(pool.total_deposits, SCALE, pool.total_shares)


def shares_to_amount(pool: Pool, shares: int) -> int:
    """Underlying redeemable for shares (truncating)."""
    if shares == 0 or pool.total_shares == 0:
        return 0
    return mul_div(shares, pool.total_deposits, pool.total_shares)


def amount_to_shares(pool: Pool, amount: int) -> int:
    """Shares a deposit of amount would mint (truncating)."""
    if pool.total_shares == 0:
        return amount
    return mul_div(amount, pool.total_shares, pool.total_deposits)


# ============================================================================
# STATE TRANSITIONS
# ============================================================================

def deposit(pool: Pool, amount: int) -> tuple[Pool, int]:
    """
    Add liquidity and mint shares.

    Returns:
        (new_pool, shares_minted)

    Raises:
        ZeroAmount: If amount is zero or too small to mint a single share
        PoolPaused: If the pool is paused
    """
    if amount <= 0:
        raise ZeroAmount(f"deposit amount must be positive, got {amount}")
    if pool.paused:
        raise PoolPaused(f"pool {pool.asset} is paused")

    shares = amount_to_shares(pool, amount)
    if shares == 0:
        raise ZeroAmount(f"deposit of {amount} {pool.asset} mints zero shares")

    new_pool = replace(
        pool,
        total_deposits=add(pool.total_deposits, amount, "total_deposits"),
        total_shares=add(pool.total_shares, shares, "total_shares"),
    )
    return new_pool, shares


def withdraw(pool: Pool, shares: int) -> tuple[Pool, int]:
    """
    Burn shares and release the underlying they redeem for.

    Burning the last share redeems exactly total_deposits, so an emptied pool
    never keeps rounding dust.

    Returns:
        (new_pool, amount_released)

    Raises:
        ZeroAmount: If shares is zero or redeems for nothing
        PoolPaused: If the pool is paused
        InsufficientShares: If shares exceeds total_shares
        InsufficientLiquidity: If the amount exceeds available liquidity
    """
    if shares <= 0:
        raise ZeroAmount(f"withdraw shares must be positive, got {shares}")
    if pool.paused:
        raise PoolPaused(f"pool {pool.asset} is paused")
    if shares > pool.total_shares:
        raise InsufficientShares(
            f"cannot burn {shares} shares, pool {pool.asset} has {pool.total_shares}"
        )

    amount = shares_to_amount(pool, shares)
    if amount == 0:
        raise ZeroAmount(f"{shares} shares of {pool.asset} redeem for zero")

    available = available_liquidity(pool)
    if amount > available:
        raise InsufficientLiquidity(
            f"withdraw of {amount} {pool.asset} exceeds available liquidity {available}"
        )

    new_pool = replace(
        pool,
        total_deposits=sub(pool.total_deposits, amount, "total_deposits"),
        total_shares=sub(pool.total_shares, shares, "total_shares"),
    )
    return new_pool, amount


def allocate_for_borrow(pool: Pool, amount: int) -> Pool:
    """
    Reserve liquidity for a borrow.

    Raises:
        ZeroAmount: If amount is zero
        PoolPaused: If the pool is paused
        InsufficientLiquidity: If amount exceeds available liquidity
    """
    if amount <= 0:
        raise ZeroAmount(f"borrow amount must be positive, got {amount}")
    if pool.paused:
        raise PoolPaused(f"pool {pool.asset} is paused")
    available = available_liquidity(pool)
    if amount > available:
        raise InsufficientLiquidity(
            f"borrow of {amount} {pool.asset} exceeds available liquidity {available}"
        )
    return replace(pool, total_borrowed=pool.total_borrowed + amount)


def return_from_borrow(pool: Pool, amount: int) -> Pool:
    """
    Release liquidity when debt is repaid or liquidated.

    Saturates at zero: per-position debt is rounded up, so the sum repaid can
    exceed the pool total by rounding dust. Allowed on paused pools.
    """
    if amount <= 0:
        raise ZeroAmount(f"repay amount must be positive, got {amount}")
    return replace(pool, total_borrowed=saturating_sub(pool.total_borrowed, amount))


def set_paused(pool: Pool, paused: bool) -> Pool:
    return replace(pool, paused=paused)


def accrue(pool: Pool, now: datetime) -> PoolAccrual:
    """
    Bring a pool's interest up to now.

    PURE FUNCTION. No-op when now equals last_interest_update (or less than
    a whole second has passed), so accrual is idempotent per timestamp.

    Interest is charged on total_borrowed at the pre-accrual borrow rate and
    added to both total_borrowed and total_deposits; suppliers earn it through
    exchange-rate growth. The reserve-factor part is represented by shares
    minted to the reserve wallet at the post-accrual rate, so the suppliers'
    exchange rate rises by exactly the supply rate and no interest is counted
    twice.

    Raises:
        InputValidationError: If now is before last_interest_update
    """
    if now < pool.last_interest_update:
        raise InputValidationError(
            f"cannot accrue {pool.asset} backwards: {now} < {pool.last_interest_update}"
        )
    elapsed = int((now - pool.last_interest_update).total_seconds())
    if elapsed == 0:
        return PoolAccrual(pool=pool, interest=0, reserve_shares=0, elapsed_seconds=0)
    advanced_to = pool.last_interest_update + timedelta(seconds=elapsed)

    if pool.total_borrowed == 0:
        return PoolAccrual(
            pool=replace(pool, last_interest_update=advanced_to),
            interest=0, reserve_shares=0, elapsed_seconds=elapsed,
        )

    rate = pool.rate_model.borrow_rate(pool_utilization(pool))
    interest = accrued_interest(pool.total_borrowed, rate, elapsed)
    new_index = grow_index(pool.borrow_index, rate, elapsed)

    new_deposits = add(pool.total_deposits, interest, "total_deposits")
    new_borrowed = add(pool.total_borrowed, interest, "total_borrowed")

    reserve_shares = 0
    reserve_amount = mul_div(interest, pool.reserve_factor, SCALE)
    if reserve_amount > 0:
        reserve_shares = mul_div(reserve_amount, pool.total_shares, new_deposits - reserve_amount)

    new_pool = replace(
        pool,
        total_deposits=new_deposits,
        total_borrowed=new_borrowed,
        total_shares=check_u64(pool.total_shares + reserve_shares, "total_shares"),
        borrow_index=new_index,
        last_interest_update=advanced_to,
    )
    return PoolAccrual(
        pool=new_pool, interest=interest,
        reserve_shares=reserve_shares, elapsed_seconds=elapsed,
    )
