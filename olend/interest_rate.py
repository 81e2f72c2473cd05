"""
interest_rate.py - Utilization-driven interest rate model

Piecewise linear (kinked) borrow-rate curve:

    u <= optimal:  borrow = base + u * slope1 / optimal
    u >  optimal:  borrow = base + slope1 + (u - optimal) * slope2 / (1 - optimal)
    supply = borrow * u * (1 - reserve_factor)

Every value is an 8-decimal fixed-point integer. Products are formed before
any division (u128 intermediates) and all divisions truncate toward zero.

Interest accrues lazily: at each interaction the elapsed seconds since the
last update are charged once with simple accretion, then the timestamp is
advanced. There is no continuous compounding between interactions.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict

import numpy as np

from .core import SCALE, SECONDS_PER_YEAR, InputValidationError
from .fixed_point import check_u128, check_u64, mul_div, mul_div_up


@dataclass(frozen=True, slots=True)
class InterestRateParams:
    """
    Parameters for the kinked rate curve (all 8-decimal fixed point).

    Attributes:
        base_rate: Borrow rate at zero utilization
        optimal_utilization: Kink point, in [0, SCALE]
        slope1: Rate added between zero and optimal utilization
        slope2: Rate added between optimal and full utilization
        reserve_factor: Fraction of borrow interest kept by the protocol, in [0, SCALE]
    """
    base_rate: int
    optimal_utilization: int
    slope1: int
    slope2: int
    reserve_factor: int = 0

    def __post_init__(self):
        for name in ('base_rate', 'optimal_utilization', 'slope1', 'slope2', 'reserve_factor'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InputValidationError(f"{name} must be an int fixed-point value, got {value!r}")
            if value < 0:
                raise InputValidationError(f"{name} cannot be negative, got {value}")
        if self.optimal_utilization > SCALE:
            raise InputValidationError(
                f"optimal_utilization must be in [0, {SCALE}], got {self.optimal_utilization}"
            )
        if self.reserve_factor > SCALE:
            raise InputValidationError(
                f"reserve_factor must be in [0, {SCALE}], got {self.reserve_factor}"
            )


def utilization(total_borrowed: int, total_deposits: int) -> int:
    """
    Fraction of deposits currently lent out, clamped to [0, SCALE].

    Returns 0 for an empty pool.
    """
    if total_deposits <= 0 or total_borrowed <= 0:
        return 0
    u = mul_div(total_borrowed, SCALE, total_deposits)
    return min(u, SCALE)


class InterestRateModel:
    """Kinked utilization curve. Stateless: every method is a pure function of its inputs."""

    def __init__(self, params: InterestRateParams) -> None:
        self.params = params

    def borrow_rate(self, u: int) -> int:
        """
        Annual borrow rate for utilization u.

        Args:
            u: Utilization in 8-decimal fixed point (clamped to [0, SCALE])

        Returns:
            Annual borrow rate in 8-decimal fixed point (may exceed SCALE)
        """
        p = self.params
        u = max(0, min(u, SCALE))

        if u <= p.optimal_utilization:
            if p.optimal_utilization == 0:
                return p.base_rate
            return p.base_rate + mul_div(u, p.slope1, p.optimal_utilization)

        excess = u - p.optimal_utilization
        return p.base_rate + p.slope1 + mul_div(excess, p.slope2, SCALE - p.optimal_utilization)

    def supply_rate(self, u: int) -> int:
        """
        Annual supply rate: borrow_rate * u * (1 - reserve_factor).

        The three-way product is formed before the single division.
        """
        u = max(0, min(u, SCALE))
        borrow = self.borrow_rate(u)
        product = check_u128(borrow * u)
        return mul_div(product, SCALE - self.params.reserve_factor, SCALE * SCALE)

    def rates(self, total_borrowed: int, total_deposits: int) -> Dict[str, int]:
        """Utilization plus borrow and supply rates for the given pool totals."""
        u = utilization(total_borrowed, total_deposits)
        return {
            'utilization': u,
            'borrow_rate': self.borrow_rate(u),
            'supply_rate': self.supply_rate(u),
        }

    def rate_curve(self, n_points: int = 101) -> Dict[str, np.ndarray]:
        """
        Sample the full curve for analysis and plotting.

        Returns:
            Dict of int64 arrays: utilization, borrow_rate, supply_rate
        """
        if n_points < 2:
            raise InputValidationError(f"n_points must be >= 2, got {n_points}")
        utilizations = np.linspace(0, SCALE, n_points).astype(np.int64)
        borrow_rates = np.array([self.borrow_rate(int(u)) for u in utilizations], dtype=np.int64)
        supply_rates = np.array([self.supply_rate(int(u)) for u in utilizations], dtype=np.int64)
        return {
            'utilization': utilizations,
            'borrow_rate': borrow_rates,
            'supply_rate': supply_rates,
        }

    def __repr__(self) -> str:
        p = self.params
        return (
            f"InterestRateModel(base={p.base_rate}, optimal={p.optimal_utilization}, "
            f"slope1={p.slope1}, slope2={p.slope2}, reserve_factor={p.reserve_factor})"
        )


# ============================================================================
# ACCRUAL
# ============================================================================

def accrued_interest(principal: int, annual_rate: int, elapsed_seconds: int) -> int:
    """
    Interest charged on principal for elapsed_seconds at an annual rate.

    PURE FUNCTION - simple accretion, truncating toward zero:
        interest = principal * annual_rate * elapsed / (SCALE * SECONDS_PER_YEAR)

    Returns 0 when nothing has elapsed or the principal or rate is zero.
    """
    if elapsed_seconds < 0:
        raise InputValidationError(f"elapsed_seconds cannot be negative, got {elapsed_seconds}")
    if principal == 0 or annual_rate == 0 or elapsed_seconds == 0:
        return 0
    rate_time = check_u128(annual_rate * elapsed_seconds)
    return mul_div(principal, rate_time, SCALE * SECONDS_PER_YEAR)


def compound_interest(principal: int, annual_rate: int, elapsed_seconds: int) -> int:
    """
    Principal after one lazy accrual step.

    annual_rate is the 8-decimal yearly rate (8_250_000 == 8.25%); the rate
    charged per second is annual_rate / SECONDS_PER_YEAR, applied as one
    multiplication before the division so short intervals keep precision.

    Interest is added exactly once per elapsed interval; callers advance
    their last-update timestamp afterwards so a repeated call at the same
    time accrues nothing.
    """
    return check_u64(principal + accrued_interest(principal, annual_rate, elapsed_seconds), "principal")


def grow_index(index: int, annual_rate: int, elapsed_seconds: int) -> int:
    """Advance a borrow index by the same simple accretion as the pool totals."""
    if elapsed_seconds <= 0 or annual_rate == 0:
        return index
    rate_time = check_u128(annual_rate * elapsed_seconds)
    return index + mul_div(index, rate_time, SCALE * SECONDS_PER_YEAR)


def debt_at_index(principal: int, entry_index: int, current_index: int) -> int:
    """
    Debt owed today on a principal recorded at entry_index.

    Rounds up, so a borrower never owes less than the pool has charged.
    """
    if principal == 0:
        return 0
    return check_u64(mul_div_up(principal, current_index, entry_index), "debt")
