"""
fixed_point.py - Exact integer fixed-point arithmetic

All rates, fractions and USD values in olend are 8-decimal fixed-point
integers (SCALE = 10**8 represents 1.0). Asset balances are integers in the
asset's native decimals.

Python integers never overflow, so the bounds of the original on-chain
representation are enforced explicitly:

    - stored quantities (balances, totals, shares) must fit in u64
    - intermediate products must fit in u128

Every helper multiplies before dividing and truncates toward zero unless
its name says otherwise (``*_up`` rounds up). Rounding direction is chosen
by the caller so that rounding always favors the pool.
"""

from __future__ import annotations

from .core import (
    SCALE, U64_MAX, U128_MAX,
    ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero,
)


def check_u64(value: int, what: str = "value") -> int:
    """Return value unchanged if it fits in u64, raise otherwise."""
    if value < 0:
        raise ArithmeticUnderflow(f"{what} underflow: {value} < 0")
    if value > U64_MAX:
        raise ArithmeticOverflow(f"{what} overflow: {value} > u64::MAX")
    return value


def check_u128(value: int, what: str = "intermediate") -> int:
    if value < 0:
        raise ArithmeticUnderflow(f"{what} underflow: {value} < 0")
    if value > U128_MAX:
        raise ArithmeticOverflow(f"{what} overflow: {value} > u128::MAX")
    return value


def add(a: int, b: int, what: str = "sum") -> int:
    return check_u64(a + b, what)


def sub(a: int, b: int, what: str = "difference") -> int:
    """Checked subtraction; a negative result is an underflow, never clamped."""
    if b > a:
        raise ArithmeticUnderflow(f"{what} underflow: {a} - {b}")
    return a - b


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


def mul_div(a: int, b: int, c: int) -> int:
    """
    Compute a * b / c with a u128 intermediate, truncating toward zero.

    Raises:
        DivisionByZero: if c == 0
        ArithmeticOverflow: if a * b exceeds u128
    """
    if c == 0:
        raise DivisionByZero(f"mul_div({a}, {b}, 0)")
    product = check_u128(a * b)
    return product // c


def mul_div_up(a: int, b: int, c: int) -> int:
    """Compute a * b / c rounding up."""
    if c == 0:
        raise DivisionByZero(f"mul_div_up({a}, {b}, 0)")
    product = check_u128(a * b)
    return -(-product // c)


def fmul(a: int, b: int) -> int:
    """Multiply two fixed-point values (a * b / SCALE)."""
    return mul_div(a, b, SCALE)


def fdiv(a: int, b: int) -> int:
    """Divide two fixed-point values (a * SCALE / b)."""
    return mul_div(a, SCALE, b)


def to_fixed(numerator: int, denominator: int = 1) -> int:
    """Express numerator / denominator as an 8-decimal fixed-point integer."""
    return mul_div(numerator, SCALE, denominator)


def pow10(decimals: int) -> int:
    if decimals < 0 or decimals > 38:
        raise ArithmeticOverflow(f"unsupported decimal precision: {decimals}")
    return 10 ** decimals
