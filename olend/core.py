"""
Core types and constants for the olend lending core.

This module provides the foundational data structures shared by every other module:
1. Constants: fixed-point scale, integer bounds, default risk parameters
2. Exceptions: LendingError and the structured error taxonomy
3. Immutable data structures: Asset, Move, events, Operation
4. Wallet naming helpers for pool, reserve and escrow wallets

Nothing in this module mutates state. The Market class (market.py) is the
only component that applies moves and replaces pool/position objects.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Tuple


# ============================================================================
# CONSTANTS
# ============================================================================

# 8-decimal fixed point: SCALE represents 1.0 for rates, fractions and USD.
FIXED_POINT_DECIMALS = 8
SCALE = 10 ** FIXED_POINT_DECIMALS

# Borrow index precision. Much finer than SCALE so per-second growth is
# never truncated to zero.
INDEX_SCALE = 10 ** 18

U64_MAX = 2 ** 64 - 1
U128_MAX = 2 ** 128 - 1

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Health factor reported for a position with no debt.
MAX_HEALTH_FACTOR = U64_MAX

# Default per-pool risk parameters (8-decimal fractions).
DEFAULT_CLOSE_FACTOR = 50_000_000            # 50%
DEFAULT_LIQUIDATION_BONUS = 5_000_000        # 5%
DEFAULT_LIQUIDATION_THRESHOLD = 80_000_000   # 80%

# Default price guard settings.
DEFAULT_MAX_PRICE_AGE_SECONDS = 60
DEFAULT_MAX_CONFIDENCE_RATIO = 2_000_000     # 2% of price
DEFAULT_MAX_PRICE_DEVIATION = 50_000_000     # 50% jump trips the breaker

# Reserved wallet for share issuance and external funding.
# The system wallet is exempt from balance validation and can go negative.
SYSTEM_WALLET = "system"

SHARE_PREFIX = "y"
POOL_WALLET_PREFIX = "pool:"
RESERVE_WALLET_PREFIX = "reserve:"
ESCROW_WALLET_PREFIX = "escrow:"

UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_SHARE = "SHARE"


def share_symbol(asset: str) -> str:
    """Symbol of the share (yToken) unit for a pool's underlying asset."""
    return f"{SHARE_PREFIX}{asset}"


def pool_wallet(asset: str) -> str:
    """Wallet holding a pool's available (unborrowed) underlying."""
    return f"{POOL_WALLET_PREFIX}{asset}"


def reserve_wallet(asset: str) -> str:
    """Wallet receiving the reserve-factor share of accrued interest."""
    return f"{RESERVE_WALLET_PREFIX}{asset}"


def escrow_wallet(position_id: str) -> str:
    """Wallet holding the collateral shares pledged to a position."""
    return f"{ESCROW_WALLET_PREFIX}{position_id}"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ErrorKind(Enum):
    """
    Top-level classification of every error the core can raise.

    Callers branch on ``error.kind`` rather than on concrete classes when they
    only need to know which layer rejected the operation.
    """
    INPUT_VALIDATION = "input_validation"
    LIQUIDITY = "liquidity"
    COLLATERAL = "collateral"
    HEALTH = "health"
    ORACLE = "oracle"
    MATH = "math"


class LendingError(Exception):
    """
    Base exception for all lending-core errors.

    Every raised error aborts the enclosing operation; the Market restores
    its pre-operation snapshot before the error reaches the caller.

    Attributes:
        kind: ErrorKind classification
        code: Stable machine-readable error code (class-specific)
    """
    kind: ErrorKind = ErrorKind.INPUT_VALIDATION
    code: str = "LENDING_ERROR"


# --- Input validation --------------------------------------------------------

class InputValidationError(LendingError, ValueError):
    """Raised for malformed input: zero amounts, bad parameters, unknown ids."""
    kind = ErrorKind.INPUT_VALIDATION
    code = "INVALID_INPUT"


class ZeroAmount(InputValidationError):
    code = "ZERO_AMOUNT"


class Unauthorized(InputValidationError):
    """Raised when the caller is neither the position owner nor an authorized liquidator."""
    code = "UNAUTHORIZED"


class PoolNotFound(InputValidationError):
    code = "POOL_NOT_FOUND"


class PositionNotFound(InputValidationError):
    code = "POSITION_NOT_FOUND"


class WalletNotRegistered(InputValidationError):
    code = "WALLET_NOT_REGISTERED"


class ShareBalanceConsumed(InputValidationError):
    """Raised when a ShareBalance handle is used after it has been moved."""
    code = "SHARE_BALANCE_CONSUMED"


class UnconsumedShareBalance(InputValidationError):
    """Raised when a session is committed with a deposited claim still unassigned."""
    code = "UNCONSUMED_SHARE_BALANCE"


# --- Liquidity ---------------------------------------------------------------

class LiquidityError(LendingError):
    kind = ErrorKind.LIQUIDITY
    code = "LIQUIDITY_ERROR"


class InsufficientLiquidity(LiquidityError):
    """Raised when a withdrawal or borrow exceeds total_deposits - total_borrowed."""
    code = "INSUFFICIENT_LIQUIDITY"


class InsufficientShares(LiquidityError):
    code = "INSUFFICIENT_SHARES"


class InsufficientBalance(LiquidityError):
    """Raised when a move would take a wallet balance below zero."""
    code = "INSUFFICIENT_BALANCE"


class PoolPaused(LiquidityError):
    code = "POOL_PAUSED"


# --- Collateral --------------------------------------------------------------

class CollateralError(LendingError):
    kind = ErrorKind.COLLATERAL
    code = "COLLATERAL_ERROR"


class SelfCollateralization(CollateralError):
    """Raised when an asset would be both collateral and debt of one position."""
    code = "SELF_COLLATERALIZATION"


class InsufficientCollateral(CollateralError):
    code = "INSUFFICIENT_COLLATERAL"


class NoDebt(CollateralError):
    code = "NO_DEBT"


# --- Health ------------------------------------------------------------------

class HealthError(LendingError):
    kind = ErrorKind.HEALTH
    code = "HEALTH_ERROR"


class BorrowCapacityExceeded(HealthError):
    code = "BORROW_CAPACITY_EXCEEDED"


class PositionHealthy(HealthError):
    code = "POSITION_HEALTHY"


class ExceedsCloseFactor(HealthError):
    code = "EXCEEDS_CLOSE_FACTOR"


class LiquidationNotImproving(HealthError):
    """Raised when a partial liquidation would not raise the health factor."""
    code = "LIQUIDATION_NOT_IMPROVING"


# --- Oracle ------------------------------------------------------------------

class OracleError(LendingError):
    kind = ErrorKind.ORACLE
    code = "ORACLE_ERROR"


class OraclePriceStale(OracleError):
    code = "ORACLE_PRICE_STALE"


class PriceFeedMissing(OracleError):
    code = "PRICE_FEED_MISSING"


class PriceDeviationExceeded(OracleError):
    code = "PRICE_DEVIATION_EXCEEDED"


# --- Math --------------------------------------------------------------------

class MathError(LendingError):
    kind = ErrorKind.MATH
    code = "MATH_ERROR"


class ArithmeticOverflow(MathError):
    code = "OVERFLOW"


class ArithmeticUnderflow(MathError):
    code = "UNDERFLOW"


class DivisionByZero(MathError):
    code = "DIVISION_BY_ZERO"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Asset:
    """
    Definition of an asset the market can hold balances of.

    Attributes:
        symbol: Short identifier (e.g., "SUI", "USDC", or "ySUI" for shares).
        name: Human-readable name.
        decimals: Native decimal precision of balances.
        unit_type: ASSET for underlying tokens, SHARE for pool claims.
    """
    symbol: str
    name: str
    decimals: int
    unit_type: str = UNIT_TYPE_ASSET

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise InputValidationError("Asset symbol cannot be empty")
        if self.decimals < 0 or self.decimals > 18:
            raise InputValidationError(f"Asset decimals must be in [0, 18], got {self.decimals}")


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of one asset between two wallets.

    Moves are the only way a balance changes hands, which is what gives
    share claims their move-not-copy semantics: the debit and the credit
    happen together or not at all.

    Attributes:
        quantity: Integer amount in the asset's native decimals (must be > 0).
        asset: Symbol of the asset being transferred.
        source: Wallet debited.
        dest: Wallet credited.
        reason: Short tag for the operation leg that produced this move.
    """
    quantity: int
    asset: str
    source: str
    dest: str
    reason: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise InputValidationError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise InputValidationError("Move dest cannot be empty")
        if not self.asset or not self.asset.strip():
            raise InputValidationError("Move asset cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InputValidationError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ZeroAmount(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise InputValidationError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset}: {self.source}→{self.dest})"


# ============================================================================
# OBSERVABLE EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class DepositEvent:
    pool: str
    depositor: str
    amount: int
    shares: int


@dataclass(frozen=True, slots=True)
class WithdrawEvent:
    pool: str
    owner: str
    shares: int
    amount: int


@dataclass(frozen=True, slots=True)
class BorrowEvent:
    position: str
    asset: str
    amount: int


@dataclass(frozen=True, slots=True)
class RepayEvent:
    position: str
    asset: str
    amount: int
    excess_returned: int


@dataclass(frozen=True, slots=True)
class CollateralReleasedEvent:
    position: str
    asset: str
    shares: int


@dataclass(frozen=True, slots=True)
class LiquidationEvent:
    position: str
    liquidator: str
    collateral_seized: int
    debt_repaid: int
    bonus: int


@dataclass(frozen=True, slots=True)
class Operation:
    """
    An applied, immutable record of one committed market operation.

    Attributes:
        kind: Operation name (e.g., "deposit", "liquidate", "session")
        caller: Identity that initiated the operation
        moves: Wallet transfers applied, in order
        events: Observable events emitted
        timestamp: Market time when the operation committed
        sequence_number: Monotonic sequence within the market
        op_id: Unique identifier (market name + sequence)
    """
    kind: str
    caller: str
    moves: Tuple[Move, ...]
    events: Tuple[object, ...]
    timestamp: datetime
    sequence_number: int
    op_id: str = field(default="")

    def __repr__(self) -> str:
        return (
            f"Operation(#{self.sequence_number} {self.kind} by {self.caller}, "
            f"{len(self.moves)} moves, {len(self.events)} events)"
        )


class PositionStatus(Enum):
    """
    Liquidation state machine.

    HEALTHY -> LIQUIDATABLE -> {PARTIALLY_LIQUIDATED -> LIQUIDATABLE | HEALTHY,
                               FULLY_LIQUIDATED -> CLOSED}
    """
    HEALTHY = "healthy"
    LIQUIDATABLE = "liquidatable"
    PARTIALLY_LIQUIDATED = "partially_liquidated"
    FULLY_LIQUIDATED = "fully_liquidated"
    CLOSED = "closed"


def format_amount(quantity: int, decimals: int) -> str:
    """Render an integer amount with its decimal point for display only."""
    sign = "-" if quantity < 0 else ""
    quantity = abs(quantity)
    if decimals == 0:
        return f"{sign}{quantity}"
    whole, frac = divmod(quantity, 10 ** decimals)
    return f"{sign}{whole}.{frac:0{decimals}d}"
