"""
olend - Collateralized lending core

Pooled liquidity with yield-bearing shares, a kinked interest-rate curve,
per-position collateral and debt, health-factor solvency checks and
liquidation settlement. Every quantity is an exact integer; every operation
is atomic.

Usage:
    from datetime import datetime
    from olend import Market, InterestRateParams, StaticPriceSource

    prices = StaticPriceSource({"SUI": 100_000_000, "USDC": 100_000_000})
    market = Market("main", prices, datetime(2025, 1, 1))
    params = InterestRateParams(2_000_000, 80_000_000, 10_000_000, 100_000_000)
    market.create_pool("SUI", 9, params)
    market.create_pool("USDC", 6, params)

    market.register_wallet("alice")
    market.fund("alice", "SUI", 100_000_000_000)

    # Deposit-and-borrow as one atomic operation
    with market.session("alice") as s:
        claim = s.deposit("SUI", 100_000_000_000)
        position_id = s.borrow("USDC", 50_000_000, collateral=[claim])
"""

# Core types
from .core import (
    SCALE,
    INDEX_SCALE,
    U64_MAX,
    U128_MAX,
    SECONDS_PER_YEAR,
    MAX_HEALTH_FACTOR,
    DEFAULT_CLOSE_FACTOR,
    DEFAULT_LIQUIDATION_BONUS,
    DEFAULT_LIQUIDATION_THRESHOLD,
    SYSTEM_WALLET,
    Asset,
    Move,
    Operation,
    PositionStatus,
    DepositEvent,
    WithdrawEvent,
    BorrowEvent,
    RepayEvent,
    CollateralReleasedEvent,
    LiquidationEvent,
    share_symbol,
    pool_wallet,
    reserve_wallet,
    escrow_wallet,
    format_amount,
    # Errors
    ErrorKind,
    LendingError,
    InputValidationError,
    ZeroAmount,
    Unauthorized,
    PoolNotFound,
    PositionNotFound,
    WalletNotRegistered,
    ShareBalanceConsumed,
    UnconsumedShareBalance,
    LiquidityError,
    InsufficientLiquidity,
    InsufficientShares,
    InsufficientBalance,
    PoolPaused,
    CollateralError,
    SelfCollateralization,
    InsufficientCollateral,
    NoDebt,
    HealthError,
    BorrowCapacityExceeded,
    PositionHealthy,
    ExceedsCloseFactor,
    LiquidationNotImproving,
    OracleError,
    OraclePriceStale,
    PriceFeedMissing,
    PriceDeviationExceeded,
    MathError,
    ArithmeticOverflow,
    ArithmeticUnderflow,
    DivisionByZero,
)

# Fixed-point arithmetic
from .fixed_point import mul_div, mul_div_up, fmul, fdiv, to_fixed

# Interest rates
from .interest_rate import (
    InterestRateParams,
    InterestRateModel,
    utilization,
    accrued_interest,
    compound_interest,
)

# Liquidity pools
from .liquidity_pool import (
    Pool,
    PoolConfig,
    PoolAccrual,
    create_pool,
    exchange_rate,
    available_liquidity,
)

# Pricing
from .price_source import (
    PriceInfo,
    PriceSource,
    StaticPriceSource,
    TimeSeriesPriceSource,
    PriceGuard,
    PriceOracle,
    usd_value,
)

# Solvency
from .health import (
    HealthSnapshot,
    calculate_health_factor,
    evaluate,
    is_liquidatable,
)

# Positions
from .position_ledger import DebtEntry, Position

# Liquidation
from .liquidation import LiquidationRecord, LiquidationOutcome, classify

# Market
from .market import Market, MarketConfig
from .session import DepositBorrowSession, ShareBalance

__all__ = [
    # Constants
    'SCALE', 'INDEX_SCALE', 'U64_MAX', 'U128_MAX', 'SECONDS_PER_YEAR',
    'MAX_HEALTH_FACTOR', 'DEFAULT_CLOSE_FACTOR', 'DEFAULT_LIQUIDATION_BONUS',
    'DEFAULT_LIQUIDATION_THRESHOLD', 'SYSTEM_WALLET',
    # Core types
    'Asset', 'Move', 'Operation', 'PositionStatus',
    'DepositEvent', 'WithdrawEvent', 'BorrowEvent', 'RepayEvent',
    'CollateralReleasedEvent', 'LiquidationEvent',
    'share_symbol', 'pool_wallet', 'reserve_wallet', 'escrow_wallet', 'format_amount',
    # Errors
    'ErrorKind', 'LendingError',
    'InputValidationError', 'ZeroAmount', 'Unauthorized', 'PoolNotFound',
    'PositionNotFound', 'WalletNotRegistered', 'ShareBalanceConsumed',
    'UnconsumedShareBalance',
    'LiquidityError', 'InsufficientLiquidity', 'InsufficientShares',
    'InsufficientBalance', 'PoolPaused',
    'CollateralError', 'SelfCollateralization', 'InsufficientCollateral', 'NoDebt',
    'HealthError', 'BorrowCapacityExceeded', 'PositionHealthy',
    'ExceedsCloseFactor', 'LiquidationNotImproving',
    'OracleError', 'OraclePriceStale', 'PriceFeedMissing', 'PriceDeviationExceeded',
    'MathError', 'ArithmeticOverflow', 'ArithmeticUnderflow', 'DivisionByZero',
    # Fixed point
    'mul_div', 'mul_div_up', 'fmul', 'fdiv', 'to_fixed',
    # Interest rates
    'InterestRateParams', 'InterestRateModel', 'utilization',
    'accrued_interest', 'compound_interest',
    # Pools
    'Pool', 'PoolConfig', 'PoolAccrual', 'create_pool', 'exchange_rate',
    'available_liquidity',
    # Pricing
    'PriceInfo', 'PriceSource', 'StaticPriceSource', 'TimeSeriesPriceSource',
    'PriceGuard', 'PriceOracle', 'usd_value',
    # Solvency
    'HealthSnapshot', 'calculate_health_factor', 'evaluate', 'is_liquidatable',
    # Positions & liquidation
    'DebtEntry', 'Position', 'LiquidationRecord', 'LiquidationOutcome', 'classify',
    # Market
    'Market', 'MarketConfig', 'DepositBorrowSession', 'ShareBalance',
]

__version__ = '0.1.0'
