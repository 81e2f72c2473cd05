"""
market.py - Stateful lending market

The Market class is the keyed store for pools, positions and wallet balances.
It is the only module that mutates state: every other module computes new
frozen Pool/Position values, and the Market commits them together with the
wallet moves that go with them.

Key responsibilities:
    - Runs every operation atomically (all state changes commit or none do)
    - Accrues interest on the affected pools before any state change
    - Applies moves with balance validation (only the system wallet may go negative)
    - Keeps an append-only event_log, operation_log and liquidation_log
    - Provides read-only views (health, rates, exchange rates) and clone()
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from .core import (
    SYSTEM_WALLET, UNIT_TYPE_SHARE,
    Asset, Move, Operation,
    DepositEvent, WithdrawEvent, BorrowEvent, RepayEvent,
    CollateralReleasedEvent, LiquidationEvent,
    InputValidationError, Unauthorized,
    PoolNotFound, PositionNotFound, WalletNotRegistered, InsufficientBalance,
    PositionStatus,
    share_symbol, pool_wallet, reserve_wallet, escrow_wallet,
)
from .fixed_point import check_u64
from . import health as health_engine
from . import liquidation as liquidation_engine
from . import liquidity_pool
from . import position_ledger
from .health import HealthSnapshot
from .interest_rate import InterestRateParams
from .liquidation import LiquidationRecord
from .liquidity_pool import Pool, PoolConfig
from .position_ledger import Position
from .price_source import PriceGuard, PriceOracle, PriceSource


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Market-wide settings.

    Attributes:
        price_guard: Freshness, confidence and circuit-breaker rules for quotes
        restrict_liquidators: If True, only wallets granted the liquidator role may liquidate
    """
    price_guard: PriceGuard = field(default_factory=PriceGuard)
    restrict_liquidators: bool = False


@dataclass
class PendingOperation:
    """Moves and events collected while an operation is in flight."""
    kind: str
    caller: str
    snapshot: Tuple[Any, ...]
    moves: List[Move] = field(default_factory=list)
    events: List[object] = field(default_factory=list)


class Market:
    """
    Collateralized lending market with atomic operations and a full audit trail.

    Every mutating call takes the caller's identity. Position operations
    require the caller to be the borrower; liquidation requires the
    liquidator role when the market restricts it.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Market instance.

    Example:
        market = Market("main", StaticPriceSource({"SUI": 100_000_000}), verbose=False)
        market.create_pool("SUI", 9, params)
        market.register_wallet("alice")
        market.fund("alice", "SUI", 100_000_000_000)
        shares = market.deposit("alice", "SUI", 100_000_000_000)
    """

    def __init__(
        self,
        name: str,
        price_source: PriceSource,
        initial_time: Optional[datetime] = None,
        config: Optional[MarketConfig] = None,
        verbose: bool = True,
    ):
        """
        Create a market.

        Args:
            name: Market identifier
            price_source: External price collaborator
            initial_time: Starting time (default: 1970-01-01)
            config: Market settings (default: MarketConfig())
            verbose: Print a line for every applied or rejected operation
        """
        self.name = name
        self.price_source = price_source
        self.config = config or MarketConfig()
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.pools: Dict[str, Pool] = {}
        self.positions: Dict[str, Position] = {}
        self.assets: Dict[str, Asset] = {}
        self.balances: Dict[str, Dict[str, int]] = {}
        self.registered_wallets: Set[str] = set()
        self.liquidators: Set[str] = set()

        self.event_log: List[object] = []
        self.operation_log: List[Operation] = []
        self.liquidation_log: List[LiquidationRecord] = []

        self._next_sequence: int = 0
        self._next_position: int = 0
        self._next_session: int = 0
        self._session: Optional[object] = None

        self._add_wallet(SYSTEM_WALLET)

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the market."""
        return self._current_time

    @property
    def oracle(self) -> PriceOracle:
        decimals = {asset: pool.decimals for asset, pool in self.pools.items()}
        return PriceOracle(self.price_source, self.config.price_guard, decimals)

    def get_balance(self, wallet_id: str, asset: str) -> int:
        """
        Raises:
            WalletNotRegistered: If wallet is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return self.balances[wallet_id].get(asset, 0)

    def get_wallet_balances(self, wallet_id: str) -> Dict[str, int]:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return {a: q for a, q in self.balances[wallet_id].items() if q != 0}

    def total_supply(self, asset: str) -> int:
        """Sum of every wallet's balance of asset (zero under double entry)."""
        return sum(self.balances[w].get(asset, 0) for w in sorted(self.balances))

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def get_pool(self, asset: str) -> Pool:
        if asset not in self.pools:
            raise PoolNotFound(f"no pool for {asset}")
        return self.pools[asset]

    def get_position(self, position_id: str) -> Position:
        if position_id not in self.positions:
            raise PositionNotFound(f"position {position_id} not found")
        return self.positions[position_id]

    def positions_of(self, borrower: str) -> List[Position]:
        return [p for _, p in sorted(self.positions.items()) if p.borrower == borrower]

    def _accrued_pools(self) -> Dict[str, Pool]:
        """Pools as they would look if accrued to now, without committing anything."""
        return {
            asset: liquidity_pool.accrue(pool, self._current_time).pool
            for asset, pool in self.pools.items()
        }

    def exchange_rate(self, asset: str) -> int:
        self.get_pool(asset)
        return liquidity_pool.exchange_rate(self._accrued_pools()[asset])

    def pool_rates(self, asset: str) -> Dict[str, int]:
        """Utilization, borrow rate and supply rate of a pool at the current time."""
        self.get_pool(asset)
        pool = self._accrued_pools()[asset]
        return pool.rate_model.rates(pool.total_borrowed, pool.total_deposits)

    def health(self, position_id: str) -> HealthSnapshot:
        position = self.get_position(position_id)
        return health_engine.evaluate(position, self._accrued_pools(), self.oracle, self._current_time)

    def position_status(self, position_id: str) -> PositionStatus:
        return liquidation_engine.classify(self.health(position_id))

    def debt_of(self, position_id: str, asset: str) -> int:
        position = self.get_position(position_id)
        return position_ledger.current_debt(position, self._accrued_pools(), asset)

    def max_borrowable_usd(self, position_id: str) -> int:
        position = self.get_position(position_id)
        return health_engine.max_borrowable_usd(position, self._accrued_pools(), self.oracle, self._current_time)

    def liquidation_price(self, position_id: str, collateral_asset: str) -> Optional[int]:
        position = self.get_position(position_id)
        return health_engine.liquidation_price(
            position, self._accrued_pools(), self.oracle, collateral_asset, self._current_time
        )

    def max_liquidatable_repay(self, position_id: str, debt_asset: str) -> int:
        position = self.get_position(position_id)
        return liquidation_engine.max_liquidatable_repay(
            position, self._accrued_pools(), self.oracle, debt_asset, self._current_time
        )

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that every asset is conserved.

        All issuance runs through the system wallet, so for every asset the
        sum of balances across all wallets must be exactly zero.

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'supplies': asset -> sum of balances
            - 'discrepancies': list of {asset, actual}
        """
        supplies = {}
        discrepancies = []
        for asset in sorted(self.assets):
            supply = self.total_supply(asset)
            supplies[asset] = supply
            if supply != 0:
                discrepancies.append({'asset': asset, 'actual': supply})
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def verify_invariants(self) -> List[str]:
        """
        Check every structural invariant of the store.

        Returns:
            Description of each violation (empty list if the market is sound)
        """
        problems: List[str] = []
        for asset, pool in sorted(self.pools.items()):
            problems.extend(liquidity_pool.pool_violations(pool))

            cash = self.balances[pool_wallet(asset)].get(asset, 0)
            if cash < liquidity_pool.available_liquidity(pool):
                problems.append(
                    f"{asset}: pool cash {cash} < available liquidity "
                    f"{liquidity_pool.available_liquidity(pool)}"
                )

            y = share_symbol(asset)
            outstanding = sum(
                b.get(y, 0) for w, b in self.balances.items() if w != SYSTEM_WALLET
            )
            if outstanding != pool.total_shares:
                problems.append(f"{asset}: {outstanding} {y} held but total_shares={pool.total_shares}")

        for position_id, position in sorted(self.positions.items()):
            problems.extend(position_ledger.position_violations(position))
            escrow = escrow_wallet(position_id)
            for asset, shares in position.collateral.items():
                held = self.balances.get(escrow, {}).get(share_symbol(asset), 0)
                if held != shares:
                    problems.append(
                        f"{position_id}: collateral {shares} y{asset} but escrow holds {held}"
                    )

        for wallet, bals in sorted(self.balances.items()):
            if wallet == SYSTEM_WALLET:
                continue
            for asset, qty in bals.items():
                if qty < 0:
                    problems.append(f"{wallet} holds negative {qty} {asset}")
        return problems

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the market's logical clock. Time can only move forward.

        Interest is not charged here; it accrues lazily on the next operation
        touching each pool.

        Raises:
            InputValidationError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise InputValidationError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def _add_wallet(self, wallet_id: str) -> None:
        self.registered_wallets.add(wallet_id)
        self.balances.setdefault(wallet_id, defaultdict(int))

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a user wallet.

        Raises:
            InputValidationError: If already registered or the name is reserved
        """
        if not wallet_id or not wallet_id.strip():
            raise InputValidationError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise InputValidationError(f"Wallet {wallet_id} already registered")
        if ":" in wallet_id:
            raise InputValidationError(f"Wallet id {wallet_id} uses a reserved prefix")
        self._add_wallet(wallet_id)
        return wallet_id

    def grant_liquidator(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        self.liquidators.add(wallet_id)

    def create_pool(
        self,
        asset: str,
        decimals: int,
        rate_params: InterestRateParams,
        config: Optional[PoolConfig] = None,
        name: Optional[str] = None,
    ) -> Pool:
        """
        Create the pool for an asset (governance hook, once per asset).

        Registers the underlying asset, its share asset, and the pool and
        reserve wallets.

        Raises:
            InputValidationError: If a pool for asset already exists
        """
        if asset in self.pools:
            raise InputValidationError(f"Pool for {asset} already exists")
        pool = liquidity_pool.create_pool(asset, decimals, rate_params, self._current_time, config)
        self.pools[asset] = pool
        self.assets[asset] = Asset(asset, name or asset, decimals)
        y = share_symbol(asset)
        self.assets[y] = Asset(y, f"{name or asset} pool share", decimals, UNIT_TYPE_SHARE)
        self._add_wallet(pool_wallet(asset))
        self._add_wallet(reserve_wallet(asset))
        if self.verbose:
            print(f"📝 Registered pool: {asset} ({decimals} decimals) {pool.rate_model!r}")
        return pool

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            dict(self.pools),
            dict(self.positions),
            dict(self.assets),
            {w: dict(b) for w, b in self.balances.items()},
            set(self.registered_wallets),
            set(self.liquidators),
            len(self.event_log),
            len(self.operation_log),
            len(self.liquidation_log),
            self._next_sequence,
            self._next_position,
        )

    def _restore(self, snapshot: Tuple[Any, ...]) -> None:
        (pools, positions, assets, balances, wallets, liquidators,
         n_events, n_ops, n_liquidations, next_sequence, next_position) = snapshot
        self.pools = pools
        self.positions = positions
        self.assets = assets
        self.balances = {w: defaultdict(int, b) for w, b in balances.items()}
        self.registered_wallets = wallets
        self.liquidators = liquidators
        del self.event_log[n_events:]
        del self.operation_log[n_ops:]
        del self.liquidation_log[n_liquidations:]
        self._next_sequence = next_sequence
        self._next_position = next_position

    @contextmanager
    def atomic(self) -> Iterator["Market"]:
        """
        Run a block of operations as one unit.

        On any exception every pool, position, balance and log is restored to
        its state on entry, then the exception propagates.
        """
        snapshot = self._snapshot()
        try:
            yield self
        except Exception:
            self._restore(snapshot)
            raise

    def _begin(self, kind: str, caller: str) -> PendingOperation:
        if caller not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {caller} not registered")
        return PendingOperation(kind=kind, caller=caller, snapshot=self._snapshot())

    def _rollback(self, op: PendingOperation, error: Exception) -> None:
        self._restore(op.snapshot)
        if self.verbose:
            code = getattr(error, 'code', type(error).__name__)
            print(f"✗ REJECTED {op.kind} by {op.caller}: {code}: {error}")

    def _finish(self, op: PendingOperation) -> Operation:
        sequence = self._next_sequence
        self._next_sequence += 1
        record = Operation(
            kind=op.kind,
            caller=op.caller,
            moves=tuple(op.moves),
            events=tuple(op.events),
            timestamp=self._current_time,
            sequence_number=sequence,
            op_id=f"op:{self.name}:{sequence:012d}",
        )
        self.operation_log.append(record)
        self.event_log.extend(op.events)
        if self.verbose:
            print(f"✓ APPLIED #{sequence} {op.kind} by {op.caller} "
                  f"({len(op.moves)} moves, {len(op.events)} events)")
        return record

    @contextmanager
    def _operation(self, kind: str, caller: str) -> Iterator[PendingOperation]:
        if self._session is not None:
            raise InputValidationError(f"{kind} rejected: a session is open on {self.name}")
        op = self._begin(kind, caller)
        try:
            yield op
        except Exception as error:
            self._rollback(op, error)
            raise
        self._finish(op)

    def _transfer(self, op: PendingOperation, quantity: int, asset: str,
                  source: str, dest: str, reason: str) -> None:
        """
        Apply one move immediately and record it on the pending operation.

        Raises:
            WalletNotRegistered: If either wallet is unknown
            InsufficientBalance: If a non-system source would go negative
            ArithmeticOverflow: If a non-system destination would exceed U64_MAX
        """
        move = Move(quantity, asset, source, dest, reason)
        for wallet in (source, dest):
            if wallet not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {wallet} not registered")
        if asset not in self.assets:
            raise InputValidationError(f"Asset {asset} not registered")
        if source != SYSTEM_WALLET:
            held = self.balances[source].get(asset, 0)
            if held < quantity:
                raise InsufficientBalance(f"{source} holds {held} {asset}, needs {quantity}")
        self.balances[source][asset] = self.balances[source].get(asset, 0) - quantity
        credited = self.balances[dest].get(asset, 0) + quantity
        if dest != SYSTEM_WALLET:
            check_u64(credited, "balance")
        self.balances[dest][asset] = credited
        op.moves.append(move)

    # ========================================================================
    # INTEREST
    # ========================================================================

    def _accrue_pool(self, op: PendingOperation, asset: str) -> Pool:
        pool = self.get_pool(asset)
        result = liquidity_pool.accrue(pool, self._current_time)
        if result.reserve_shares > 0:
            self._transfer(op, result.reserve_shares, share_symbol(asset),
                           SYSTEM_WALLET, reserve_wallet(asset), "reserve")
        self.pools[asset] = result.pool
        return result.pool

    def _accrue_assets(self, op: PendingOperation, assets) -> None:
        for asset in sorted(set(assets)):
            self._accrue_pool(op, asset)

    def _position_assets(self, position: Position) -> Set[str]:
        assets = set(position.collateral) | set(position.debts)
        if position.pool_id in self.pools:
            assets.add(position.pool_id)
        return assets

    def accrue(self, caller: str = SYSTEM_WALLET, asset: Optional[str] = None) -> None:
        """Charge interest on one pool (or all pools) up to the current time."""
        with self._operation("accrue", caller) as op:
            self._accrue_assets(op, [asset] if asset else list(self.pools))

    # ========================================================================
    # FUNDING
    # ========================================================================

    def fund(self, wallet_id: str, asset: str, amount: int) -> None:
        """Issue underlying from the system wallet to a user wallet (faucet / bridge-in)."""
        if asset not in self.pools:
            raise PoolNotFound(f"no pool for {asset}")
        with self._operation("fund", SYSTEM_WALLET) as op:
            self._transfer(op, amount, asset, SYSTEM_WALLET, wallet_id, "fund")

    def transfer(self, caller: str, dest: str, asset: str, quantity: int) -> None:
        """Move any asset, including pool shares, from caller to another user wallet."""
        if ":" in dest:
            raise InputValidationError(f"cannot transfer into internal wallet {dest}")
        with self._operation("transfer", caller) as op:
            self._transfer(op, quantity, asset, caller, dest, "transfer")

    # ========================================================================
    # POOL OPERATIONS
    # ========================================================================

    def _deposit(self, op: PendingOperation, asset: str, amount: int, share_dest: str) -> int:
        pool = self._accrue_pool(op, asset)
        new_pool, shares = liquidity_pool.deposit(pool, amount)
        self._transfer(op, amount, asset, op.caller, pool_wallet(asset), "deposit")
        self._transfer(op, shares, share_symbol(asset), SYSTEM_WALLET, share_dest, "mint")
        self.pools[asset] = new_pool
        op.events.append(DepositEvent(pool=asset, depositor=op.caller, amount=amount, shares=shares))
        return shares

    def deposit(self, caller: str, asset: str, amount: int) -> int:
        """
        Deposit underlying and receive pool shares.

        Returns:
            Shares minted to caller
        """
        with self._operation("deposit", caller) as op:
            shares = self._deposit(op, asset, amount, caller)
        return shares

    def withdraw(self, caller: str, asset: str, shares: int) -> int:
        """
        Burn pool shares and receive the underlying they redeem for.

        Returns:
            Underlying released to caller
        """
        with self._operation("withdraw", caller) as op:
            pool = self._accrue_pool(op, asset)
            new_pool, amount = liquidity_pool.withdraw(pool, shares)
            self._transfer(op, shares, share_symbol(asset), caller, SYSTEM_WALLET, "burn")
            self._transfer(op, amount, asset, pool_wallet(asset), caller, "withdraw")
            self.pools[asset] = new_pool
            op.events.append(WithdrawEvent(pool=asset, owner=caller, shares=shares, amount=amount))
        return amount

    def set_paused(self, caller: str, asset: str, paused: bool) -> None:
        """Pause or resume a pool (governance hook). Interest is charged up to now first."""
        with self._operation("pause" if paused else "unpause", caller) as op:
            pool = self._accrue_pool(op, asset)
            self.pools[asset] = liquidity_pool.set_paused(pool, paused)

    def update_rate_params(self, caller: str, asset: str, rate_params: InterestRateParams) -> None:
        """Replace a pool's rate model (governance hook). Past interest is charged at the old rate."""
        with self._operation("update_rate_params", caller) as op:
            pool = self._accrue_pool(op, asset)
            self.pools[asset] = replace(pool, rate_params=rate_params)

    # ========================================================================
    # POSITION OPERATIONS
    # ========================================================================

    def _owned_position(self, caller: str, position_id: str) -> Position:
        position = self.get_position(position_id)
        if position.borrower != caller:
            raise Unauthorized(f"{caller} does not own position {position_id}")
        return position

    def _open_position(self, caller: str, debt_asset: str) -> Position:
        self.get_pool(debt_asset)
        self._next_position += 1
        position_id = f"pos-{self._next_position:06d}"
        self._add_wallet(escrow_wallet(position_id))
        return position_ledger.open_position(position_id, caller, debt_asset, self._current_time)

    def _delete_position(self, position_id: str) -> None:
        del self.positions[position_id]
        escrow = escrow_wallet(position_id)
        if not any(self.balances.get(escrow, {}).values()):
            self.registered_wallets.discard(escrow)
            self.balances.pop(escrow, None)

    def _borrow(
        self,
        op: PendingOperation,
        debt_asset: str,
        amount: int,
        collateral: Mapping[str, int],
        position_id: Optional[str],
        collateral_source: str,
    ) -> str:
        if position_id is None:
            position = self._open_position(op.caller, debt_asset)
        else:
            position = self._owned_position(op.caller, position_id)

        self._accrue_assets(op, self._position_assets(position) | set(collateral) | {debt_asset})
        result = position_ledger.borrow(
            position, self.pools, self.oracle, collateral, debt_asset, amount, self._current_time
        )

        escrow = escrow_wallet(position.position_id)
        for asset in sorted(collateral):
            self._transfer(op, collateral[asset], share_symbol(asset), collateral_source, escrow, "pledge")
        self._transfer(op, amount, debt_asset, pool_wallet(debt_asset), op.caller, "borrow")

        self.pools[debt_asset] = result.pool
        self.positions[position.position_id] = result.position
        op.events.append(BorrowEvent(position=position.position_id, asset=debt_asset, amount=amount))
        return position.position_id

    def borrow(
        self,
        caller: str,
        debt_asset: str,
        amount: int,
        collateral: Optional[Mapping[str, int]] = None,
        position_id: Optional[str] = None,
    ) -> str:
        """
        Borrow against pledged pool shares.

        Args:
            caller: Borrower
            debt_asset: Asset to borrow
            amount: Native units to borrow
            collateral: Asset -> shares to move from caller into the position
            position_id: Existing position to extend (None opens a new one)

        Returns:
            The position id
        """
        with self._operation("borrow", caller) as op:
            position_id = self._borrow(op, debt_asset, amount, dict(collateral or {}), position_id, caller)
        return position_id

    def repay(self, caller: str, position_id: str, asset: str, amount: int) -> Tuple[int, int]:
        """
        Repay debt. Only the part actually owed is taken from the caller.

        Returns:
            (repaid, excess_returned)
        """
        with self._operation("repay", caller) as op:
            position = self._owned_position(caller, position_id)
            self._accrue_assets(op, self._position_assets(position))
            result = position_ledger.repay(position, self.pools, asset, amount, self._current_time)
            self._transfer(op, result.repaid, asset, caller, pool_wallet(asset), "repay")
            self.pools[asset] = result.pool
            self.positions[position_id] = result.position
            if position_ledger.is_closable(result.position):
                self._delete_position(position_id)
            op.events.append(RepayEvent(
                position=position_id, asset=asset,
                amount=result.repaid, excess_returned=result.excess,
            ))
        return result.repaid, result.excess

    def release_collateral(self, caller: str, position_id: str, asset: str, shares: int) -> None:
        """Return pledged shares to the borrower while health stays >= 1.0."""
        with self._operation("release_collateral", caller) as op:
            self._release(op, position_id, asset, shares)

    def _release(self, op: PendingOperation, position_id: str, asset: str, shares: int) -> None:
        position = self._owned_position(op.caller, position_id)
        self._accrue_assets(op, self._position_assets(position))
        released = position_ledger.release_collateral(
            position, self.pools, self.oracle, asset, shares, self._current_time
        )
        self._transfer(op, shares, share_symbol(asset), escrow_wallet(position_id), op.caller, "release")
        self.positions[position_id] = released
        if position_ledger.is_closable(released):
            self._delete_position(position_id)
        op.events.append(CollateralReleasedEvent(position=position_id, asset=asset, shares=shares))

    def close_position(self, caller: str, position_id: str) -> None:
        """
        Release all collateral of a debt-free position and delete it.

        Raises:
            InsufficientCollateral: If outstanding debt needs the collateral
            InputValidationError: If debt is outstanding with no collateral left
        """
        with self._operation("close_position", caller) as op:
            position = self._owned_position(caller, position_id)
            for asset in sorted(position.collateral):
                if position_id in self.positions:
                    self._release(op, position_id, asset, self.positions[position_id].collateral[asset])
            if position_id in self.positions:
                raise InputValidationError(f"{position_id} still has debt outstanding")

    # ========================================================================
    # LIQUIDATION
    # ========================================================================

    def liquidate(
        self,
        caller: str,
        position_id: str,
        debt_asset: str,
        collateral_asset: str,
        repay_amount: int,
    ) -> LiquidationRecord:
        """
        Repay part of an unhealthy position's debt and seize its collateral.

        The liquidator pays repay_amount of debt_asset into the debt pool and
        receives collateral shares worth the repayment plus the collateral
        pool's bonus. If the debt reaches zero any leftover collateral goes
        back to the borrower and the position is closed.
        """
        with self._operation("liquidate", caller) as op:
            if self.config.restrict_liquidators and caller not in self.liquidators:
                raise Unauthorized(f"{caller} does not hold the liquidator role")
            position = self.get_position(position_id)
            self._accrue_assets(op, self._position_assets(position))

            outcome = liquidation_engine.liquidate(
                position, self.pools, self.oracle, caller,
                debt_asset, collateral_asset, repay_amount, self._current_time,
            )
            record = outcome.record
            escrow = escrow_wallet(position_id)

            self._transfer(op, record.debt_repaid, debt_asset, caller, pool_wallet(debt_asset), "liquidation_repay")
            self._transfer(op, record.collateral_seized, share_symbol(collateral_asset),
                           escrow, caller, "liquidation_seize")
            for asset in sorted(outcome.returned_collateral):
                self._transfer(op, outcome.returned_collateral[asset], share_symbol(asset),
                               escrow, position.borrower, "liquidation_return")

            self.pools[debt_asset] = outcome.debt_pool
            self.positions[position_id] = outcome.position
            if outcome.closed:
                self._delete_position(position_id)

            self.liquidation_log.append(record)
            op.events.append(LiquidationEvent(
                position=position_id,
                liquidator=caller,
                collateral_seized=record.collateral_seized,
                debt_repaid=record.debt_repaid,
                bonus=record.bonus,
            ))
        return record

    # ========================================================================
    # COMPOSITE OPERATIONS
    # ========================================================================

    def session(self, caller: str):
        """
        Start a deposit-and-borrow session for caller.

        Example:
            with market.session("alice") as s:
                claim = s.deposit("SUI", 100_000_000_000)
                s.borrow("USDC", 50_000_000, collateral=[claim])
        """
        from .session import DepositBorrowSession
        return DepositBorrowSession(self, caller)

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> Market:
        """
        Create an independent copy of this market for what-if evaluation.

        Pools and positions are frozen, so they are shared; balances,
        registrations and logs are copied. The price source is shared.
        """
        cloned = Market.__new__(Market)
        cloned.name = self.name
        cloned.price_source = self.price_source
        cloned.config = self.config
        cloned.verbose = self.verbose
        cloned._current_time = self._current_time
        cloned.pools = dict(self.pools)
        cloned.positions = dict(self.positions)
        cloned.assets = dict(self.assets)
        cloned.balances = {w: defaultdict(int, b) for w, b in self.balances.items()}
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.liquidators = set(self.liquidators)
        cloned.event_log = list(self.event_log)
        cloned.operation_log = list(self.operation_log)
        cloned.liquidation_log = list(self.liquidation_log)
        cloned._next_sequence = self._next_sequence
        cloned._next_position = self._next_position
        cloned._next_session = self._next_session
        cloned._session = None
        return cloned

    def __repr__(self) -> str:
        return (
            f"Market({self.name}: {len(self.pools)} pools, {len(self.positions)} positions, "
            f"{len(self.operation_log)} operations, t={self._current_time})"
        )
