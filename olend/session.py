"""
session.py - Composite deposit-and-borrow operations

A DepositBorrowSession runs several legs (deposits, borrows) as ONE market
operation. Shares minted inside the session are parked in a transient
session wallet and handed out as ShareBalance handles. A handle is a
move-only value: it must be pledged as collateral or explicitly kept before
commit, and it cannot be used twice.

Contract:
    - every leg is applied immediately, inside the session's single snapshot
    - any failing leg aborts the whole session (nothing is committed)
    - commit() fails with UnconsumedShareBalance while a handle is unassigned
    - the market rejects other operations while a session is open

Example:
    with market.session("alice") as s:
        claim = s.deposit("SUI", 100_000_000_000)
        position_id = s.borrow("USDC", 500_000_000, collateral=[claim])
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .core import (
    InputValidationError, ShareBalanceConsumed, UnconsumedShareBalance,
    share_symbol,
)

if TYPE_CHECKING:
    from .core import Operation
    from .market import Market, PendingOperation


class ShareBalance:
    """
    Move-only claim on a pool produced by a session deposit.

    Reading or consuming a handle after it has been moved raises
    ShareBalanceConsumed.
    """

    __slots__ = ('asset', '_shares', '_session', '_consumed')

    def __init__(self, asset: str, shares: int, session: DepositBorrowSession):
        self.asset = asset
        self._shares = shares
        self._session = session
        self._consumed = False

    @property
    def shares(self) -> int:
        if self._consumed:
            raise ShareBalanceConsumed(f"share balance of y{self.asset} already moved")
        return self._shares

    @property
    def consumed(self) -> bool:
        return self._consumed

    def _take(self, session: DepositBorrowSession) -> int:
        if session is not self._session:
            raise InputValidationError("share balance belongs to a different session")
        shares = self.shares
        self._consumed = True
        return shares

    def __repr__(self) -> str:
        state = "moved" if self._consumed else f"{self._shares}"
        return f"ShareBalance(y{self.asset}: {state})"


class DepositBorrowSession:
    """Builder for one atomic deposit-then-borrow operation."""

    def __init__(self, market: Market, caller: str):
        self.market = market
        self.caller = caller
        self.claims: List[ShareBalance] = []
        self.result: Optional[Operation] = None
        self._op: Optional[PendingOperation] = None
        market._next_session += 1
        self.wallet = f"session:{market.name}:{market._next_session}"

    @property
    def is_open(self) -> bool:
        return self._op is not None

    def begin(self) -> DepositBorrowSession:
        if self.is_open or self.result is not None:
            raise InputValidationError("session already started")
        if self.market._session is not None:
            raise InputValidationError(f"a session is already open on {self.market.name}")
        self._op = self.market._begin("session", self.caller)
        self.market._session = self
        self.market._add_wallet(self.wallet)
        return self

    def _require_open(self) -> PendingOperation:
        if self._op is None:
            raise InputValidationError("session is not open")
        return self._op

    def _run(self, leg, *args):
        op = self._require_open()
        try:
            return leg(op, *args)
        except Exception as error:
            self._abort(error)
            raise

    # ------------------------------------------------------------------------
    # Legs
    # ------------------------------------------------------------------------

    def deposit(self, asset: str, amount: int) -> ShareBalance:
        """Deposit caller's underlying; the minted shares stay in the session."""
        shares = self._run(self.market._deposit, asset, amount, self.wallet)
        claim = ShareBalance(asset, shares, self)
        self.claims.append(claim)
        return claim

    def borrow(
        self,
        debt_asset: str,
        amount: int,
        collateral: Iterable[ShareBalance] = (),
        position_id: Optional[str] = None,
    ) -> str:
        """
        Borrow, pledging the given session claims as collateral.

        Returns:
            The position id
        """
        self._require_open()
        pledged: Dict[str, int] = {}
        try:
            for claim in collateral:
                shares = claim._take(self)
                pledged[claim.asset] = pledged.get(claim.asset, 0) + shares
        except Exception as error:
            self._abort(error)
            raise
        return self._run(self.market._borrow, debt_asset, amount, pledged, position_id, self.wallet)

    def keep(self, claim: ShareBalance) -> int:
        """Move a claim's shares to the caller's own wallet. Returns the shares moved."""
        op = self._require_open()
        try:
            shares = claim._take(self)
            self.market._transfer(op, shares, share_symbol(claim.asset), self.wallet, self.caller, "keep")
        except Exception as error:
            self._abort(error)
            raise
        return shares

    # ------------------------------------------------------------------------
    # Finalize or abort
    # ------------------------------------------------------------------------

    def commit(self) -> Operation:
        """
        Commit every leg as one operation.

        Raises:
            UnconsumedShareBalance: A claim was neither pledged nor kept (the
                                    session is aborted)
        """
        op = self._require_open()
        pending = [c for c in self.claims if not c.consumed]
        if pending:
            error = UnconsumedShareBalance(
                f"{len(pending)} share balance(s) neither pledged nor kept: {pending}"
            )
            self._abort(error)
            raise error

        self.market.registered_wallets.discard(self.wallet)
        self.market.balances.pop(self.wallet, None)
        self.market._session = None
        self._op = None
        self.result = self.market._finish(op)
        return self.result

    def _abort(self, error: Exception) -> None:
        if self._op is None:
            return
        op, self._op = self._op, None
        self.market._session = None
        self.market._rollback(op, error)

    def abort(self) -> None:
        """Discard every leg. The market is left exactly as before begin()."""
        self._abort(InputValidationError("session aborted by caller"))

    def __enter__(self) -> DepositBorrowSession:
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self._abort(exc)
            return None
        if self.is_open:
            self.commit()
        return None
