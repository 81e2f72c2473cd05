"""
price_source.py - Price collaborator interface and guarded lookup

Provides the pricing seam between the lending core and an external oracle.
Feed ingestion is out of scope; the core only consumes quotes.

Classes:
- PriceInfo: a single quote {price, confidence, timestamp, valid}
- PriceSource: Protocol every quote provider implements
- StaticPriceSource: time-independent quotes (tests, what-if analysis)
- TimeSeriesPriceSource: historical quotes, most recent at or before a time
- PriceGuard: freshness, confidence and circuit-breaker validation
- PriceOracle: guarded facade used by the health and liquidation engines

All prices are 8-decimal fixed-point USD per whole unit of the asset.
USD values are 8-decimal fixed point as well:

    usd_value = amount * price / 10**decimals
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    SCALE,
    DEFAULT_MAX_PRICE_AGE_SECONDS, DEFAULT_MAX_CONFIDENCE_RATIO, DEFAULT_MAX_PRICE_DEVIATION,
    InputValidationError, OraclePriceStale, PriceFeedMissing, PriceDeviationExceeded,
)
from .fixed_point import mul_div, pow10


@dataclass(frozen=True, slots=True)
class PriceInfo:
    """
    One oracle quote.

    Attributes:
        price: USD per whole unit, 8-decimal fixed point
        confidence: Absolute confidence interval, same units as price
        timestamp: When the quote was published
        valid: False if the publisher flagged the quote as unusable
        previous_price: Prior published price, if known (used by the circuit breaker)
    """
    price: int
    confidence: int
    timestamp: datetime
    valid: bool = True
    previous_price: Optional[int] = None


@runtime_checkable
class PriceSource(Protocol):
    """
    Protocol for quote providers.

    Implementations return the latest quote at or before timestamp, or None
    when no feed exists for the asset.
    """

    def get_price(self, asset: str, timestamp: datetime) -> Optional[PriceInfo]:
        ...


def usd_value(amount: int, price: int, decimals: int) -> int:
    """USD value (8-decimal) of amount native units at price (truncating)."""
    return mul_div(amount, price, pow10(decimals))


def amount_for_usd(usd: int, price: int, decimals: int) -> int:
    """Native units worth usd at price (truncating)."""
    return mul_div(usd, pow10(decimals), price)


class StaticPricingMixin:
    """Shared bulk lookup for the concrete sources."""

    def get_prices(self, assets, timestamp: datetime) -> Dict[str, PriceInfo]:
        quotes = {}
        for asset in assets:
            info = self.get_price(asset, timestamp)
            if info is not None:
                quotes[asset] = info
        return quotes


class StaticPriceSource(StaticPricingMixin):
    """
    Price source with static quotes (time-independent).

    Quotes are always reported as published at the query time, so they never
    go stale. Use invalidate() to simulate a publisher marking a feed unusable.
    """

    def __init__(self, prices: Dict[str, int], confidence: Optional[Dict[str, int]] = None):
        """
        Args:
            prices: Asset -> 8-decimal USD price
            confidence: Optional asset -> absolute confidence (default 0)
        """
        self.prices = dict(prices)
        self.confidence = dict(confidence or {})
        self.invalid: set = set()

    def get_price(self, asset: str, timestamp: datetime) -> Optional[PriceInfo]:
        if asset not in self.prices:
            return None
        return PriceInfo(
            price=self.prices[asset],
            confidence=self.confidence.get(asset, 0),
            timestamp=timestamp,
            valid=asset not in self.invalid,
        )

    def update_price(self, asset: str, price: int):
        self.prices[asset] = price
        self.invalid.discard(asset)

    def update_prices(self, prices: Dict[str, int]):
        for asset, price in prices.items():
            self.update_price(asset, price)

    def invalidate(self, asset: str):
        self.invalid.add(asset)

    def __repr__(self):
        return f"StaticPriceSource({len(self.prices)} prices)"


class TimeSeriesPriceSource(StaticPricingMixin):
    """
    Price source with time-varying quotes.

    Returns the most recent observation at or before the requested time, with
    the observation's own timestamp, so a quote ages as the clock advances.
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, int]]]] = None,
        confidence: Optional[Dict[str, int]] = None,
    ):
        """
        Args:
            price_paths: Optional asset -> list of (timestamp, price)
            confidence: Optional asset -> absolute confidence (default 0)

        Example:
            prices = TimeSeriesPriceSource({
                'SUI': [(t0, 100_000_000), (t1, 95_000_000)],
            })
        """
        self.confidence = dict(confidence or {})
        self.price_history: Dict[str, List[Tuple[datetime, int]]] = {}
        if price_paths:
            for asset, path in price_paths.items():
                if path:
                    self.price_history[asset] = sorted(path, key=lambda x: x[0])

    def add_price(self, asset: str, timestamp: datetime, price: int):
        history = self.price_history.setdefault(asset, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, int], timestamp: datetime):
        for asset, price in prices.items():
            self.add_price(asset, timestamp, price)

    def get_price(self, asset: str, timestamp: datetime) -> Optional[PriceInfo]:
        history = self.price_history.get(asset)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None

        observed_at, price = history[idx - 1]
        previous = history[idx - 2][1] if idx >= 2 else None
        return PriceInfo(
            price=price,
            confidence=self.confidence.get(asset, 0),
            timestamp=observed_at,
            valid=True,
            previous_price=previous,
        )

    def __repr__(self):
        observations = sum(len(h) for h in self.price_history.values())
        return f"TimeSeriesPriceSource({len(self.price_history)} assets, {observations} observations)"


# ============================================================================
# VALIDATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceGuard:
    """
    Quote acceptance rules.

    Attributes:
        max_age_seconds: Oldest acceptable quote relative to the market clock
        max_confidence_ratio: Largest confidence / price accepted (8-decimal)
        max_deviation: Largest move vs the previous quote before the
                       circuit breaker trips (8-decimal fraction)
    """
    max_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS
    max_confidence_ratio: int = DEFAULT_MAX_CONFIDENCE_RATIO
    max_deviation: int = DEFAULT_MAX_PRICE_DEVIATION

    def __post_init__(self):
        if self.max_age_seconds < 0:
            raise InputValidationError(f"max_age_seconds cannot be negative, got {self.max_age_seconds}")
        if self.max_confidence_ratio < 0:
            raise InputValidationError("max_confidence_ratio cannot be negative")
        if self.max_deviation <= 0:
            raise InputValidationError("max_deviation must be positive")

    def validate(self, asset: str, info: PriceInfo, now: datetime) -> int:
        """
        Check a quote and return its price.

        Raises:
            OraclePriceStale: invalid flag, non-positive price, too old,
                              from the future, or too wide a confidence band
            PriceDeviationExceeded: jump vs previous quote over max_deviation
        """
        if not info.valid or info.price <= 0:
            raise OraclePriceStale(f"price for {asset} is flagged invalid")
        if info.timestamp > now:
            raise OraclePriceStale(f"price for {asset} is timestamped in the future ({info.timestamp})")
        age = (now - info.timestamp).total_seconds()
        if age > self.max_age_seconds:
            raise OraclePriceStale(
                f"price for {asset} is {int(age)}s old (max {self.max_age_seconds}s)"
            )
        if mul_div(info.confidence, SCALE, info.price) > self.max_confidence_ratio:
            raise OraclePriceStale(
                f"confidence {info.confidence} too wide for {asset} price {info.price}"
            )
        if info.previous_price:
            deviation = mul_div(abs(info.price - info.previous_price), SCALE, info.previous_price)
            if deviation > self.max_deviation:
                raise PriceDeviationExceeded(
                    f"{asset} moved {deviation} (max {self.max_deviation}) since previous quote"
                )
        return info.price


class PriceOracle:
    """
    Guarded price lookup used by the engines.

    Every quote passes PriceGuard before use; a failure aborts the enclosing
    operation. Decimals come from the pools so USD conversions use each
    asset's native precision.
    """

    def __init__(self, source: PriceSource, guard: PriceGuard, decimals: Mapping[str, int]):
        self.source = source
        self.guard = guard
        self.decimals = dict(decimals)

    def get_price(self, asset: str, now: datetime) -> PriceInfo:
        """
        Raises:
            PriceFeedMissing: no quote available for asset
            OraclePriceStale / PriceDeviationExceeded: see PriceGuard.validate
        """
        info = self.source.get_price(asset, now)
        if info is None:
            raise PriceFeedMissing(f"no price feed for {asset}")
        self.guard.validate(asset, info, now)
        return info

    def price(self, asset: str, now: datetime) -> int:
        return self.get_price(asset, now).price

    def _decimals(self, asset: str) -> int:
        if asset not in self.decimals:
            raise PriceFeedMissing(f"unknown decimals for {asset}")
        return self.decimals[asset]

    def get_usd_value(self, asset: str, amount: int, now: datetime) -> int:
        if amount == 0:
            return 0
        return usd_value(amount, self.price(asset, now), self._decimals(asset))

    def amount_for_usd(self, asset: str, usd: int, now: datetime) -> int:
        if usd == 0:
            return 0
        return amount_for_usd(usd, self.price(asset, now), self._decimals(asset))
