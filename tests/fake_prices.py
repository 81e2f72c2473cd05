"""
fake_prices.py - Test helper for the price collaborator

Provides a minimal PriceSource whose quotes are set field by field, so tests
can produce stale, invalid, wide or jumping prices without a time series.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Optional

from olend import PriceInfo


class FakePriceSource:
    """
    Minimal PriceSource implementation for testing.

    A quote set without a timestamp is reported as published at the query
    time, so it is always fresh.

    Example:
        prices = FakePriceSource({'SUI': 100_000_000})
        prices.set('SUI', 95_000_000, previous=100_000_000)
        prices.set('USDC', 100_000_000, timestamp=datetime(2024, 1, 1))  # stale
    """

    def __init__(self, prices: Optional[Dict[str, int]] = None):
        self._quotes: Dict[str, dict] = {}
        self.calls = 0
        for asset, price in (prices or {}).items():
            self.set(asset, price)

    def set(
        self,
        asset: str,
        price: int,
        confidence: int = 0,
        timestamp: Optional[datetime] = None,
        valid: bool = True,
        previous: Optional[int] = None,
    ) -> None:
        self._quotes[asset] = {
            'price': price,
            'confidence': confidence,
            'timestamp': timestamp,
            'valid': valid,
            'previous': previous,
        }

    def remove(self, asset: str) -> None:
        self._quotes.pop(asset, None)

    def get_price(self, asset: str, timestamp: datetime) -> Optional[PriceInfo]:
        self.calls += 1
        quote = self._quotes.get(asset)
        if quote is None:
            return None
        return PriceInfo(
            price=quote['price'],
            confidence=quote['confidence'],
            timestamp=quote['timestamp'] or timestamp,
            valid=quote['valid'],
            previous_price=quote['previous'],
        )
