"""
pricing_source.py - Where the oracle gets its prices

A pricing source answers "what was ASSET worth at time T" in synthetic
currency base units per whole collateral unit, the same integer the
collateral registry stores. OracleFeed.sync reads one and publishes the
result through the oracle role.
"""

from bisect import bisect_right, insort
from datetime import datetime
from typing import Dict, Set, Optional, List, Tuple, Protocol, runtime_checkable

PricePoint = Tuple[datetime, int]


@runtime_checkable
class PricingSource(Protocol):
    base_currency: str

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[int]:
        """Price at timestamp, or None when the source has nothing for the asset."""
        ...

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, int]:
        ...


def _check_price(unit_symbol: str, price: int) -> int:
    if isinstance(price, bool) or not isinstance(price, int):
        raise TypeError(f"price for {unit_symbol} must be an int, got {type(price).__name__}")
    if price < 0:
        raise ValueError(f"price for {unit_symbol} cannot be negative, got {price}")
    return price


class _BatchLookupMixin:
    """get_prices for classes that define get_price."""

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, int]:
        """Prices for the subset of units the source knows at timestamp."""
        found = {unit: self.get_price(unit, timestamp) for unit in units}
        return {unit: price for unit, price in found.items() if price is not None}


class StaticPricingSource(_BatchLookupMixin):
    """One price per asset, whatever the timestamp."""

    def __init__(self, prices: Dict[str, int], base_currency: str = "ETD"):
        self.base_currency = base_currency
        self.prices: Dict[str, int] = {}
        self.update_prices(prices)

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[int]:
        return self.prices.get(unit_symbol)

    def update_price(self, unit_symbol: str, price: int):
        self.prices[unit_symbol] = _check_price(unit_symbol, price)

    def update_prices(self, prices: Dict[str, int]):
        for unit, price in prices.items():
            self.update_price(unit, price)

    def __repr__(self):
        return f"StaticPricingSource({sorted(self.prices)}, base={self.base_currency})"


class TimeSeriesPricingSource(_BatchLookupMixin):
    """
    Observed prices over time. A lookup returns the latest observation at or
    before the requested time, and None before the first one.

        source = TimeSeriesPricingSource({'ETH': [(t0, 200), (t1, 150)]})
        source.get_price('ETH', t1)   # 150
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[PricePoint]]] = None,
        base_currency: str = "ETD"
    ):
        self.base_currency = base_currency
        self.price_history: Dict[str, List[PricePoint]] = {}
        for unit, path in (price_paths or {}).items():
            for timestamp, price in path:
                self.add_price(unit, timestamp, price)

    def add_price(self, unit_symbol: str, timestamp: datetime, price: int):
        _check_price(unit_symbol, price)
        history = self.price_history.setdefault(unit_symbol, [])
        insort(history, (timestamp, price), key=lambda point: point[0])

    def add_prices(self, prices: Dict[str, int], timestamp: datetime):
        for unit, price in prices.items():
            self.add_price(unit, timestamp, price)

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[int]:
        history = self.price_history.get(unit_symbol, [])
        idx = bisect_right(history, timestamp, key=lambda point: point[0])
        return history[idx - 1][1] if idx else None

    def get_all_timestamps(self, unit_symbol: Optional[str] = None) -> List[datetime]:
        """Observation times for one asset, or the sorted union over all assets."""
        if unit_symbol is not None:
            return [ts for ts, _ in self.price_history.get(unit_symbol, [])]
        return sorted({ts for history in self.price_history.values() for ts, _ in history})

    def __repr__(self):
        points = sum(map(len, self.price_history.values()))
        return (f"TimeSeriesPricingSource({len(self.price_history)} assets, "
                f"{points} points, base={self.base_currency})")
