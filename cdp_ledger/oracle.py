"""
oracle.py - Oracle Feed

The price authority of a CollateralBank. Reporters submit prices per asset;
publish() writes the median to the registry under the oracle role. sync()
bypasses reporters and copies prices straight from a PricingSource.

Example:
    feed = OracleFeed(bank, identity="oracle", reporters={"r1", "r2", "r3"})
    bank.set_oracle("admin", feed.identity)
    feed.submit("r1", "ETH", 199)
    feed.submit("r2", "ETH", 201)
    feed.submit("r3", "ETH", 250)
    feed.publish("ETH")   # 201
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from .core import InvalidAmount, NotFound, Unauthorized
from .pricing_source import PricingSource


def median_price(prices: Iterable[int]) -> int:
    """Lower median of integer prices."""
    ordered = sorted(prices)
    if not ordered:
        raise NotFound("no prices to aggregate")
    return ordered[(len(ordered) - 1) // 2]


class OracleFeed:
    """
    Aggregates reporter submissions and publishes them to a bank.

    Attributes:
        bank: The CollateralBank receiving prices
        identity: Caller identity holding the bank's oracle role
        reporters: Identities allowed to submit
        submissions: asset -> {reporter: price} awaiting publication
    """

    def __init__(self, bank, identity: str = "oracle", reporters: Optional[Iterable[str]] = None):
        self.bank = bank
        self.identity = identity
        self.reporters: Set[str] = set(reporters or ())
        self.submissions: Dict[str, Dict[str, int]] = {}
        self.published: Dict[str, int] = {}

    def add_reporter(self, reporter: str) -> None:
        self.reporters.add(reporter)

    def remove_reporter(self, reporter: str) -> None:
        self.reporters.discard(reporter)
        for prices in self.submissions.values():
            prices.pop(reporter, None)

    def submit(self, reporter: str, asset: str, price: int) -> None:
        """
        Record a reporter's price. A later submission replaces an earlier one.

        Raises:
            Unauthorized: reporter is not registered
            InvalidAmount: price is not a positive integer
        """
        if reporter not in self.reporters:
            raise Unauthorized(f"{reporter} is not a price reporter")
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise InvalidAmount(f"price must be a positive integer, got {price!r}")
        self.submissions.setdefault(asset, {})[reporter] = price

    def pending(self, asset: str) -> Dict[str, int]:
        return dict(self.submissions.get(asset, {}))

    def publish(self, asset: str) -> int:
        """
        Write the median submission for `asset` to the bank.

        Submissions are cleared only once the bank accepted the price.

        Raises:
            NotFound: no submissions for the asset, or the asset is not active
        """
        price = median_price(self.submissions.get(asset, {}).values())
        self.bank.set_price(self.identity, asset, price)
        self.submissions.pop(asset, None)
        self.published[asset] = price
        return price

    def sync(self, source: PricingSource, timestamp: datetime) -> Dict[str, int]:
        """
        Publish the source's price for every active collateral asset.

        Assets the source has no price for are left alone. Returns the prices
        written.
        """
        written = {}
        for descriptor in self.bank.collateral_assets(active_only=True):
            price = source.get_price(descriptor.asset, timestamp)
            if price is None or price == descriptor.price:
                continue
            self.bank.set_price(self.identity, descriptor.asset, price)
            self.published[descriptor.asset] = price
            written[descriptor.asset] = price
        return written
