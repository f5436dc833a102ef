"""
accounting.py - Fixed-point Collateral Math

Pure integer functions, no LedgerView:

    minimum = debt * ratio * scale // PRECISION // price
    payback = collateral * payment // debt

Multiplications happen before divisions, in exactly that order. Truncation
rounds the minimum down and the payback down; any remainder stays with the
loan.

compute_minimum_collateral() is the adapter that loads price, scale and ratio
from the ledger and calls the pure function.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .core import LedgerView, InvalidAmount, InvalidPrice
from .config import PRECISION, DEFAULT_COLLATERAL_RATIO, load_config
from .registry import load_descriptor


@dataclass(frozen=True, slots=True)
class LoanHealth:
    """
    Collateral position of a loan at the current price.

    Attributes:
        collateral_amount: Collateral held in escrow
        debt_amount: Outstanding synthetic currency
        minimum_collateral: Smallest collateral satisfying the ratio
        excess: Collateral above the minimum (0 if under)
        shortfall: Collateral missing to reach the minimum (0 if over)
        collateralization: Collateral value over debt in thousandths, None without debt
        liquidatable: True when collateral is strictly below the minimum
    """
    collateral_amount: int
    debt_amount: int
    minimum_collateral: int
    excess: int
    shortfall: int
    collateralization: Optional[int]
    liquidatable: bool


def calculate_minimum_collateral(
    debt_amount: int,
    collateral_ratio: int,
    decimals_scale: int,
    price: int,
) -> int:
    """
    Smallest collateral amount (base units) backing `debt_amount`.

    Raises:
        InvalidPrice: price is zero

    Example:
        >>> calculate_minimum_collateral(100, 1500, 10**18, 200)
        750000000000000000
    """
    if price == 0:
        raise InvalidPrice("collateral price is zero")
    return debt_amount * collateral_ratio * decimals_scale // PRECISION // price


def calculate_payback(collateral_amount: int, payment: int, debt_amount: int) -> int:
    """
    Collateral released for repaying `payment` of `debt_amount`.

    Example:
        >>> calculate_payback(1000, 40, 100)
        400
    """
    if debt_amount == 0:
        raise InvalidAmount("loan has no outstanding debt")
    return collateral_amount * payment // debt_amount


def calculate_health(
    collateral_amount: int,
    debt_amount: int,
    collateral_ratio: int,
    decimals_scale: int,
    price: int,
) -> LoanHealth:
    minimum = calculate_minimum_collateral(debt_amount, collateral_ratio, decimals_scale, price)
    collateralization = None
    if debt_amount:
        collateralization = collateral_amount * price * PRECISION // (debt_amount * decimals_scale)
    return LoanHealth(
        collateral_amount=collateral_amount,
        debt_amount=debt_amount,
        minimum_collateral=minimum,
        excess=max(collateral_amount - minimum, 0),
        shortfall=max(minimum - collateral_amount, 0),
        collateralization=collateralization,
        liquidatable=debt_amount > 0 and collateral_amount < minimum,
    )


def compute_minimum_collateral(view: LedgerView, asset: str, debt_amount: int) -> int:
    """
    Minimum collateral for `debt_amount` against `asset` at the current price
    and ratio. Inactive assets still price existing loans.
    """
    descriptor = load_descriptor(view, asset)
    config = load_config(view)
    return calculate_minimum_collateral(
        debt_amount, config.collateral_ratio, descriptor.decimals, descriptor.price
    )
