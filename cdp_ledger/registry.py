"""
registry.py - Collateral Registry

Tracks which collateral assets new loans may use, with their oracle price and
base-unit scale. The registry is one state unit:

    COLLATERAL_REGISTRY.state = {
        'assets': {asset: {'is_active': bool, 'price': int, 'decimals': int, 'symbol': str}},
        'nonce': int,
    }

`decimals` is the multiplicative base-unit scale (10**18 for an 18-digit
token), not a digit count. Entries are never deleted: deregistering flips
is_active so existing loans keep reading the last price.

All writes are restricted to the oracle role.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List

from .core import (
    LedgerView, PendingTransaction, TransactionBuilder, TransactionOrigin,
    OriginType, REGISTRY_UNIT,
    UNIT_TYPE_NATIVE, UNIT_TYPE_TOKEN,
    AlreadyExists, InvalidAmount, NotFound, UnitNotRegistered,
)
from .roles import ROLE_ORACLE, require_role


COLLATERAL_UNIT_TYPES = (UNIT_TYPE_NATIVE, UNIT_TYPE_TOKEN)


@dataclass(frozen=True, slots=True)
class CollateralDescriptor:
    """Registry entry for one collateral asset."""
    asset: str
    is_active: bool
    price: int
    decimals: int
    symbol: str


def load_descriptor(view: LedgerView, asset: str) -> CollateralDescriptor:
    """
    Read a registry entry, active or not.

    Raises:
        NotFound: the asset was never registered
    """
    entry = view.get_unit_state(REGISTRY_UNIT).get('assets', {}).get(asset)
    if entry is None:
        raise NotFound(f"collateral {asset} is not registered")
    return CollateralDescriptor(
        asset=asset,
        is_active=entry['is_active'],
        price=entry['price'],
        decimals=entry['decimals'],
        symbol=entry['symbol'],
    )


def load_active_descriptor(view: LedgerView, asset: str) -> CollateralDescriptor:
    """Like load_descriptor, but an inactive entry is NotFound as well."""
    descriptor = load_descriptor(view, asset)
    if not descriptor.is_active:
        raise NotFound(f"collateral {asset} is not active")
    return descriptor


def list_collateral(view: LedgerView, active_only: bool = True) -> List[CollateralDescriptor]:
    """All registry entries sorted by asset identifier."""
    registry = view.get_unit_state(REGISTRY_UNIT).get('assets', {})
    descriptors = [load_descriptor(view, asset) for asset in sorted(registry)]
    if active_only:
        return [d for d in descriptors if d.is_active]
    return descriptors


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmount(f"{name} must be a positive integer, got {value!r}")


def _origin(caller: str, event: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.ORACLE, caller, REGISTRY_UNIT, event)


def _entries(builder: TransactionBuilder) -> dict:
    """Working copy of the asset entries; every registry write bumps the nonce."""
    state = builder.state(REGISTRY_UNIT)
    state['nonce'] = state.get('nonce', 0) + 1
    return state.setdefault('assets', {})


def compute_register(
    view: LedgerView,
    caller: str,
    asset: str,
    price: int,
    decimals: int,
    symbol: str,
) -> PendingTransaction:
    """
    Activate a collateral asset with the given parameters.

    Re-registering a deregistered asset overwrites its entry.

    Raises:
        Unauthorized: caller is not the oracle
        NotFound: no native or token unit named `asset` exists in the ledger
        AlreadyExists: the asset is already active
        InvalidAmount: price or decimals is zero

    Example:
        ledger.execute(compute_register(ledger, "oracle", "ETH", 200, 10**18, "ETH"))
    """
    require_role(view, ROLE_ORACLE, caller)
    try:
        unit = view.get_unit(asset)
    except UnitNotRegistered:
        raise NotFound(f"no asset unit {asset} in the ledger") from None
    if unit.unit_type not in COLLATERAL_UNIT_TYPES:
        raise NotFound(f"{asset} is a {unit.unit_type} unit, not a collateral asset")

    builder = TransactionBuilder(view)
    entries = _entries(builder)
    existing = entries.get(asset)
    if existing is not None and existing['is_active']:
        raise AlreadyExists(f"collateral {asset} is already active")
    _require_positive("price", price)
    _require_positive("decimals", decimals)

    entries[asset] = {
        'is_active': True,
        'price': price,
        'decimals': decimals,
        'symbol': symbol,
    }
    return builder.build(_origin(caller, "REGISTER"))


def compute_deregister(view: LedgerView, caller: str, asset: str) -> PendingTransaction:
    """
    Stop new loans against `asset`. Existing loans are unaffected.

    Raises:
        Unauthorized: caller is not the oracle
        NotFound: the asset is not active
    """
    require_role(view, ROLE_ORACLE, caller)
    load_active_descriptor(view, asset)
    builder = TransactionBuilder(view)
    _entries(builder)[asset]['is_active'] = False
    return builder.build(_origin(caller, "DEREGISTER"))


def compute_set_price(view: LedgerView, caller: str, asset: str, new_price: int) -> PendingTransaction:
    """
    Overwrite the price of an active asset.

    Raises:
        Unauthorized: caller is not the oracle
        NotFound: the asset is not active
        InvalidAmount: new_price is zero
    """
    require_role(view, ROLE_ORACLE, caller)
    load_active_descriptor(view, asset)
    _require_positive("price", new_price)
    builder = TransactionBuilder(view)
    _entries(builder)[asset]['price'] = new_price
    return builder.build(_origin(caller, "SET_PRICE"))
