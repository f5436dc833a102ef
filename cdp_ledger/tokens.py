"""
tokens.py - Native Coin, ERC20-style Tokens and the Synthetic Currency

This module provides the asset units the engine moves around:
1. create_native_unit() - the chain's native coin (moved by attached value)
2. create_token_unit() - an ERC20-shaped collateral token with allowances
3. create_synthetic_unit() - the pegged synthetic currency (mint/burn by its minter)

Allowances live in the unit state:

    state['allowances'] = {owner: {spender: amount}}

Every token operation also bumps state['nonce'], so two otherwise identical
transfers are distinct transactions and never collapse under idempotency.

Builder helpers (transfer, transfer_from, approve, mint, burn) fold their
effects into a TransactionBuilder so the engine can combine them with loan
updates in one atomic transaction. The compute_* wrappers build standalone
PendingTransactions for direct use.
"""

from __future__ import annotations
from typing import Optional

from .core import (
    LedgerView, PendingTransaction, TransactionBuilder, TransactionOrigin,
    OriginType, Unit, UnitState,
    SYSTEM_WALLET, NATIVE_ASSET,
    UNIT_TYPE_NATIVE, UNIT_TYPE_TOKEN, UNIT_TYPE_SYNTHETIC,
    InvalidAmount, InsufficientAllowance, InsufficientFunds, TransferFailed, Unauthorized,
    _freeze_state,
)


ASSET_UNIT_TYPES = (UNIT_TYPE_NATIVE, UNIT_TYPE_TOKEN, UNIT_TYPE_SYNTHETIC)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def create_native_unit(
    symbol: str = NATIVE_ASSET,
    name: str = "Ether",
    decimals: int = 18,
) -> Unit:
    """
    Create the native coin unit.

    The native coin has no allowances: deposits are attached to the call that
    needs them. New coin enters circulation from SYSTEM_WALLET (genesis).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE,
        decimals=decimals,
        _frozen_state=_freeze_state({
            'minter': SYSTEM_WALLET,
            'nonce': 0,
        })
    )


def create_token_unit(
    symbol: str,
    name: str,
    decimals: int = 18,
    issuer: str = SYSTEM_WALLET,
) -> Unit:
    """
    Create an ERC20-shaped token unit.

    Args:
        symbol: Token identifier (also its collateral asset identifier)
        name: Human-readable name
        decimals: Display digits
        issuer: Wallet allowed to mint new supply

    Example:
        ledger.register_unit(create_token_unit("WBTC", "Wrapped Bitcoin", decimals=8))
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    if decimals < 0:
        raise ValueError(f"decimals cannot be negative, got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimals=decimals,
        _frozen_state=_freeze_state({
            'allowances': {},
            'minter': issuer,
            'nonce': 0,
        })
    )


def create_synthetic_unit(
    symbol: str,
    name: str,
    minter: str,
    decimals: int = 2,
) -> Unit:
    """
    Create the synthetic currency unit.

    The minter (the bank's escrow wallet) is the only wallet allowed to mint
    and burn. Holders move it like any ERC20 token.
    """
    if not minter or not minter.strip():
        raise ValueError("minter cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_SYNTHETIC,
        decimals=decimals,
        _frozen_state=_freeze_state({
            'allowances': {},
            'minter': minter,
            'nonce': 0,
        })
    )


# ============================================================================
# QUERIES
# ============================================================================

def get_allowance(view: LedgerView, symbol: str, owner: str, spender: str) -> int:
    """Amount `spender` may still pull from `owner`."""
    state = view.get_unit_state(symbol)
    return _allowance(state, owner, spender)


def _allowance(state: UnitState, owner: str, spender: str) -> int:
    return state.get('allowances', {}).get(owner, {}).get(spender, 0)


def _require_asset(view: LedgerView, symbol: str) -> Unit:
    unit = view.get_unit(symbol)
    if unit.unit_type not in ASSET_UNIT_TYPES:
        raise TransferFailed(f"{symbol} is not a transferable asset")
    return unit


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got {amount!r}")


def _bump(builder: TransactionBuilder, symbol: str) -> UnitState:
    state = builder.state(symbol)
    state['nonce'] = state.get('nonce', 0) + 1
    return state


def require_user_wallet(*wallets: str) -> None:
    """
    Reject SYSTEM_WALLET as a holder, payer or recipient.

    Raises:
        Unauthorized: one of `wallets` is SYSTEM_WALLET
    """
    if SYSTEM_WALLET in wallets:
        raise Unauthorized(f"{SYSTEM_WALLET} cannot act as a user wallet")


# ============================================================================
# BUILDER HELPERS
# ============================================================================

def _move(
    builder: TransactionBuilder,
    symbol: str,
    source: str,
    dest: str,
    amount: int,
    contract_id: str,
) -> None:
    _require_positive(amount)
    _require_asset(builder.view, symbol)
    held = builder.balance(source, symbol)
    if source != SYSTEM_WALLET and held < amount:
        raise InsufficientFunds(f"{source} holds {held} {symbol}, needs {amount}")
    builder.move(amount, symbol, source, dest, contract_id)
    _bump(builder, symbol)


def transfer(
    builder: TransactionBuilder,
    symbol: str,
    source: str,
    dest: str,
    amount: int,
    contract_id: str,
) -> None:
    """
    Add a direct transfer between two user wallets to the builder.

    Raises:
        InvalidAmount: amount is not a positive integer
        Unauthorized: source or dest is SYSTEM_WALLET
        InsufficientFunds: source balance is too small
    """
    require_user_wallet(source, dest)
    _move(builder, symbol, source, dest, amount, contract_id)


def transfer_from(
    builder: TransactionBuilder,
    symbol: str,
    spender: str,
    owner: str,
    dest: str,
    amount: int,
    contract_id: str,
) -> None:
    """
    Pull `amount` from `owner` to `dest` using `spender`'s allowance.

    Raises:
        Unauthorized: spender, owner or dest is SYSTEM_WALLET
        InsufficientAllowance: allowance below amount
        InsufficientFunds: owner balance below amount
        TransferFailed: the unit has no allowances
    """
    require_user_wallet(spender, owner, dest)
    _require_positive(amount)
    unit = _require_asset(builder.view, symbol)
    if unit.unit_type == UNIT_TYPE_NATIVE:
        raise TransferFailed(f"{symbol} is moved by attached value, not allowances")
    state = builder.state(symbol)
    allowed = _allowance(state, owner, spender)
    if allowed < amount:
        raise InsufficientAllowance(
            f"{spender} may pull {allowed} {symbol} from {owner}, needs {amount}"
        )
    transfer(builder, symbol, owner, dest, amount, contract_id)
    owner_allowances = state.setdefault('allowances', {}).setdefault(owner, {})
    remaining = allowed - amount
    if remaining:
        owner_allowances[spender] = remaining
    else:
        del owner_allowances[spender]
        if not owner_allowances:
            del state['allowances'][owner]


def approve(
    builder: TransactionBuilder,
    symbol: str,
    owner: str,
    spender: str,
    amount: int,
) -> None:
    """Set (not add to) the allowance of `spender` over `owner`'s balance."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmount(f"allowance must be a non-negative integer, got {amount!r}")
    require_user_wallet(owner, spender)
    unit = _require_asset(builder.view, symbol)
    if unit.unit_type == UNIT_TYPE_NATIVE:
        raise TransferFailed(f"{symbol} does not support allowances")
    state = _bump(builder, symbol)
    allowances = state.setdefault('allowances', {})
    if amount:
        allowances.setdefault(owner, {})[spender] = amount
    elif spender in allowances.get(owner, {}):
        del allowances[owner][spender]
        if not allowances[owner]:
            del allowances[owner]


def mint(builder: TransactionBuilder, symbol: str, minter: str, to: str, amount: int) -> None:
    """
    Create `amount` new units for `to`.

    Raises:
        Unauthorized: minter is not the unit's minter
    """
    state = builder.state(symbol)
    if state.get('minter') != minter:
        raise Unauthorized(f"{minter} cannot mint {symbol}")
    require_user_wallet(to)
    _move(builder, symbol, SYSTEM_WALLET, to, amount, f"mint_{symbol}")


def burn(builder: TransactionBuilder, symbol: str, minter: str, holder: str, amount: int) -> None:
    """Destroy `amount` units held by `holder` (only the minter may burn)."""
    state = builder.state(symbol)
    if state.get('minter') != minter:
        raise Unauthorized(f"{minter} cannot burn {symbol}")
    require_user_wallet(holder)
    _move(builder, symbol, holder, SYSTEM_WALLET, amount, f"burn_{symbol}")


# ============================================================================
# STANDALONE TRANSACTIONS
# ============================================================================

def _origin(caller: str, symbol: str, event: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, caller, symbol, event)


def compute_transfer(
    view: LedgerView, symbol: str, sender: str, to: str, amount: int
) -> PendingTransaction:
    """Transfer tokens or native coin from sender to `to`."""
    builder = TransactionBuilder(view)
    transfer(builder, symbol, sender, to, amount, f"transfer_{symbol}")
    return builder.build(_origin(sender, symbol, "TRANSFER"))


def compute_transfer_from(
    view: LedgerView, symbol: str, spender: str, owner: str, to: str, amount: int
) -> PendingTransaction:
    """Move tokens from `owner` to `to` on `spender`'s allowance."""
    builder = TransactionBuilder(view)
    transfer_from(builder, symbol, spender, owner, to, amount, f"transfer_from_{symbol}")
    return builder.build(_origin(spender, symbol, "TRANSFER_FROM"))


def compute_approve(
    view: LedgerView, symbol: str, owner: str, spender: str, amount: int
) -> PendingTransaction:
    """
    Grant `spender` an allowance over `owner`'s tokens.

    Example:
        ledger.execute(compute_approve(ledger, "ETD", "alice", "bank", 5000))
    """
    builder = TransactionBuilder(view)
    approve(builder, symbol, owner, spender, amount)
    return builder.build(_origin(owner, symbol, "APPROVE"))


def compute_mint(
    view: LedgerView, symbol: str, minter: str, to: str, amount: int
) -> PendingTransaction:
    """Issue new supply; for the native coin the minter is SYSTEM_WALLET."""
    builder = TransactionBuilder(view)
    mint(builder, symbol, minter, to, amount)
    return builder.build(TransactionOrigin(OriginType.SYSTEM, minter, symbol, "MINT"))


def compute_burn(
    view: LedgerView, symbol: str, minter: str, holder: str, amount: int
) -> PendingTransaction:
    builder = TransactionBuilder(view)
    burn(builder, symbol, minter, holder, amount)
    return builder.build(TransactionOrigin(OriginType.SYSTEM, minter, symbol, "BURN"))


def format_amount(view: LedgerView, symbol: str, amount: Optional[int]) -> str:
    """Human-readable rendering of a base-unit amount."""
    if amount is None:
        return "-"
    return view.get_unit(symbol).format(amount)
