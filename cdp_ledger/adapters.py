"""
adapters.py - Collaborator Interfaces

The loan lifecycle is written once against these interfaces:

1. CollateralAsset - uniform transfer_in/transfer_out over the two kinds of
   collateral: NativeCollateral (value attached to the call) and
   TokenCollateral (pulled through an allowance granted to the escrow wallet).
2. SyntheticCurrency - mint on issue, burn on settlement. Only the escrow
   wallet may do either.
3. Liquidator - receives the auction hand-off and later calls back into
   exit_liquidation. AuctionHouse is the in-process implementation.
4. Treasury - receives swept residual collateral. LedgerTreasury keeps it in
   a ledger wallet.

Asset adapters add moves and state edits to a TransactionBuilder, so every
collateral and currency movement lands in the same atomic transaction as the
loan update that caused it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

from .core import (
    LedgerView, TransactionBuilder, LedgerError,
    UNIT_TYPE_NATIVE, UNIT_TYPE_TOKEN,
    InvalidAmount, NotFound, UnitNotRegistered,
)
from . import tokens


# ============================================================================
# COLLATERAL
# ============================================================================

@dataclass(frozen=True, slots=True)
class NativeCollateral:
    """
    The chain's native coin as collateral.

    Deposits are the value attached to the call: `attached` must equal the
    amount credited to the loan.
    """
    asset: str

    def transfer_in(
        self,
        builder: TransactionBuilder,
        payer: str,
        escrow: str,
        amount: int,
        attached: int = 0,
    ) -> None:
        if attached != amount:
            raise InvalidAmount(
                f"attached {attached} {self.asset} does not match deposit of {amount}"
            )
        tokens.transfer(builder, self.asset, payer, escrow, amount, f"deposit_{self.asset}")

    def transfer_out(self, builder: TransactionBuilder, escrow: str, to: str, amount: int) -> None:
        tokens.transfer(builder, self.asset, escrow, to, amount, f"release_{self.asset}")


@dataclass(frozen=True, slots=True)
class TokenCollateral:
    """
    An ERC20-shaped token as collateral.

    Deposits pull from the payer through the allowance the payer granted to
    the escrow wallet. No value may be attached.
    """
    asset: str

    def transfer_in(
        self,
        builder: TransactionBuilder,
        payer: str,
        escrow: str,
        amount: int,
        attached: int = 0,
    ) -> None:
        if attached:
            raise InvalidAmount(f"{self.asset} deposits cannot carry attached value")
        tokens.transfer_from(
            builder, self.asset, escrow, payer, escrow, amount, f"deposit_{self.asset}"
        )

    def transfer_out(self, builder: TransactionBuilder, escrow: str, to: str, amount: int) -> None:
        tokens.transfer(builder, self.asset, escrow, to, amount, f"release_{self.asset}")


CollateralAsset = Union[NativeCollateral, TokenCollateral]


def collateral_for(view: LedgerView, asset: str) -> CollateralAsset:
    """
    Pick the collateral variant from the ledger unit type.

    Raises:
        NotFound: no native or token unit named `asset`
    """
    try:
        unit = view.get_unit(asset)
    except UnitNotRegistered:
        raise NotFound(f"no asset unit {asset} in the ledger") from None
    if unit.unit_type == UNIT_TYPE_NATIVE:
        return NativeCollateral(asset)
    if unit.unit_type == UNIT_TYPE_TOKEN:
        return TokenCollateral(asset)
    raise NotFound(f"{asset} is a {unit.unit_type} unit, not a collateral asset")


# ============================================================================
# SYNTHETIC CURRENCY
# ============================================================================

@dataclass(frozen=True, slots=True)
class SyntheticCurrency:
    """Mint/burn access to the synthetic currency on behalf of `minter`."""
    symbol: str
    minter: str

    def mint(self, builder: TransactionBuilder, to: str, amount: int) -> None:
        tokens.mint(builder, self.symbol, self.minter, to, amount)

    def burn(self, builder: TransactionBuilder, holder: str, amount: int) -> None:
        tokens.burn(builder, self.symbol, self.minter, holder, amount)

    def pull(self, builder: TransactionBuilder, payer: str, amount: int) -> None:
        """Move `amount` from payer to the minter through the payer's allowance."""
        tokens.transfer_from(
            builder, self.symbol, self.minter, payer, self.minter, amount, f"repay_{self.symbol}"
        )


# ============================================================================
# LIQUIDATOR
# ============================================================================

@runtime_checkable
class Liquidator(Protocol):
    """
    External auction collaborator.

    `identity` is the caller identity the bank's liquidator role is set to.
    start_liquidation is invoked once per loan entering liquidation; a raise
    aborts the whole enter_liquidation operation.
    An optional liquidation_closed(loan_id) is called after every successful
    exit_liquidation, inside the same rollback scope.
    """
    identity: str

    def start_liquidation(
        self,
        loan_id: int,
        asset: str,
        collateral_amount: int,
        debt_amount: int,
        duration: int,
    ) -> None:
        ...


@dataclass(slots=True)
class Auction:
    """An open liquidation auction as handed off by the bank."""
    loan_id: int
    asset: str
    collateral_amount: int
    debt_amount: int
    duration: int


class AuctionHouse:
    """
    In-process liquidator.

    Records each hand-off as an open Auction. close() ends an auction by
    calling the bank's exit_liquidation as the liquidator role. The bank calls
    liquidation_closed() whenever a liquidation exits, so an auction closed
    through the bank directly is dropped as well. How the winning bid is found
    is outside this class.

    Example:
        house = AuctionHouse()
        bank.set_liquidator("admin", house)
        ...
        house.close(loan_id, collateral_paid_out=700, buyer="carol")
    """

    def __init__(self, identity: str = "liquidator", bank=None):
        self.identity = identity
        self.bank = bank
        self.auctions: Dict[int, Auction] = {}
        self.closed: List[int] = []

    def attach(self, bank) -> None:
        self.bank = bank

    def start_liquidation(
        self,
        loan_id: int,
        asset: str,
        collateral_amount: int,
        debt_amount: int,
        duration: int,
    ) -> None:
        if loan_id in self.auctions:
            raise LedgerError(f"auction for loan {loan_id} is already open")
        self.auctions[loan_id] = Auction(loan_id, asset, collateral_amount, debt_amount, duration)

    def close(self, loan_id: int, collateral_paid_out: int, buyer: str) -> None:
        """
        Finish the auction for `loan_id`, paying `collateral_paid_out` to `buyer`.

        The auction stays open if the bank rejects the exit.
        """
        if loan_id not in self.auctions:
            raise NotFound(f"no open auction for loan {loan_id}")
        if self.bank is None:
            raise LedgerError("auction house is not attached to a bank")
        self.bank.exit_liquidation(self.identity, loan_id, collateral_paid_out, buyer)
        self.liquidation_closed(loan_id)

    def liquidation_closed(self, loan_id: int) -> None:
        if self.auctions.pop(loan_id, None) is not None:
            self.closed.append(loan_id)


# ============================================================================
# TREASURY
# ============================================================================

@runtime_checkable
class Treasury(Protocol):
    """
    Sink for swept collateral.

    The bank moves funds to `wallet` in the ledger, then calls deposit() to
    notify the treasury; a raise rolls the sweep back.
    """
    wallet: str

    def deposit(self, asset: str, amount: int, memo: str) -> None:
        ...


@dataclass(frozen=True, slots=True)
class TreasuryReceipt:
    asset: str
    amount: int
    memo: str


@dataclass
class LedgerTreasury:
    """Treasury backed by a ledger wallet, keeping a receipt per deposit."""
    wallet: str = "treasury"
    receipts: List[TreasuryReceipt] = field(default_factory=list)

    def deposit(self, asset: str, amount: int, memo: str) -> None:
        if amount <= 0:
            raise InvalidAmount(f"deposit must be positive, got {amount}")
        self.receipts.append(TreasuryReceipt(asset, amount, memo))

    def total(self, asset: Optional[str] = None) -> int:
        return sum(r.amount for r in self.receipts if asset is None or r.asset == asset)
