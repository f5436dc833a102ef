"""
loans.py - Collateralized Loan Units

Each loan is a LOAN_<id> state unit. Collateral sits in the escrow wallet and
the debt is synthetic currency minted to the recipient; the loan unit records
how much of each belongs to it.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (explicit inputs):
   - Loan: immutable snapshot of one loan record

2. ADAPTER FUNCTIONS (load_loan, to_state_dict):
   - The only place that reads a loan out of a LedgerView

3. COMPUTE FUNCTIONS (compute_*):
   - Load, check, and return a PendingTransaction holding the loan update
     together with every collateral and currency movement it causes

State machine:

    ACTIVE ──► UNDER_LIQUIDATION ──► LIQUIDATED
      │
      └──────► SETTLED

SETTLED and LIQUIDATED are terminal: no transition leaves them. The recipient
may still withdraw what a LIQUIDATED loan holds. Loans are never deleted.

Key Formulas:
    minimum = debt * ratio * scale // PRECISION // price
    payback = collateral * payment // debt
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .core import (
    LedgerView, PendingTransaction, TransactionBuilder, TransactionOrigin,
    OriginType, Unit, BANK_UNIT, SYSTEM_WALLET, MAX_LOAN_ID, UNIT_TYPE_LOAN,
    LedgerError, InvalidAmount, InsufficientCollateral, SufficientCollateral,
    InvalidLoanState, ExceededMaxLoan, NotFound, Unauthorized, UnitNotRegistered,
    state_unit,
)
from .accounting import (
    calculate_minimum_collateral, calculate_payback, compute_minimum_collateral,
)
from .adapters import SyntheticCurrency, collateral_for
from .config import load_config
from .registry import load_active_descriptor
from .roles import ROLE_ADMIN, ROLE_LIQUIDATOR, require_role
from .tokens import require_user_wallet


LOAN_PREFIX = "LOAN_"


class LoanState(str, Enum):
    ACTIVE = "ACTIVE"
    UNDER_LIQUIDATION = "UNDER_LIQUIDATION"
    LIQUIDATED = "LIQUIDATED"
    SETTLED = "SETTLED"


TERMINAL_STATES = frozenset({LoanState.SETTLED, LoanState.LIQUIDATED})


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Snapshot of one loan.

    recipient and collateral_asset never change after issuance.
    debt_amount is zero exactly when the loan is SETTLED or LIQUIDATED.
    """
    loan_id: int
    recipient: str
    collateral_asset: str
    collateral_amount: int
    debt_amount: int
    state: LoanState
    issued_at: Optional[datetime] = None
    liquidation_started_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    swept_collateral: int = 0

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def loan_symbol(loan_id: int) -> str:
    return f"{LOAN_PREFIX}{loan_id}"


def loan_id_from_symbol(symbol: str) -> int:
    if not symbol.startswith(LOAN_PREFIX):
        raise ValueError(f"{symbol} is not a loan symbol")
    return int(symbol[len(LOAN_PREFIX):])


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_loan(view: LedgerView, loan_id: int) -> Loan:
    """
    Read a loan record.

    Raises:
        NotFound: no loan with this identifier was ever issued
    """
    try:
        raw = view.get_unit_state(loan_symbol(loan_id))
    except UnitNotRegistered:
        raise NotFound(f"loan {loan_id} does not exist") from None
    return Loan(
        loan_id=raw['loan_id'],
        recipient=raw['recipient'],
        collateral_asset=raw['collateral_asset'],
        collateral_amount=raw['collateral_amount'],
        debt_amount=raw['debt_amount'],
        state=LoanState(raw['state']),
        issued_at=raw.get('issued_at'),
        liquidation_started_at=raw.get('liquidation_started_at'),
        closed_at=raw.get('closed_at'),
        swept_collateral=raw.get('swept_collateral', 0),
    )


def to_state_dict(loan: Loan) -> Dict[str, Any]:
    """Inverse of load_loan(): the unit state stored for a loan."""
    return {
        'loan_id': loan.loan_id,
        'recipient': loan.recipient,
        'collateral_asset': loan.collateral_asset,
        'collateral_amount': loan.collateral_amount,
        'debt_amount': loan.debt_amount,
        'state': loan.state.value,
        'issued_at': loan.issued_at,
        'liquidation_started_at': loan.liquidation_started_at,
        'closed_at': loan.closed_at,
        'swept_collateral': loan.swept_collateral,
    }


def create_loan_unit(loan: Loan) -> Unit:
    return state_unit(
        loan.symbol,
        f"Loan {loan.loan_id} ({loan.collateral_asset})",
        UNIT_TYPE_LOAN,
        to_state_dict(loan),
    )


def get_loans(
    view: LedgerView,
    recipient: Optional[str] = None,
    state: Optional[LoanState] = None,
) -> List[Loan]:
    """All loans in identifier order, optionally filtered by recipient and state."""
    loans = []
    for symbol in view.list_units():
        if not symbol.startswith(LOAN_PREFIX):
            continue
        if view.get_unit(symbol).unit_type != UNIT_TYPE_LOAN:
            continue
        loan = load_loan(view, loan_id_from_symbol(symbol))
        if recipient is not None and loan.recipient != recipient:
            continue
        if state is not None and loan.state != state:
            continue
        loans.append(loan)
    return sorted(loans, key=lambda l: l.loan_id)


# ============================================================================
# HELPERS
# ============================================================================

def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmount(f"{name} must be a positive integer, got {value!r}")


def _require_state(loan: Loan, *allowed: LoanState) -> None:
    if loan.state not in allowed:
        expected = " or ".join(s.value for s in allowed)
        raise InvalidLoanState(
            f"loan {loan.loan_id} is {loan.state.value}, expected {expected}"
        )


def _write_loan(builder: TransactionBuilder, loan: Loan) -> None:
    builder.update(loan.symbol, **to_state_dict(loan))


def _origin(origin_type: OriginType, caller: str, loan_id: int, event: str) -> TransactionOrigin:
    return TransactionOrigin(origin_type, caller, loan_symbol(loan_id), event)


# ============================================================================
# LIFECYCLE OPERATIONS
# ============================================================================

def compute_issue_loan(
    view: LedgerView,
    borrower: str,
    debt_amount: int,
    collateral_asset: str,
    deposited_collateral: int,
    attached: int = 0,
) -> PendingTransaction:
    """
    Open a loan: take the collateral into escrow and mint the debt to the borrower.

    The new loan identifier is the BANK unit's next_loan_id at build time.

    Args:
        view: Read-only ledger access
        borrower: Recipient of the minted currency and owner of the loan
        debt_amount: Synthetic currency to mint (base units)
        collateral_asset: Registry asset backing the loan
        deposited_collateral: Collateral credited to the loan
        attached: Native coin attached to the call (native collateral only)

    Raises:
        Unauthorized: borrower is SYSTEM_WALLET
        InvalidAmount: debt_amount is zero, or attached value does not match
        ExceededMaxLoan: debt_amount above max_loan
        NotFound: collateral_asset is not active
        InsufficientCollateral: deposit below the minimum collateral
        InsufficientAllowance, TransferFailed: the deposit cannot be taken

    Example:
        pending = compute_issue_loan(ledger, "alice", 100, "ETH", 750 * 10**15,
                                     attached=750 * 10**15)
    """
    require_user_wallet(borrower)
    _require_positive("debt_amount", debt_amount)
    if isinstance(deposited_collateral, bool) or not isinstance(deposited_collateral, int) \
            or deposited_collateral < 0:
        raise InvalidAmount(f"deposited_collateral must be a non-negative integer, got {deposited_collateral!r}")
    config = load_config(view)
    if debt_amount > config.max_loan:
        raise ExceededMaxLoan(f"debt {debt_amount} exceeds the cap of {config.max_loan}")
    descriptor = load_active_descriptor(view, collateral_asset)
    minimum = calculate_minimum_collateral(
        debt_amount, config.collateral_ratio, descriptor.decimals, descriptor.price
    )
    if deposited_collateral < minimum:
        raise InsufficientCollateral(
            f"deposit of {deposited_collateral} {collateral_asset} is below the minimum {minimum}"
        )

    builder = TransactionBuilder(view)
    bank = builder.state(BANK_UNIT)
    loan_id = bank['next_loan_id']
    if loan_id > MAX_LOAN_ID:
        raise LedgerError("loan identifiers exhausted")
    bank['next_loan_id'] = loan_id + 1

    if deposited_collateral or attached:
        collateral_for(view, collateral_asset).transfer_in(
            builder, borrower, config.escrow_wallet, deposited_collateral, attached
        )
    SyntheticCurrency(config.currency, config.escrow_wallet).mint(builder, borrower, debt_amount)

    loan = Loan(
        loan_id=loan_id,
        recipient=borrower,
        collateral_asset=collateral_asset,
        collateral_amount=deposited_collateral,
        debt_amount=debt_amount,
        state=LoanState.ACTIVE,
        issued_at=view.current_time,
    )
    builder.create(create_loan_unit(loan))
    return builder.build(_origin(OriginType.USER_ACTION, borrower, loan_id, "ISSUE"))


def compute_increase_collateral(
    view: LedgerView,
    caller: str,
    loan_id: int,
    amount: int,
    attached: int = 0,
) -> PendingTransaction:
    """
    Add collateral to an ACTIVE loan. Anyone may top up.

    Raises:
        Unauthorized: caller is SYSTEM_WALLET
        InvalidLoanState: loan is not ACTIVE
        InvalidAmount: amount is zero, or attached value does not match
    """
    require_user_wallet(caller)
    loan = load_loan(view, loan_id)
    _require_state(loan, LoanState.ACTIVE)
    _require_positive("amount", amount)
    config = load_config(view)

    builder = TransactionBuilder(view)
    collateral_for(view, loan.collateral_asset).transfer_in(
        builder, caller, config.escrow_wallet, amount, attached
    )
    _write_loan(builder, replace(loan, collateral_amount=loan.collateral_amount + amount))
    return builder.build(_origin(OriginType.USER_ACTION, caller, loan_id, "INCREASE_COLLATERAL"))


def compute_decrease_collateral(
    view: LedgerView,
    caller: str,
    loan_id: int,
    amount: int,
) -> PendingTransaction:
    """
    Withdraw collateral back to the loan's recipient.

    On a LIQUIDATED loan this recovers what the auction left over. A SETTLED
    loan holds nothing, so any amount fails the amount check.

    Raises:
        Unauthorized: caller is not the recipient
        InvalidLoanState: loan is under liquidation
        InvalidAmount: amount is zero or more than the loan holds
        InsufficientCollateral: the remainder would be below the minimum
    """
    loan = load_loan(view, loan_id)
    if caller != loan.recipient:
        raise Unauthorized(f"{caller} does not own loan {loan_id}")
    if loan.state == LoanState.UNDER_LIQUIDATION:
        raise InvalidLoanState(f"loan {loan_id} is {loan.state.value}")
    _require_positive("amount", amount)
    if amount > loan.collateral_amount:
        raise InvalidAmount(
            f"loan {loan_id} holds {loan.collateral_amount}, cannot withdraw {amount}"
        )
    remaining = loan.collateral_amount - amount
    if loan.debt_amount:
        minimum = compute_minimum_collateral(view, loan.collateral_asset, loan.debt_amount)
        if remaining < minimum:
            raise InsufficientCollateral(
                f"remaining collateral {remaining} is below the minimum {minimum}"
            )
    config = load_config(view)

    builder = TransactionBuilder(view)
    _write_loan(builder, replace(loan, collateral_amount=remaining))
    collateral_for(view, loan.collateral_asset).transfer_out(
        builder, config.escrow_wallet, loan.recipient, amount
    )
    return builder.build(_origin(OriginType.USER_ACTION, caller, loan_id, "DECREASE_COLLATERAL"))


def compute_settle(view: LedgerView, payer: str, loan_id: int, payment: int) -> PendingTransaction:
    """
    Repay part or all of a loan's debt.

    The payment is pulled from `payer` through the allowance granted to the
    escrow wallet and burned. Collateral is released to the recipient pro rata,
    rounded down; repaying the last of the debt releases everything left.
    Anyone may pay.

    Raises:
        Unauthorized: payer is SYSTEM_WALLET
        InvalidLoanState: loan is not ACTIVE
        InvalidAmount: payment is zero or above the outstanding debt
        InsufficientAllowance, TransferFailed: the payment cannot be pulled

    Example:
        # debt 100, collateral 1000: paying 40 releases 400
        pending = compute_settle(ledger, "alice", 1, 40)
    """
    require_user_wallet(payer)
    loan = load_loan(view, loan_id)
    _require_state(loan, LoanState.ACTIVE)
    _require_positive("payment", payment)
    if payment > loan.debt_amount:
        raise InvalidAmount(f"payment {payment} exceeds debt {loan.debt_amount}")

    payback = calculate_payback(loan.collateral_amount, payment, loan.debt_amount)
    debt_left = loan.debt_amount - payment
    updated = replace(
        loan,
        collateral_amount=loan.collateral_amount - payback,
        debt_amount=debt_left,
    )
    if debt_left == 0:
        updated = replace(updated, state=LoanState.SETTLED, closed_at=view.current_time)
    config = load_config(view)

    builder = TransactionBuilder(view)
    _write_loan(builder, updated)
    currency = SyntheticCurrency(config.currency, config.escrow_wallet)
    currency.pull(builder, payer, payment)
    currency.burn(builder, config.escrow_wallet, payment)
    if payback:
        collateral_for(view, loan.collateral_asset).transfer_out(
            builder, config.escrow_wallet, loan.recipient, payback
        )
    return builder.build(_origin(OriginType.USER_ACTION, payer, loan_id, "SETTLE"))


def compute_enter_liquidation(
    view: LedgerView,
    loan_id: int,
    caller: str = SYSTEM_WALLET,
) -> PendingTransaction:
    """
    Freeze an under-collateralized loan for auction.

    Anyone may trigger it; the hand-off to the liquidator happens after the
    transaction is applied.

    Raises:
        InvalidLoanState: loan is not ACTIVE
        SufficientCollateral: collateral is at or above the minimum
    """
    loan = load_loan(view, loan_id)
    _require_state(loan, LoanState.ACTIVE)
    minimum = compute_minimum_collateral(view, loan.collateral_asset, loan.debt_amount)
    if loan.collateral_amount >= minimum:
        raise SufficientCollateral(
            f"loan {loan_id} holds {loan.collateral_amount}, minimum is {minimum}"
        )

    builder = TransactionBuilder(view)
    _write_loan(builder, replace(
        loan, state=LoanState.UNDER_LIQUIDATION, liquidation_started_at=view.current_time
    ))
    return builder.build(_origin(OriginType.USER_ACTION, caller, loan_id, "ENTER_LIQUIDATION"))


def compute_exit_liquidation(
    view: LedgerView,
    caller: str,
    loan_id: int,
    collateral_paid_out: int,
    buyer: str,
) -> PendingTransaction:
    """
    Close a liquidation: pay the buyer, clear the debt, mark LIQUIDATED.

    Collateral left after the payout stays recorded on the loan until the
    admin sweeps it (compute_sweep_residual).

    Raises:
        Unauthorized: caller is not the liquidator, or buyer is SYSTEM_WALLET
        InvalidLoanState: loan is not UNDER_LIQUIDATION
        InvalidAmount: payout above the loan's collateral
    """
    require_role(view, ROLE_LIQUIDATOR, caller)
    require_user_wallet(buyer)
    loan = load_loan(view, loan_id)
    _require_state(loan, LoanState.UNDER_LIQUIDATION)
    if isinstance(collateral_paid_out, bool) or not isinstance(collateral_paid_out, int) \
            or collateral_paid_out < 0:
        raise InvalidAmount(f"payout must be a non-negative integer, got {collateral_paid_out!r}")
    if collateral_paid_out > loan.collateral_amount:
        raise InvalidAmount(
            f"payout {collateral_paid_out} exceeds collateral {loan.collateral_amount}"
        )
    config = load_config(view)

    builder = TransactionBuilder(view)
    _write_loan(builder, replace(
        loan,
        collateral_amount=loan.collateral_amount - collateral_paid_out,
        debt_amount=0,
        state=LoanState.LIQUIDATED,
        closed_at=view.current_time,
    ))
    if collateral_paid_out:
        collateral_for(view, loan.collateral_asset).transfer_out(
            builder, config.escrow_wallet, buyer, collateral_paid_out
        )
    return builder.build(_origin(OriginType.LIQUIDATOR, caller, loan_id, "EXIT_LIQUIDATION"))


def compute_sweep_residual(
    view: LedgerView,
    caller: str,
    loan_id: int,
    treasury_wallet: str,
) -> PendingTransaction:
    """
    Move the collateral left on a LIQUIDATED loan to the treasury.

    The loan stays LIQUIDATED; swept_collateral records the amount.

    Raises:
        Unauthorized: caller is not the admin
        InvalidLoanState: loan is not LIQUIDATED
        InvalidAmount: nothing left to sweep
    """
    require_role(view, ROLE_ADMIN, caller)
    loan = load_loan(view, loan_id)
    _require_state(loan, LoanState.LIQUIDATED)
    residual = loan.collateral_amount
    if residual == 0:
        raise InvalidAmount(f"loan {loan_id} has no residual collateral")
    config = load_config(view)

    builder = TransactionBuilder(view)
    _write_loan(builder, replace(
        loan, collateral_amount=0, swept_collateral=loan.swept_collateral + residual
    ))
    collateral_for(view, loan.collateral_asset).transfer_out(
        builder, config.escrow_wallet, treasury_wallet, residual
    )
    return builder.build(_origin(OriginType.SYSTEM, caller, loan_id, "SWEEP_RESIDUAL"))


# ============================================================================
# TRANSACT INTERFACE
# ============================================================================

def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    **kwargs
) -> PendingTransaction:
    """
    Route a lifecycle event for an existing loan to its compute function.

    Args:
        view: Read-only ledger access
        symbol: Loan unit symbol (LOAN_<id>)
        event_type: Type of event:
            - INCREASE_COLLATERAL: requires 'caller', 'amount' (optional 'attached')
            - DECREASE_COLLATERAL: requires 'caller', 'amount'
            - SETTLE: requires 'payer', 'payment'
            - ENTER_LIQUIDATION: optional 'caller'
            - EXIT_LIQUIDATION: requires 'caller', 'collateral_paid_out', 'buyer'
            - SWEEP_RESIDUAL: requires 'caller', 'treasury_wallet'
        **kwargs: Event-specific parameters

    Example:
        pending = transact(ledger, "LOAN_1", "SETTLE", payer="alice", payment=40)
    """
    loan_id = loan_id_from_symbol(symbol)

    def need(name: str):
        value = kwargs.get(name)
        if value is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
        return value

    if event_type == 'INCREASE_COLLATERAL':
        return compute_increase_collateral(
            view, need('caller'), loan_id, need('amount'), kwargs.get('attached', 0)
        )
    elif event_type == 'DECREASE_COLLATERAL':
        return compute_decrease_collateral(view, need('caller'), loan_id, need('amount'))
    elif event_type == 'SETTLE':
        return compute_settle(view, need('payer'), loan_id, need('payment'))
    elif event_type == 'ENTER_LIQUIDATION':
        return compute_enter_liquidation(view, loan_id, kwargs.get('caller', SYSTEM_WALLET))
    elif event_type == 'EXIT_LIQUIDATION':
        return compute_exit_liquidation(
            view, need('caller'), loan_id, need('collateral_paid_out'), need('buyer')
        )
    elif event_type == 'SWEEP_RESIDUAL':
        return compute_sweep_residual(view, need('caller'), loan_id, need('treasury_wallet'))
    else:
        raise ValueError(f"Unknown event type '{event_type}' for loan {symbol}")
