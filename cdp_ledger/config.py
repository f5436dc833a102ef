"""
config.py - Process-wide Parameters

BankConfig is injected when the bank is deployed and then lives in the BANK
unit state, next to the role holders, so every oracle update is an audited
ledger transaction:

    collateral_ratio       thousandths of debt value required as collateral
    liquidation_duration   seconds handed to the liquidator with each auction
    max_loan               debt cap per loan in synthetic base units
"""

from __future__ import annotations
from dataclasses import dataclass, asdict

from .core import (
    LedgerView, PendingTransaction, TransactionBuilder, TransactionOrigin,
    OriginType, Unit, BANK_UNIT, REGISTRY_UNIT,
    UNIT_TYPE_BANK, UNIT_TYPE_REGISTRY,
    InvalidAmount, state_unit,
)
from .roles import ROLE_ADMIN, ROLE_ORACLE, ROLE_LIQUIDATOR, require_role


# Fixed-point scale of the collateral ratio.
PRECISION = 1000
DEFAULT_COLLATERAL_RATIO = 1500
DEFAULT_LIQUIDATION_DURATION = 7200
DEFAULT_MAX_LOAN = 1_000_000


@dataclass(frozen=True, slots=True)
class BankConfig:
    """
    Deployment parameters of a CollateralBank.

    Attributes:
        currency: Symbol of the synthetic currency unit
        escrow_wallet: Wallet that holds collateral and mints the currency
        collateral_ratio: Required collateralization in thousandths (1500 = 1.5x)
        liquidation_duration: Auction length in seconds
        max_loan: Largest debt a single loan may carry
    """
    currency: str = "ETD"
    escrow_wallet: str = "bank"
    collateral_ratio: int = DEFAULT_COLLATERAL_RATIO
    liquidation_duration: int = DEFAULT_LIQUIDATION_DURATION
    max_loan: int = DEFAULT_MAX_LOAN

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if not self.escrow_wallet or not self.escrow_wallet.strip():
            raise ValueError("escrow_wallet cannot be empty")
        _check_ratio(self.collateral_ratio)
        _check_positive("liquidation_duration", self.liquidation_duration)
        _check_positive("max_loan", self.max_loan)


def _check_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmount(f"{name} must be a positive integer, got {value!r}")


def _check_ratio(ratio: int) -> None:
    _check_positive("collateral_ratio", ratio)
    if ratio < PRECISION:
        raise InvalidAmount(
            f"collateral_ratio must be at least {PRECISION} (1.0x), got {ratio}"
        )


# ============================================================================
# UNITS
# ============================================================================

def create_bank_unit(config: BankConfig, admin: str) -> Unit:
    """Create the BANK state unit holding parameters, roles and the loan counter."""
    if not admin or not admin.strip():
        raise ValueError("admin cannot be empty")
    state = asdict(config)
    state.update({
        ROLE_ADMIN: admin,
        ROLE_ORACLE: None,
        ROLE_LIQUIDATOR: None,
        'next_loan_id': 1,
        'nonce': 0,
    })
    return state_unit(BANK_UNIT, "Collateral Bank", UNIT_TYPE_BANK, state)


def create_registry_unit() -> Unit:
    """Create the empty collateral registry unit."""
    return state_unit(
        REGISTRY_UNIT, "Collateral Registry", UNIT_TYPE_REGISTRY, {'assets': {}, 'nonce': 0}
    )


def load_config(view: LedgerView) -> BankConfig:
    """Read the current parameters from the BANK unit."""
    raw = view.get_unit_state(BANK_UNIT)
    return BankConfig(
        currency=raw['currency'],
        escrow_wallet=raw['escrow_wallet'],
        collateral_ratio=raw['collateral_ratio'],
        liquidation_duration=raw['liquidation_duration'],
        max_loan=raw['max_loan'],
    )


# ============================================================================
# ORACLE PARAMETER UPDATES
# ============================================================================

def _compute_set_parameter(
    view: LedgerView, caller: str, name: str, value: int
) -> PendingTransaction:
    builder = TransactionBuilder(view)
    state = builder.update(BANK_UNIT, **{name: value})
    state['nonce'] = state.get('nonce', 0) + 1
    return builder.build(TransactionOrigin(
        OriginType.ORACLE, caller, BANK_UNIT, f"SET_{name.upper()}"
    ))


def compute_set_collateral_ratio(view: LedgerView, caller: str, ratio: int) -> PendingTransaction:
    """
    Update the collateral ratio (thousandths).

    Raises:
        Unauthorized: caller is not the oracle
        InvalidAmount: ratio below PRECISION
    """
    require_role(view, ROLE_ORACLE, caller)
    _check_ratio(ratio)
    return _compute_set_parameter(view, caller, 'collateral_ratio', ratio)


def compute_set_liquidation_duration(view: LedgerView, caller: str, duration: int) -> PendingTransaction:
    require_role(view, ROLE_ORACLE, caller)
    _check_positive("liquidation_duration", duration)
    return _compute_set_parameter(view, caller, 'liquidation_duration', duration)


def compute_set_max_loan(view: LedgerView, caller: str, max_loan: int) -> PendingTransaction:
    require_role(view, ROLE_ORACLE, caller)
    _check_positive("max_loan", max_loan)
    return _compute_set_parameter(view, caller, 'max_loan', max_loan)
