"""
roles.py - Singleton Role Holders

Three roles guard the privileged operations:

    admin       - the deployer; initializes the other roles, sweeps residual collateral
    oracle      - registry writes, price updates, process parameters
    liquidator  - liquidation completion

Holders are stored in the BANK unit state. Each role is set exactly once; the
admin role is set when the bank unit is created.
"""

from __future__ import annotations
from typing import Optional

from .core import (
    LedgerView, PendingTransaction, TransactionBuilder, TransactionOrigin,
    OriginType, BANK_UNIT,
    AlreadyInitialized, Unauthorized,
)


ROLE_ADMIN = "admin"
ROLE_ORACLE = "oracle"
ROLE_LIQUIDATOR = "liquidator"
ROLES = (ROLE_ADMIN, ROLE_ORACLE, ROLE_LIQUIDATOR)


def get_role_holder(view: LedgerView, role: str) -> Optional[str]:
    """Return the identity holding `role`, or None if it was never set."""
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'")
    return view.get_unit_state(BANK_UNIT).get(role)


def has_role(view: LedgerView, role: str, caller: str) -> bool:
    holder = get_role_holder(view, role)
    return holder is not None and holder == caller


def require_role(view: LedgerView, role: str, caller: str) -> None:
    """
    Raise Unauthorized unless `caller` holds `role`.

    An unset role authorizes nobody.
    """
    if not has_role(view, role, caller):
        raise Unauthorized(f"{caller} is not the {role}")


def compute_initialize_role(
    view: LedgerView,
    caller: str,
    role: str,
    holder: str,
) -> PendingTransaction:
    """
    Set a role holder once.

    Raises:
        Unauthorized: caller is not the admin
        AlreadyInitialized: the role already has a holder
        ValueError: unknown role or empty holder

    Example:
        ledger.execute(compute_initialize_role(ledger, "admin", ROLE_ORACLE, "oracle"))
    """
    if not holder or not holder.strip():
        raise ValueError("role holder cannot be empty")
    require_role(view, ROLE_ADMIN, caller)
    if get_role_holder(view, role) is not None:
        raise AlreadyInitialized(f"{role} is already set")

    builder = TransactionBuilder(view)
    state = builder.update(BANK_UNIT, **{role: holder})
    state['nonce'] = state.get('nonce', 0) + 1
    return builder.build(TransactionOrigin(
        OriginType.SYSTEM, caller, BANK_UNIT, f"INIT_{role.upper()}"
    ))
