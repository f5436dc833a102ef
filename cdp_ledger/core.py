"""
core.py - Shared types for the collateral bank's ledger

Everything the engine exchanges between its pure compute functions and the
stateful Ledger lives here:

- LedgerView, the read-only surface compute functions are given
- Move, UnitStateChange and TransactionOrigin, the parts of a transaction
- PendingTransaction (not yet executed) and Transaction (logged)
- TransactionBuilder, which lets several helpers add to one transaction
- Unit, the definition of a coin, token, loan or state holder
- the LedgerError family raised by the engine

Quantities are plain ints in base units. Nothing in the engine uses floats.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Source of minted and sink of burned units; never balance-checked.
SYSTEM_WALLET = "system"

NATIVE_ASSET = "ETH"

UNIT_TYPE_NATIVE = "NATIVE"
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_SYNTHETIC = "SYNTHETIC"
UNIT_TYPE_LOAN = "LOAN"
UNIT_TYPE_REGISTRY = "COLLATERAL_REGISTRY"
UNIT_TYPE_BANK = "BANK"

# Singleton state holders: parameters and roles, and the collateral registry.
BANK_UNIT = "BANK"
REGISTRY_UNIT = "COLLATERAL_REGISTRY"

# Loan identifiers stay 64-bit safe.
MAX_LOAN_ID = 2 ** 64 - 1


# ============================================================================
# TYPE ALIASES
# ============================================================================

Positions = Dict[str, int]      # wallet -> quantity, for one unit
BalanceMap = Dict[str, int]     # unit -> quantity, for one wallet
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a compute function may read.

    Ledger satisfies this protocol directly; tests use FakeView, which has no
    mutation methods at all.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """Quantity of unit_symbol held by wallet_id, 0 when none."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """A copy; editing it does not touch the ledger."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def list_units(self) -> List[str]:
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    What Ledger.execute did with a pending transaction.

    A REJECTED result leaves the ledger untouched; the reason is kept in
    Ledger.last_rejection. ALREADY_APPLIED means the same intent was logged
    earlier and nothing happened this time.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    USER_ACTION = "user_action"           # borrower, payer, token holder
    ORACLE = "oracle"                     # prices and parameters
    LIQUIDATOR = "liquidator"
    SYSTEM = "system"                     # deployment, roles, minting
    CONTRACT = "contract"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Root of every error the collateral bank raises on purpose."""


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class InvalidAmount(LedgerError, ValueError):
    """Zero or out-of-range numeric argument."""


class InsufficientCollateral(LedgerError):
    """Collateral below the computed minimum for the debt."""


class SufficientCollateral(LedgerError):
    """Liquidation attempted on a loan that is adequately collateralized."""


class InsufficientAllowance(LedgerError):
    """A token pull exceeded the allowance granted to the spender."""


class TransferFailed(LedgerError):
    """A collateral or currency movement could not be applied."""


class InsufficientFunds(TransferFailed):
    """The source wallet holds less than the amount to move."""


class Unauthorized(LedgerError):
    """Caller does not hold the role required for the operation."""


class InvalidLoanState(LedgerError):
    """Operation attempted from the wrong lifecycle state."""


class ExceededMaxLoan(LedgerError):
    """Requested debt exceeds the process-wide cap."""


class AlreadyExists(LedgerError):
    """Registry entry is already active."""


class NotFound(LedgerError):
    """Registry entry or loan does not exist or is inactive."""


class AlreadyInitialized(LedgerError):
    """A singleton role was already set."""


class InvalidPrice(LedgerError, ZeroDivisionError):
    """A zero price reached the minimum-collateral division."""


DivisionByZero = InvalidPrice


# ============================================================================
# TRANSACTION PARTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who asked for a transaction and for which operation.

    source_id is the caller (a wallet or role holder); unit_symbol and
    event_type name the unit and operation, e.g. LOAN_3 / SETTLE.
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        text = f"Origin({self.origin_type.value}:{self.source_id}"
        if self.unit_symbol:
            text += f", unit={self.unit_symbol}"
        if self.event_type:
            text += f", event={self.event_type}"
        return text + ")"


@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """Full before and after snapshots of one unit's state."""
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """{key: (before, after)} for every key whose value differs."""
        before = self.old_state if isinstance(self.old_state, dict) else {}
        after = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (before.get(key), after.get(key))
            for key in before.keys() | after.keys()
            if before.get(key) != after.get(key)
        }


@dataclass(frozen=True, slots=True)
class Move:
    """
    quantity base units of unit_symbol from source to dest.

    contract_id names the operation that produced the move (``issue:3``,
    ``transfer``), so the log shows why value travelled.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        for name in ('source', 'dest', 'unit_symbol', 'contract_id'):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int base units, got {self.quantity!r}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError(f"Move source and dest must be different, both are {self.source}")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


_SCALAR_TAGS = (
    (Enum, lambda v: f"E:{v.value}"),
    (int, lambda v: f"I:{v}"),
    (Decimal, lambda v: f"D:{v.normalize()}"),
    (str, lambda v: f"S:{v}"),
    (datetime, lambda v: f"T:{v.isoformat()}"),
)


def _canonicalize(value: Any) -> str:
    """Stable text form of a state value; dict and set ordering never matter."""
    if value is None:
        return "null"
    if value is True or value is False:
        return str(value).lower()
    for kind, render in _SCALAR_TAGS:
        if isinstance(value, kind):
            return render(value)
    if isinstance(value, dict):
        pairs = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(_canonicalize(k) + ":" + _canonicalize(v) for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonicalize, value)) + "]"
    if isinstance(value, (set, frozenset)):
        return "<" + ",".join(map(_canonicalize, sorted(value, key=str))) + ">"
    return f"R:{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """sha256 prefix over what a transaction does; its timestamp is left out."""
    digest = hashlib.sha256()

    def feed(*parts: Any) -> None:
        digest.update("|".join(str(p) for p in parts).encode())
        digest.update(b"\n")

    feed("origin", origin.origin_type.value, origin.source_id,
         origin.unit_symbol or "", origin.event_type or "")
    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        feed("create", unit.symbol, unit.unit_type)
    move_keys = sorted(
        (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id) for m in moves
    )
    for key in move_keys:
        feed("move", *key)
    for change in sorted(state_changes, key=lambda sc: sc.unit):
        feed("state", change.unit,
             _canonicalize(change.old_state), _canonicalize(change.new_state))
    return digest.hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution.

    Built by the compute_* functions and handed to Ledger.execute. intent_id
    is filled from the content when not given, so two computations of the
    same operation against the same state collide and the second is skipped.
    old_state in each state change is what the computation saw; the ledger
    rejects the transaction when the unit has moved on since.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if self.intent_id:
            return
        object.__setattr__(self, 'intent_id', _compute_intent_id(
            self.moves, self.state_changes, self.origin, self.units_to_create,
        ))

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)

    def __repr__(self) -> str:
        return (f"PendingTransaction({self.intent_id}: {len(self.moves)} moves, "
                f"{len(self.state_changes)} state changes, {self.origin})")


_CONTRACT_ORIGIN = TransactionOrigin(OriginType.CONTRACT, "contract")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Wrap moves and state changes into a PendingTransaction stamped with the
    view's current time. State snapshots are deep-copied on the way in.
    """
    snapshots = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=snapshots,
        origin=origin or _CONTRACT_ORIGIN,
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create or ()),
    )


class TransactionBuilder:
    """
    Accumulates the moves and unit state edits of one operation.

    Several helpers (token pulls, mints, loan updates) contribute to the same
    transaction; the builder keeps one working copy of each touched unit's
    state and tracks net balance deltas so later helpers see earlier effects.
    build() emits exactly one UnitStateChange per touched unit.

    Example:
        builder = TransactionBuilder(view)
        builder.move(100, "ETH", "alice", "bank", "deposit")
        builder.update("LOAN_1", collateral_amount=1100)
        ledger.execute(builder.build(origin))
    """

    def __init__(self, view: LedgerView):
        self.view = view
        self.moves: List[Move] = []
        self.units_to_create: List[Unit] = []
        self._old_states: Dict[str, UnitState] = {}
        self._new_states: Dict[str, UnitState] = {}
        self._deltas: Dict[Tuple[str, str], int] = {}

    def state(self, symbol: str) -> UnitState:
        """Working copy of a unit's state; edits are kept until build()."""
        if symbol not in self._new_states:
            old = self.view.get_unit_state(symbol)
            self._old_states[symbol] = old
            self._new_states[symbol] = copy.deepcopy(old)
        return self._new_states[symbol]

    def update(self, symbol: str, **fields: Any) -> UnitState:
        state = self.state(symbol)
        state.update(fields)
        return state

    def create(self, unit: Unit) -> None:
        self.units_to_create.append(unit)

    def balance(self, wallet: str, symbol: str) -> int:
        """Ledger balance adjusted by the moves already added to this builder."""
        return self.view.get_balance(wallet, symbol) + self._deltas.get((wallet, symbol), 0)

    def move(self, quantity: int, symbol: str, source: str, dest: str, contract_id: str) -> None:
        self.moves.append(Move(quantity, symbol, source, dest, contract_id))
        self._deltas[(source, symbol)] = self._deltas.get((source, symbol), 0) - quantity
        self._deltas[(dest, symbol)] = self._deltas.get((dest, symbol), 0) + quantity

    def build(self, origin: Optional[TransactionOrigin] = None) -> PendingTransaction:
        changes = [
            UnitStateChange(unit=symbol, old_state=self._old_states[symbol], new_state=new_state)
            for symbol, new_state in self._new_states.items()
        ]
        return build_transaction(
            self.view, self.moves, changes, origin, tuple(self.units_to_create)
        )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A no-op; Ledger.execute reports it APPLIED without logging it."""
    return build_transaction(view, [], origin=TransactionOrigin(OriginType.CONTRACT, "noop"))


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A logged transaction. Copies the pending transaction's content and adds
    where, when and in which order it ran. exec_id is unique per execution,
    while intent_id is shared by every computation of the same operation.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create):
            raise ValueError(f"Transaction {self.exec_id} has nothing to apply")

    def __repr__(self) -> str:
        out = [
            f"#{self.sequence_number} {self.exec_id}",
            f"    intent {self.intent_id} at {self.timestamp.isoformat()} by {self.origin}",
        ]
        out.extend(f"    + {u.symbol} ({u.unit_type})" for u in self.units_to_create)
        out.extend(f"    {m!r}" for m in self.moves)
        for change in self.state_changes:
            for key, (before, after) in sorted(change.changed_fields().items()):
                out.append(f"    {change.unit}.{key}: {before!r} -> {after!r}")
        return "\n".join(out)


# ============================================================================
# UNITS
# ============================================================================

def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted((state or {}).items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    A coin, token, synthetic currency, loan or state holder.

    decimals only affects display. max_balance of 0 marks a unit that holds
    state but no balances (loans, BANK, the registry). The state is stored
    frozen; the state property hands out a fresh dict each time.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: Optional[int] = None
    decimals: int = 0
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        return _thaw_state(self._frozen_state)

    def format(self, quantity: int) -> str:
        """12345 ETD with 2 decimals renders as '123.45 ETD'."""
        amount = Decimal(quantity).scaleb(-self.decimals) if self.decimals else quantity
        return f"{amount} {self.symbol}"


def state_unit(symbol: str, name: str, unit_type: str, state: UnitState) -> Unit:
    """A unit that carries state and can never hold a balance."""
    return Unit(symbol, name, unit_type, min_balance=0, max_balance=0,
                _frozen_state=_freeze_state(state))
