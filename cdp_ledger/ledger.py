"""
ledger.py - Stateful Double-Entry Ledger

The Ledger is where every balance and every piece of engine state lives: coin
and token holdings, the synthetic currency, the BANK parameters and roles, the
collateral registry and each LOAN_<id> record. Pure compute_* functions read it
through the LedgerView protocol; execute() is the only path that changes it.

What execute() guarantees for a PendingTransaction:
    - all of its moves and unit state changes land, or none do
    - the same intent is never applied twice
    - a transaction built against unit state that has since changed is
      rejected as stale
    - no wallet other than SYSTEM_WALLET is left below a unit's min_balance

atomic() widens that guarantee to a block of code, so an operation that
executes a transaction and then calls out to a liquidator or treasury can be
undone as a whole. clone_at() and replay() rebuild past and present state
from the transaction log.
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Set, Optional, Any
import copy

from .core import (
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    SYSTEM_WALLET,
    LedgerError, UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)


EPOCH = datetime(1970, 1, 1)


def _with_state(unit: Unit, state: Optional[UnitState]) -> Unit:
    """Copy of `unit` carrying a detached copy of `state`."""
    return replace(unit, _frozen_state=_freeze_state(copy.deepcopy(state or {})))


class Ledger:
    """
    Double-entry ledger holding integer base-unit balances and unit state.

    Implements LedgerView, so it can be handed directly to compute_* functions.
    Not thread-safe on its own; CollateralBank serializes access.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_unit(create_native_unit("ETH"))
        ledger.register_wallet("alice")
        ledger.execute(compute_mint(ledger, "ETH", SYSTEM_WALLET, "alice", 10**18))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Args:
            name: Ledger identifier, part of every exec_id
            initial_time: Starting clock (default: 1970-01-01)
            verbose: Print registrations, applied transactions and rejections
            test_mode: Allow set_balance()
        """
        self.name = name
        self.verbose = verbose
        self._test_mode = test_mode
        self._current_time: datetime = initial_time or EPOCH

        self.units: Dict[str, Unit] = {}
        self.balances: Dict[str, Dict[str, int]] = {SYSTEM_WALLET: defaultdict(int)}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.transaction_log: List[Transaction] = []
        self.seen_intent_ids: Set[str] = set()
        self.last_rejection: Optional[str] = None
        self._next_sequence: int = 0
        # unit -> {wallet -> non-zero quantity}
        self._holders: Dict[str, Dict[str, int]] = defaultdict(dict)

    # ========================================================================
    # READS (LedgerView)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def _require_unit(self, symbol: str) -> Unit:
        unit = self.units.get(symbol)
        if unit is None:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return unit

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of a unit's state; callers may mutate it freely."""
        return copy.deepcopy(self._require_unit(unit_symbol).state)

    def get_unit(self, symbol: str) -> Unit:
        return self._require_unit(symbol)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Non-zero holdings of a unit, by wallet."""
        return dict(self._holders.get(unit_symbol, {}))

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        self._require_wallet(wallet_id)
        return dict(self.balances[wallet_id])

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # SUPPLY CHECKS
    # ========================================================================

    def total_supply(self, unit_symbol: str) -> int:
        """
        Sum of a unit over every wallet, SYSTEM_WALLET included.

        Zero for any unit that only ever moved through transactions.
        """
        self._require_unit(unit_symbol)
        return sum(self.balances[w].get(unit_symbol, 0) for w in sorted(self.registered_wallets))

    def circulating_supply(self, unit_symbol: str) -> int:
        """Amount held outside SYSTEM_WALLET, e.g. synthetic currency owed by borrowers."""
        return self.total_supply(unit_symbol) - self.balances[SYSTEM_WALLET].get(unit_symbol, 0)

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Check every unit's total supply against its expected value.

        Expected supply is zero unless `expected_supplies` says otherwise.
        Units named in `expected_supplies` but not registered are reported too.

        Returns:
            {'valid': bool, 'supplies': {unit: total}, 'discrepancies': [...]}

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], result['discrepancies']
        """
        expected = expected_supplies or {}
        supplies = {symbol: self.total_supply(symbol) for symbol in sorted(self.units)}
        discrepancies = []

        for symbol, actual in supplies.items():
            target = expected.get(symbol, 0)
            if actual != target:
                discrepancies.append({
                    'unit': symbol,
                    'expected': target,
                    'actual': actual,
                    'difference': actual - target,
                })
        for symbol in sorted(set(expected) - set(supplies)):
            discrepancies.append({
                'unit': symbol,
                'expected': expected[symbol],
                'actual': 0,
                'difference': -expected[symbol],
                'error': 'unit not registered',
            })

        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # CLOCK AND REGISTRATION
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Move the logical clock forward. Raises ValueError going backwards."""
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        """
        Overwrite a balance directly, offsetting the difference in SYSTEM_WALLET.

        Only available with test_mode=True. Not recorded in the log, so replay()
        does not reproduce it.
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() bypasses the transaction log and needs a ledger "
                "created with test_mode=True; use execute() otherwise"
            )
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        delta = int(quantity) - self.balances[wallet_id][unit_symbol]
        self._credit(wallet_id, unit_symbol, delta)
        if wallet_id != SYSTEM_WALLET:
            self._credit(SYSTEM_WALLET, unit_symbol, -delta)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _credit(self, wallet_id: str, unit_symbol: str, delta: int) -> None:
        """Add `delta` (possibly negative) to a balance and keep the holder index in step."""
        balance = self.balances[wallet_id][unit_symbol] + delta
        self.balances[wallet_id][unit_symbol] = balance
        if balance:
            self._holders[unit_symbol][wallet_id] = balance
        else:
            self._holders[unit_symbol].pop(wallet_id, None)

    def _apply_moves(self, moves: Iterable[Move], sign: int = 1) -> None:
        """Apply moves forward (sign=1) or undo them (sign=-1)."""
        for move in moves:
            self._credit(move.source, move.unit_symbol, -sign * move.quantity)
            self._credit(move.dest, move.unit_symbol, sign * move.quantity)

    def _set_state(self, symbol: str, state: Optional[UnitState]) -> None:
        self.units[symbol] = _with_state(self.units[symbol], state)

    def _rejection(self, pending: PendingTransaction) -> Optional[str]:
        """First reason `pending` cannot be applied, or None."""
        if pending.timestamp > self._current_time:
            return "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"

        created = {u.symbol for u in pending.units_to_create}
        for change in pending.state_changes:
            if change.unit not in self.units:
                return f"unit not registered: {change.unit}"
            if change.unit in created or change.old_state is None:
                continue
            if change.old_state != self.units[change.unit].state:
                return f"stale state for {change.unit}"

        deltas: Dict[tuple, int] = defaultdict(int)
        for move in pending.moves:
            deltas[(move.source, move.unit_symbol)] -= move.quantity
            deltas[(move.dest, move.unit_symbol)] += move.quantity
        for (wallet, symbol), delta in sorted(deltas.items()):
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            after = self.balances[wallet][symbol] + delta
            if after < unit.min_balance:
                return f"{wallet} {symbol}: {after} < min {unit.min_balance}"
            if unit.max_balance is not None and after > unit.max_balance:
                return f"{wallet} {symbol}: {after} > max {unit.max_balance}"
        return None

    def _reject(self, reason: str, created: List[str]) -> ExecuteResult:
        for symbol in created:
            del self.units[symbol]
        self.last_rejection = reason
        if self.verbose:
            print(f"✗ REJECTED: {reason}")
        return ExecuteResult.REJECTED

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction.

        Returns:
            APPLIED, ALREADY_APPLIED for a repeated intent_id, or REJECTED with
            the reason in last_rejection. An empty transaction is APPLIED and
            not logged.
        """
        self.last_rejection = None
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        # New units are visible to validation and withdrawn on rejection
        created: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol in self.units:
                return self._reject(f"unit already registered: {unit.symbol}", created)
            self.units[unit.symbol] = unit
            created.append(unit.symbol)

        reason = self._rejection(pending)
        if reason is not None:
            return self._reject(reason, created)

        sequence = self._next_sequence
        self._next_sequence += 1
        micros = int(self._current_time.timestamp() * 1_000_000)
        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=f"exec:{self.name}:{sequence:012d}:{micros}",
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._apply_moves(tx.moves)
        for change in tx.state_changes:
            self._set_state(change.unit, change.new_state)
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(tx.intent_id)

        if self.verbose:
            print(repr(tx))
            print(f"✓ APPLIED #{sequence} {tx.origin.event_type or tx.origin.origin_type.value}")
        return ExecuteResult.APPLIED

    # ========================================================================
    # SNAPSHOTS AND HISTORY
    # ========================================================================

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Undo everything done inside the block if it raises.

        Covers balances, units, wallets, the log, idempotency keys and the
        clock. The exception propagates unchanged.

        Example:
            with ledger.atomic():
                ledger.execute(pending)
                liquidator.start_liquidation(...)   # a raise undoes the execute
        """
        snapshot = self.clone()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise

    def _restore(self, snapshot: Ledger) -> None:
        for attr in ('units', 'balances', 'registered_wallets', 'seen_intent_ids',
                     'transaction_log', '_next_sequence', '_holders', '_current_time'):
            setattr(self, attr, getattr(snapshot, attr))

    def clone(self) -> Ledger:
        """Fully independent copy of this ledger."""
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned._current_time = self._current_time
        cloned.units = {symbol: _with_state(unit, unit.state) for symbol, unit in self.units.items()}
        cloned.balances = {wallet: defaultdict(int, held) for wallet, held in self.balances.items()}
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.transaction_log = list(self.transaction_log)
        cloned.seen_intent_ids = set(self.seen_intent_ids)
        cloned.last_rejection = self.last_rejection
        cloned._next_sequence = self._next_sequence
        cloned._holders = defaultdict(dict, {u: dict(h) for u, h in self._holders.items()})
        return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Copy of this ledger as it stood at `target_time`.

        Transactions executed after `target_time` are undone newest first:
        their moves are reversed, each changed unit gets its old_state back and
        units they created (loans) disappear. Wallets are kept.

        Raises:
            ValueError: target_time is ahead of the ledger clock
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        cloned = self.clone()
        cloned._current_time = target_time
        kept = [tx for tx in self.transaction_log if tx.execution_time <= target_time]
        undone = self.transaction_log[len(kept):]

        for tx in reversed(undone):
            missing = [m.unit_symbol for m in tx.moves if m.unit_symbol not in cloned.units]
            if missing:
                raise LedgerError(f"Cannot unwind {tx.exec_id}: unit {missing[0]} not found")
            cloned._apply_moves(tx.moves, sign=-1)
            for change in tx.state_changes:
                if change.unit in cloned.units:
                    cloned._set_state(change.unit, change.old_state)
            for unit in tx.units_to_create:
                cloned.units.pop(unit.symbol, None)
                cloned._holders.pop(unit.symbol, None)
                for held in cloned.balances.values():
                    held.pop(unit.symbol, None)

        cloned.transaction_log = kept
        cloned.seen_intent_ids = {tx.intent_id for tx in kept}
        cloned._next_sequence = len(kept)
        return cloned

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Rebuild this ledger in a fresh one by re-executing the log.

        Each unit starts from the old_state of the first replayed transaction
        that touched it; units created inside the replayed window start absent.
        set_balance() adjustments are not in the log and are not replayed.

        Raises:
            LedgerError: a logged transaction is rejected on replay
        """
        fresh = Ledger(f"{self.name}_replayed", EPOCH, verbose=self.verbose, test_mode=self._test_mode)
        window = self.transaction_log[from_tx:]

        created = {u.symbol for tx in window for u in tx.units_to_create}
        first_seen: Dict[str, Any] = {}
        for tx in window:
            for change in tx.state_changes:
                first_seen.setdefault(change.unit, change.old_state)

        for symbol, unit in self.units.items():
            if symbol not in created:
                fresh.units[symbol] = _with_state(unit, first_seen.get(symbol, unit.state))
        for wallet in self.registered_wallets - {SYSTEM_WALLET}:
            fresh.register_wallet(wallet)

        for tx in window:
            if tx.timestamp > fresh.current_time:
                fresh.advance_time(tx.timestamp)
            result = fresh.execute(PendingTransaction(
                moves=tx.moves,
                state_changes=tx.state_changes,
                origin=tx.origin,
                timestamp=tx.timestamp,
                units_to_create=tx.units_to_create,
            ))
            if result == ExecuteResult.REJECTED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {fresh.last_rejection}")
        return fresh
