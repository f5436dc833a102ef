"""
bank.py - CollateralBank Facade

CollateralBank owns a Ledger and exposes every engine operation as a method
taking the caller's identity. Each method runs in three steps under one lock:

    1. checks       - a compute_* function validates and builds the transaction
    2. effects      - Ledger.execute applies it atomically
    3. interactions - the liquidator or treasury is notified

All three run inside Ledger.atomic(), so a collaborator that raises leaves the
ledger exactly as it was before the call.

Example:
    ledger = Ledger("main", verbose=False)
    ledger.register_unit(create_native_unit())
    bank = CollateralBank(ledger, BankConfig(), admin="admin")
    bank.set_oracle("admin", "oracle")
    bank.set_liquidator("admin", AuctionHouse())
    bank.register_collateral("oracle", "ETH", price=200, decimals=10**18, symbol="ETH")
    loan_id = bank.issue_loan("alice", 100, "ETH", 75 * 10**16, attached=75 * 10**16)
"""

from __future__ import annotations
import threading
from typing import Callable, List, Optional

from .core import (
    PendingTransaction, ExecuteResult, SYSTEM_WALLET, BANK_UNIT,
    LedgerError, TransferFailed,
)
from .ledger import Ledger
from .tokens import create_synthetic_unit, compute_approve, compute_transfer, require_user_wallet
from .adapters import Liquidator, Treasury
from .config import (
    BankConfig, create_bank_unit, create_registry_unit, load_config,
    compute_set_collateral_ratio, compute_set_liquidation_duration, compute_set_max_loan,
)
from .roles import (
    ROLE_ORACLE, ROLE_LIQUIDATOR, compute_initialize_role, get_role_holder,
)
from .registry import (
    CollateralDescriptor, compute_register, compute_deregister, compute_set_price,
    load_descriptor, list_collateral,
)
from .accounting import LoanHealth, calculate_health, compute_minimum_collateral
from .loans import (
    Loan, LoanState, load_loan, get_loans,
    compute_issue_loan, compute_increase_collateral, compute_decrease_collateral,
    compute_settle, compute_enter_liquidation, compute_exit_liquidation,
    compute_sweep_residual,
)


class CollateralBank:
    """
    Serialized entry point to the collateralized-debt engine.

    Attributes:
        ledger: The ledger holding all balances and engine state
        liquidator: Auction collaborator (set with set_liquidator)
        treasury: Sweep destination (optional)
        verbose: Print one line per operation (defaults to ledger.verbose)
    """

    def __init__(
        self,
        ledger: Ledger,
        config: Optional[BankConfig] = None,
        admin: str = "admin",
        liquidator: Optional[Liquidator] = None,
        treasury: Optional[Treasury] = None,
        currency_name: str = "Ether Dollar",
        currency_decimals: int = 2,
        verbose: Optional[bool] = None,
    ):
        """
        Deploy the bank into `ledger`.

        Registers the escrow wallet, the synthetic currency (minted only by the
        escrow wallet), the BANK unit holding `config` and the admin role, and
        the empty collateral registry.

        A liquidator passed here is only stored; its role is granted by
        set_liquidator().
        """
        self.ledger = ledger
        self.config = config or BankConfig()
        self.liquidator = liquidator
        self.treasury = treasury
        self.verbose = ledger.verbose if verbose is None else verbose
        self._lock = threading.RLock()

        ledger.ensure_wallet(self.config.escrow_wallet)
        ledger.ensure_wallet(admin)
        if self.config.currency not in ledger.units:
            ledger.register_unit(create_synthetic_unit(
                self.config.currency, currency_name, self.config.escrow_wallet,
                decimals=currency_decimals,
            ))
        ledger.register_unit(create_bank_unit(self.config, admin))
        ledger.register_unit(create_registry_unit())
        if treasury is not None:
            ledger.ensure_wallet(treasury.wallet)
        self._log(f"deployed: currency={self.config.currency} escrow={self.config.escrow_wallet} admin={admin}")

    # ========================================================================
    # PLUMBING
    # ========================================================================

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"🏦 {message}")

    def _submit(self, pending: PendingTransaction) -> ExecuteResult:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransferFailed(self.ledger.last_rejection)
        return result

    def _run(self, label: str, build: Callable[[], PendingTransaction], *wallets: str):
        """
        Build and execute one transaction atomically.

        Wallets named by the caller are registered on first use; the
        registration is undone with everything else if the operation fails.
        SYSTEM_WALLET is refused as any of them.
        """
        require_user_wallet(*wallets)
        with self._lock, self.ledger.atomic():
            for wallet in wallets:
                self.ledger.ensure_wallet(wallet)
            pending = build()
            self._submit(pending)
            self._log(label)
            return pending

    # ========================================================================
    # ROLES
    # ========================================================================

    def initialize_role(self, caller: str, role: str, holder: str) -> None:
        self._run(
            f"{role} set to {holder}",
            lambda: compute_initialize_role(self.ledger, caller, role, holder),
        )

    def set_oracle(self, caller: str, oracle: str) -> None:
        self.initialize_role(caller, ROLE_ORACLE, oracle)

    def set_liquidator(self, caller: str, liquidator: Liquidator) -> None:
        """Grant the liquidator role to `liquidator.identity` and wire it in."""
        with self._lock:
            self.initialize_role(caller, ROLE_LIQUIDATOR, liquidator.identity)
            self.liquidator = liquidator
            attach = getattr(liquidator, 'attach', None)
            if attach is not None:
                attach(self)

    def role_holder(self, role: str) -> Optional[str]:
        return get_role_holder(self.ledger, role)

    # ========================================================================
    # REGISTRY AND PARAMETERS (oracle)
    # ========================================================================

    def register_collateral(
        self, caller: str, asset: str, price: int, decimals: int, symbol: Optional[str] = None
    ) -> None:
        self._run(
            f"collateral {asset} registered at {price}",
            lambda: compute_register(self.ledger, caller, asset, price, decimals, symbol or asset),
        )

    def deregister_collateral(self, caller: str, asset: str) -> None:
        self._run(
            f"collateral {asset} deregistered",
            lambda: compute_deregister(self.ledger, caller, asset),
        )

    def set_price(self, caller: str, asset: str, new_price: int) -> None:
        self._run(
            f"price {asset} = {new_price}",
            lambda: compute_set_price(self.ledger, caller, asset, new_price),
        )

    def set_collateral_ratio(self, caller: str, ratio: int) -> None:
        self._run(
            f"collateral_ratio = {ratio}",
            lambda: compute_set_collateral_ratio(self.ledger, caller, ratio),
        )

    def set_liquidation_duration(self, caller: str, duration: int) -> None:
        self._run(
            f"liquidation_duration = {duration}",
            lambda: compute_set_liquidation_duration(self.ledger, caller, duration),
        )

    def set_max_loan(self, caller: str, max_loan: int) -> None:
        self._run(
            f"max_loan = {max_loan}",
            lambda: compute_set_max_loan(self.ledger, caller, max_loan),
        )

    # ========================================================================
    # TOKENS
    # ========================================================================

    def approve(self, owner: str, symbol: str, amount: int, spender: Optional[str] = None) -> None:
        """Grant an allowance, by default to the escrow wallet."""
        spender = spender or self.config.escrow_wallet
        self._run(
            f"{owner} approved {spender} for {amount} {symbol}",
            lambda: compute_approve(self.ledger, symbol, owner, spender, amount),
            owner,
        )

    def transfer(self, sender: str, symbol: str, to: str, amount: int) -> None:
        self._run(
            f"{sender} sent {amount} {symbol} to {to}",
            lambda: compute_transfer(self.ledger, symbol, sender, to, amount),
            sender, to,
        )

    # ========================================================================
    # LOAN LIFECYCLE
    # ========================================================================

    def issue_loan(
        self,
        borrower: str,
        debt_amount: int,
        collateral_asset: str,
        deposited_collateral: int,
        attached: int = 0,
    ) -> int:
        """Open a loan and return its identifier."""
        with self._lock:
            loan_id = self.ledger.get_unit_state(BANK_UNIT)['next_loan_id']
            self._run(
                f"loan {loan_id} issued to {borrower}: debt {debt_amount}, "
                f"collateral {deposited_collateral} {collateral_asset}",
                lambda: compute_issue_loan(
                    self.ledger, borrower, debt_amount, collateral_asset,
                    deposited_collateral, attached,
                ),
                borrower,
            )
            return loan_id

    def increase_collateral(self, caller: str, loan_id: int, amount: int, attached: int = 0) -> None:
        self._run(
            f"loan {loan_id} collateral +{amount}",
            lambda: compute_increase_collateral(self.ledger, caller, loan_id, amount, attached),
            caller,
        )

    def decrease_collateral(self, caller: str, loan_id: int, amount: int) -> None:
        self._run(
            f"loan {loan_id} collateral -{amount}",
            lambda: compute_decrease_collateral(self.ledger, caller, loan_id, amount),
            caller,
        )

    def settle(self, payer: str, loan_id: int, payment: int) -> int:
        """Repay `payment` of the debt; returns the collateral released."""
        with self._lock:
            before = load_loan(self.ledger, loan_id).collateral_amount
            self._run(
                f"loan {loan_id} settled {payment} by {payer}",
                lambda: compute_settle(self.ledger, payer, loan_id, payment),
                payer,
            )
            return before - load_loan(self.ledger, loan_id).collateral_amount

    def enter_liquidation(self, loan_id: int, caller: str = SYSTEM_WALLET) -> None:
        """
        Freeze an under-collateralized loan and hand it to the liquidator.

        Raises:
            LedgerError: no liquidator is wired in
        """
        with self._lock, self.ledger.atomic():
            if self.liquidator is None:
                raise LedgerError("no liquidator configured")
            self._submit(compute_enter_liquidation(self.ledger, loan_id, caller))
            loan = load_loan(self.ledger, loan_id)
            config = load_config(self.ledger)
            self._log(f"loan {loan_id} under liquidation, handing off to {self.liquidator.identity}")
            self.liquidator.start_liquidation(
                loan.loan_id,
                loan.collateral_asset,
                loan.collateral_amount,
                loan.debt_amount,
                config.liquidation_duration,
            )

    def exit_liquidation(self, caller: str, loan_id: int, collateral_paid_out: int, buyer: str) -> None:
        """
        Close a liquidation and tell the liquidator, if it listens for
        liquidation_closed, that the loan is done.
        """
        with self._lock, self.ledger.atomic():
            self._run(
                f"loan {loan_id} liquidated, {collateral_paid_out} paid to {buyer}",
                lambda: compute_exit_liquidation(
                    self.ledger, caller, loan_id, collateral_paid_out, buyer
                ),
                buyer,
            )
            closed = getattr(self.liquidator, 'liquidation_closed', None)
            if closed is not None:
                closed(loan_id)

    def sweep_collateral(self, caller: str, loan_id: int) -> int:
        """
        Send a LIQUIDATED loan's residual collateral to the treasury.

        Returns the amount swept.
        """
        with self._lock, self.ledger.atomic():
            if self.treasury is None:
                raise LedgerError("no treasury configured")
            self.ledger.ensure_wallet(self.treasury.wallet)
            residual = load_loan(self.ledger, loan_id).collateral_amount
            self._submit(compute_sweep_residual(self.ledger, caller, loan_id, self.treasury.wallet))
            loan = load_loan(self.ledger, loan_id)
            self._log(f"loan {loan_id} residual {residual} {loan.collateral_asset} swept to treasury")
            self.treasury.deposit(loan.collateral_asset, residual, f"residual of loan {loan_id}")
            return residual

    def poll_liquidations(self, caller: str = SYSTEM_WALLET) -> List[int]:
        """
        Keeper sweep: move every under-collateralized ACTIVE loan into
        liquidation, in identifier order. Returns the loans handed off.
        """
        started = []
        with self._lock:
            for loan in get_loans(self.ledger, state=LoanState.ACTIVE):
                if self.loan_health(loan.loan_id).liquidatable:
                    self.enter_liquidation(loan.loan_id, caller)
                    started.append(loan.loan_id)
        return started

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_loan(self, loan_id: int) -> Loan:
        return load_loan(self.ledger, loan_id)

    def get_loans(self, recipient: Optional[str] = None, state: Optional[LoanState] = None) -> List[Loan]:
        return get_loans(self.ledger, recipient, state)

    def minimum_collateral(self, asset: str, debt_amount: int) -> int:
        return compute_minimum_collateral(self.ledger, asset, debt_amount)

    def loan_health(self, loan_id: int) -> LoanHealth:
        loan = load_loan(self.ledger, loan_id)
        descriptor = load_descriptor(self.ledger, loan.collateral_asset)
        config = load_config(self.ledger)
        return calculate_health(
            loan.collateral_amount, loan.debt_amount,
            config.collateral_ratio, descriptor.decimals, descriptor.price,
        )

    def collateral(self, asset: str) -> CollateralDescriptor:
        return load_descriptor(self.ledger, asset)

    def collateral_assets(self, active_only: bool = True) -> List[CollateralDescriptor]:
        return list_collateral(self.ledger, active_only)

    def current_config(self) -> BankConfig:
        """Parameters as currently stored (oracle updates included)."""
        return load_config(self.ledger)
