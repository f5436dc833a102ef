"""
cdp_ledger - Collateralized-Debt Engine on a Double-Entry Ledger

Users lock collateral (the native coin or ERC20-style tokens) to borrow a
pegged synthetic currency. Every loan must stay above the collateral ratio;
under-collateralized loans are handed to a liquidator for auction.

Usage:
    from cdp_ledger import (
        Ledger, CollateralBank, BankConfig, AuctionHouse,
        create_native_unit, compute_mint, SYSTEM_WALLET,
    )

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(create_native_unit("ETH"))
    ledger.register_wallet("alice")
    ledger.execute(compute_mint(ledger, "ETH", SYSTEM_WALLET, "alice", 10**18))

    bank = CollateralBank(ledger, BankConfig(), admin="admin")
    bank.set_oracle("admin", "oracle")
    bank.set_liquidator("admin", AuctionHouse())
    bank.register_collateral("oracle", "ETH", price=200, decimals=10**18)

    # 100 ETD (base units) against 0.75 ETH at 1.5x
    loan_id = bank.issue_loan("alice", 100, "ETH", 75 * 10**16, attached=75 * 10**16)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionBuilder,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    state_unit,
    SYSTEM_WALLET,
    NATIVE_ASSET,
    BANK_UNIT,
    REGISTRY_UNIT,
    MAX_LOAN_ID,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_SYNTHETIC,
    UNIT_TYPE_LOAN,
    UNIT_TYPE_REGISTRY,
    UNIT_TYPE_BANK,
    # Errors
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    InvalidAmount,
    InsufficientCollateral,
    SufficientCollateral,
    InsufficientAllowance,
    TransferFailed,
    Unauthorized,
    InvalidLoanState,
    ExceededMaxLoan,
    AlreadyExists,
    NotFound,
    AlreadyInitialized,
    InvalidPrice,
    DivisionByZero,
)

# Ledger
from .ledger import Ledger

# Tokens
from .tokens import (
    create_native_unit,
    create_token_unit,
    create_synthetic_unit,
    get_allowance,
    require_user_wallet,
    compute_approve,
    compute_transfer,
    compute_transfer_from,
    compute_mint,
    compute_burn,
)

# Collaborators
from .adapters import (
    NativeCollateral,
    TokenCollateral,
    CollateralAsset,
    collateral_for,
    SyntheticCurrency,
    Liquidator,
    Auction,
    AuctionHouse,
    Treasury,
    TreasuryReceipt,
    LedgerTreasury,
)

# Configuration and roles
from .config import (
    BankConfig,
    PRECISION,
    DEFAULT_COLLATERAL_RATIO,
    create_bank_unit,
    create_registry_unit,
    load_config,
    compute_set_collateral_ratio,
    compute_set_liquidation_duration,
    compute_set_max_loan,
)
from .roles import (
    ROLE_ADMIN,
    ROLE_ORACLE,
    ROLE_LIQUIDATOR,
    get_role_holder,
    require_role,
    compute_initialize_role,
)

# Registry and accounting
from .registry import (
    CollateralDescriptor,
    load_descriptor,
    list_collateral,
    compute_register,
    compute_deregister,
    compute_set_price,
)
from .accounting import (
    LoanHealth,
    calculate_minimum_collateral,
    calculate_payback,
    calculate_health,
    compute_minimum_collateral,
)

# Loans
from .loans import (
    Loan,
    LoanState,
    TERMINAL_STATES,
    loan_symbol,
    load_loan,
    to_state_dict,
    get_loans,
    compute_issue_loan,
    compute_increase_collateral,
    compute_decrease_collateral,
    compute_settle,
    compute_enter_liquidation,
    compute_exit_liquidation,
    compute_sweep_residual,
    transact as loan_transact,
)

# Facade and oracle
from .bank import CollateralBank
from .oracle import OracleFeed, median_price
from .pricing_source import PricingSource, StaticPricingSource, TimeSeriesPricingSource


__all__ = [
    # Core
    'LedgerView',
    'Move',
    'Transaction',
    'PendingTransaction',
    'TransactionBuilder',
    'TransactionOrigin',
    'OriginType',
    'build_transaction',
    'empty_pending_transaction',
    'Unit',
    'UnitStateChange',
    'ExecuteResult',
    'state_unit',
    'SYSTEM_WALLET',
    'NATIVE_ASSET',
    'BANK_UNIT',
    'REGISTRY_UNIT',
    'MAX_LOAN_ID',
    'UNIT_TYPE_NATIVE',
    'UNIT_TYPE_TOKEN',
    'UNIT_TYPE_SYNTHETIC',
    'UNIT_TYPE_LOAN',
    'UNIT_TYPE_REGISTRY',
    'UNIT_TYPE_BANK',
    # Errors
    'LedgerError',
    'InsufficientFunds',
    'UnitNotRegistered',
    'WalletNotRegistered',
    'InvalidAmount',
    'InsufficientCollateral',
    'SufficientCollateral',
    'InsufficientAllowance',
    'TransferFailed',
    'Unauthorized',
    'InvalidLoanState',
    'ExceededMaxLoan',
    'AlreadyExists',
    'NotFound',
    'AlreadyInitialized',
    'InvalidPrice',
    'DivisionByZero',
    # Ledger
    'Ledger',
    # Tokens
    'create_native_unit',
    'create_token_unit',
    'create_synthetic_unit',
    'get_allowance',
    'require_user_wallet',
    'compute_approve',
    'compute_transfer',
    'compute_transfer_from',
    'compute_mint',
    'compute_burn',
    # Collaborators
    'NativeCollateral',
    'TokenCollateral',
    'CollateralAsset',
    'collateral_for',
    'SyntheticCurrency',
    'Liquidator',
    'Auction',
    'AuctionHouse',
    'Treasury',
    'TreasuryReceipt',
    'LedgerTreasury',
    # Configuration and roles
    'BankConfig',
    'PRECISION',
    'DEFAULT_COLLATERAL_RATIO',
    'create_bank_unit',
    'create_registry_unit',
    'load_config',
    'compute_set_collateral_ratio',
    'compute_set_liquidation_duration',
    'compute_set_max_loan',
    'ROLE_ADMIN',
    'ROLE_ORACLE',
    'ROLE_LIQUIDATOR',
    'get_role_holder',
    'require_role',
    'compute_initialize_role',
    # Registry and accounting
    'CollateralDescriptor',
    'load_descriptor',
    'list_collateral',
    'compute_register',
    'compute_deregister',
    'compute_set_price',
    'LoanHealth',
    'calculate_minimum_collateral',
    'calculate_payback',
    'calculate_health',
    'compute_minimum_collateral',
    # Loans
    'Loan',
    'LoanState',
    'TERMINAL_STATES',
    'loan_symbol',
    'load_loan',
    'to_state_dict',
    'get_loans',
    'compute_issue_loan',
    'compute_increase_collateral',
    'compute_decrease_collateral',
    'compute_settle',
    'compute_enter_liquidation',
    'compute_exit_liquidation',
    'compute_sweep_residual',
    'loan_transact',
    # Facade and oracle
    'CollateralBank',
    'OracleFeed',
    'median_price',
    'PricingSource',
    'StaticPricingSource',
    'TimeSeriesPricingSource',
]

__version__ = '1.0.0'
