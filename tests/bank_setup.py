"""
bank_setup.py - Test Helpers for building funded ledgers and deployed banks

Plain functions (not fixtures) so hypothesis tests can build a fresh bank per
example.
"""

from datetime import datetime
from typing import Dict, Optional

from cdp_ledger import (
    Ledger, ExecuteResult, LedgerError,
    create_native_unit,
    create_token_unit,
    compute_mint,
    CollateralBank,
    BankConfig,
    AuctionHouse,
    LedgerTreasury,
)


ETH = 10 ** 18          # one whole ETH in base units
WBTC = 10 ** 8          # one whole WBTC in base units
START = datetime(2025, 1, 1)

def fund(ledger: Ledger, wallet: str, symbol: str, amount: int) -> None:
    """Issue `amount` of an asset to `wallet` through its minter."""
    ledger.ensure_wallet(wallet)
    minter = ledger.get_unit_state(symbol)['minter']
    result = ledger.execute(compute_mint(ledger, symbol, minter, wallet, amount))
    assert result == ExecuteResult.APPLIED, ledger.last_rejection


def make_asset_ledger(name: str = "test") -> Ledger:
    """Ledger with ETH (native) and WBTC (token), alice/bob funded."""
    ledger = Ledger(name, START, verbose=False, test_mode=True)
    ledger.register_unit(create_native_unit("ETH", "Ether", decimals=18))
    ledger.register_unit(create_token_unit("WBTC", "Wrapped Bitcoin", decimals=8))
    for wallet in ("alice", "bob", "carol"):
        ledger.register_wallet(wallet)
    fund(ledger, "alice", "ETH", 10 * ETH)
    fund(ledger, "bob", "ETH", 10 * ETH)
    fund(ledger, "alice", "WBTC", 2 * WBTC)
    return ledger


def make_bank(
    ledger: Optional[Ledger] = None,
    config: Optional[BankConfig] = None,
    eth_price: int = 200,
    wbtc_price: int = 30000,
) -> CollateralBank:
    """
    Deployed bank: oracle "oracle", AuctionHouse liquidator, ledger treasury,
    ETH registered at `eth_price` and WBTC at `wbtc_price` (per whole coin).
    """
    ledger = ledger or make_asset_ledger()
    bank = CollateralBank(
        ledger, config or BankConfig(), admin="admin", treasury=LedgerTreasury("treasury"),
    )
    bank.set_oracle("admin", "oracle")
    bank.set_liquidator("admin", AuctionHouse("liquidator"))
    bank.register_collateral("oracle", "ETH", eth_price, ETH, "ETH")
    bank.register_collateral("oracle", "WBTC", wbtc_price, WBTC, "WBTC")
    return bank


def snapshot(ledger: Ledger) -> Dict:
    """Balances and unit states, for before/after comparisons."""
    return {
        'balances': {w: {u: q for u, q in b.items() if q} for w, b in ledger.balances.items()},
        'states': {sym: ledger.get_unit_state(sym) for sym in ledger.units},
        'log': len(ledger.transaction_log),
        'wallets': set(ledger.registered_wallets),
    }


def ledger_state_equals(ledger1: Ledger, ledger2: Ledger) -> bool:
    """Check if two ledgers hold the same balances and unit states."""
    s1, s2 = snapshot(ledger1), snapshot(ledger2)
    return s1['balances'] == s2['balances'] and s1['states'] == s2['states']


class FailingLiquidator:
    """Liquidator whose hand-off always raises."""

    def __init__(self, identity: str = "liquidator"):
        self.identity = identity
        self.calls = 0

    def start_liquidation(self, loan_id, asset, collateral_amount, debt_amount, duration):
        self.calls += 1
        raise LedgerError("auction service unavailable")


class FailingTreasury:
    """Treasury that refuses every deposit."""

    def __init__(self, wallet: str = "treasury"):
        self.wallet = wallet

    def deposit(self, asset, amount, memo):
        raise LedgerError("treasury offline")

