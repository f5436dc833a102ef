#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Collateral Bank Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup         - Assets, the bank, roles and the collateral registry
  4-6:   Borrowing     - Issuance, the collateral floor, top-ups and withdrawals
  7-8:   Repayment     - Proportional release of collateral
  9-11:  Liquidation   - Price drops, the auction hand-off, residual sweep
  12:    Audit         - Conservation, time travel and replay

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from cdp_ledger import (
    Ledger, ExecuteResult, SYSTEM_WALLET,
    create_native_unit, create_token_unit, compute_mint,
    CollateralBank, BankConfig, AuctionHouse, LedgerTreasury,
    OracleFeed, TimeSeriesPricingSource,
    LedgerError, load_loan,
)
from cdp_ledger.tokens import format_amount


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding (base units)
    alice_eth: int = 10 * 10**18
    bob_eth: int = 5 * 10**18
    alice_wbtc: int = 2 * 10**8

    # Prices per whole coin, in base units of the currency
    eth_price: int = 20000          # 200.00 ETD
    wbtc_price: int = 3000000       # 30000.00 ETD
    crash_price: int = 12000        # 120.00 ETD

    # Alice's loan
    debt: int = 10000               # 100.00 ETD
    deposit: int = 10**18           # 1 ETH


CONFIG = DemoConfig()
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_loan(bank: CollateralBank, loan_id: int):
    loan = bank.get_loan(loan_id)
    health = bank.loan_health(loan_id)
    ledger = bank.ledger
    print(f"Loan {loan.loan_id} ({loan.recipient})")
    print(f"  state:       {loan.state.value}")
    print(f"  debt:        {format_amount(ledger, 'ETD', loan.debt_amount)}")
    print(f"  collateral:  {format_amount(ledger, loan.collateral_asset, loan.collateral_amount)}")
    print(f"  minimum:     {format_amount(ledger, loan.collateral_asset, health.minimum_collateral)}")
    print(f"  liquidatable: {health.liquidatable}")


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_assets() -> Ledger:
    """Register the collateral assets and fund the borrowers."""
    step_header(1, "Collateral Assets",
        "Collateral is either the native coin or an ERC20-style token.")

    print("""
    The native coin (ETH) is deposited by attaching value to the call.
    Tokens (WBTC) are pulled from the borrower through an allowance.

    Both start out in SYSTEM_WALLET and are minted to alice and bob.
    """)

    wait_for_enter()

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(create_native_unit("ETH", "Ether", decimals=18))
    ledger.register_unit(create_token_unit("WBTC", "Wrapped Bitcoin", decimals=8))
    for wallet in ("alice", "bob", "carol"):
        ledger.register_wallet(wallet)

    for wallet, symbol, amount in (
        ("alice", "ETH", CONFIG.alice_eth),
        ("bob", "ETH", CONFIG.bob_eth),
        ("alice", "WBTC", CONFIG.alice_wbtc),
    ):
        result = ledger.execute(compute_mint(ledger, symbol, SYSTEM_WALLET, wallet, amount))
        assert result == ExecuteResult.APPLIED

    section_header("Balances")
    for wallet in ("alice", "bob"):
        print(f"{wallet:6} {format_amount(ledger, 'ETH', ledger.get_balance(wallet, 'ETH')):>22}"
              f" {format_amount(ledger, 'WBTC', ledger.get_balance(wallet, 'WBTC')):>16}")
    return ledger


def step_02_deploy(ledger: Ledger) -> CollateralBank:
    """Deploy the bank and assign roles."""
    step_header(2, "Deploying the Bank",
        "The bank owns the synthetic currency and holds collateral in escrow.")

    print("""
    Deployment registers:
      - ETD, the synthetic currency (only the bank may mint or burn it)
      - the BANK unit holding parameters and roles
      - the empty COLLATERAL_REGISTRY

    The admin then appoints the oracle and the liquidator, once each.
    """)

    wait_for_enter()

    bank = CollateralBank(
        ledger, BankConfig(), admin="admin",
        treasury=LedgerTreasury("treasury"), verbose=True,
    )
    bank.set_oracle("admin", "oracle")
    bank.set_liquidator("admin", AuctionHouse("auctioneer"))

    section_header("Parameters")
    config = bank.current_config()
    print(f"Collateral ratio:     {config.collateral_ratio / 1000:.1f}x")
    print(f"Liquidation duration: {config.liquidation_duration}s")
    print(f"Debt cap:             {format_amount(ledger, 'ETD', config.max_loan)}")

    section_header("Roles are set once")
    try:
        bank.set_oracle("admin", "mallory")
    except LedgerError as e:
        print(f"✗ {type(e).__name__}: {e}")
    return bank


def step_03_registry(bank: CollateralBank):
    """Register collateral with the oracle role."""
    step_header(3, "The Collateral Registry",
        "Only the oracle registers assets and moves prices.")

    wait_for_enter()

    bank.register_collateral("oracle", "ETH", CONFIG.eth_price, 10**18)
    bank.register_collateral("oracle", "WBTC", CONFIG.wbtc_price, 10**8)

    section_header("Registered assets")
    for descriptor in bank.collateral_assets():
        print(f"{descriptor.symbol:5} price {format_amount(bank.ledger, 'ETD', descriptor.price):>12}"
              f"  scale {descriptor.decimals}")

    section_header("Non-oracle callers are refused")
    try:
        bank.set_price("alice", "ETH", 1)
    except LedgerError as e:
        print(f"✗ {type(e).__name__}: {e}")


# ============================================================================
# PHASE 2: BORROWING
# ============================================================================

def step_04_minimum(bank: CollateralBank):
    """Compute the collateral floor."""
    step_header(4, "Minimum Collateral",
        "minimum = debt * ratio * scale / 1000 / price, rounded down.")

    wait_for_enter()

    minimum = bank.minimum_collateral("ETH", CONFIG.debt)
    print(f"Borrowing {format_amount(bank.ledger, 'ETD', CONFIG.debt)} needs "
          f"{format_amount(bank.ledger, 'ETH', minimum)}")

    section_header("One wei short")
    try:
        bank.issue_loan("alice", CONFIG.debt, "ETH", minimum - 1, attached=minimum - 1)
    except LedgerError as e:
        print(f"✗ {type(e).__name__}: {e}")
    print(f"Loans on the books: {len(bank.get_loans())}")


def step_05_issue(bank: CollateralBank) -> int:
    """Open a loan against ETH."""
    step_header(5, "Issuing a Loan",
        "Collateral moves into escrow and currency is minted in one transaction.")

    wait_for_enter()

    loan_id = bank.issue_loan("alice", CONFIG.debt, "ETH", CONFIG.deposit, attached=CONFIG.deposit)
    show_loan(bank, loan_id)

    ledger = bank.ledger
    section_header("Balances")
    print(f"alice ETD: {format_amount(ledger, 'ETD', ledger.get_balance('alice', 'ETD'))}")
    print(f"bank  ETH: {format_amount(ledger, 'ETH', ledger.get_balance('bank', 'ETH'))}")
    return loan_id


def step_06_adjust(bank: CollateralBank, loan_id: int):
    """Top up and withdraw collateral."""
    step_header(6, "Adjusting Collateral",
        "Anyone may top up; only the borrower withdraws, never below the floor.")

    wait_for_enter()

    bank.increase_collateral("bob", loan_id, 10**17, attached=10**17)
    bank.decrease_collateral("alice", loan_id, 2 * 10**17)
    show_loan(bank, loan_id)

    section_header("Withdrawing everything")
    try:
        bank.decrease_collateral("alice", loan_id, bank.get_loan(loan_id).collateral_amount)
    except LedgerError as e:
        print(f"✗ {type(e).__name__}: {e}")


# ============================================================================
# PHASE 3: REPAYMENT
# ============================================================================

def step_07_partial_settle(bank: CollateralBank, loan_id: int):
    """Repay part of the debt."""
    step_header(7, "Partial Settlement",
        "payback = collateral * payment / debt, rounded down.")

    print("""
    The payment is pulled through an allowance and burned. Collateral is
    released to the borrower in proportion to the debt repaid.
    """)

    wait_for_enter()

    payment = CONFIG.debt // 4
    bank.approve("alice", "ETD", payment)
    released = bank.settle("alice", loan_id, payment)
    print(f"Paid {format_amount(bank.ledger, 'ETD', payment)}, "
          f"released {format_amount(bank.ledger, 'ETH', released)}")
    show_loan(bank, loan_id)


def step_08_token_loan(bank: CollateralBank):
    """Borrow against a token and repay in full."""
    step_header(8, "Token Collateral",
        "Same lifecycle, collateral pulled through an allowance.")

    wait_for_enter()

    ledger = bank.ledger
    bank.approve("alice", "WBTC", 10**7)
    loan_id = bank.issue_loan("alice", 100000, "WBTC", 10**7)
    show_loan(bank, loan_id)

    bank.approve("alice", "ETD", 100000)
    bank.settle("alice", loan_id, 100000)
    section_header("After full repayment")
    show_loan(bank, loan_id)
    print(f"alice WBTC: {format_amount(ledger, 'WBTC', ledger.get_balance('alice', 'WBTC'))}")


# ============================================================================
# PHASE 4: LIQUIDATION
# ============================================================================

def step_09_price_drop(bank: CollateralBank, loan_id: int):
    """Feed a lower price through the oracle."""
    step_header(9, "A Price Drop",
        "The oracle publishes the median of its reporters' prices.")

    wait_for_enter()

    ledger = bank.ledger
    crash_time = CONFIG.start_time + timedelta(hours=1)
    source = TimeSeriesPricingSource({"ETH": [
        (CONFIG.start_time, CONFIG.eth_price),
        (crash_time, CONFIG.crash_price),
    ]})
    feed = OracleFeed(bank, identity="oracle")
    ledger.advance_time(crash_time)
    print(f"Synced at {ledger.current_time}: {feed.sync(source, ledger.current_time)}")
    show_loan(bank, loan_id)


def step_10_liquidate(bank: CollateralBank, loan_id: int):
    """Hand the loan to the auction house and close it."""
    step_header(10, "Liquidation",
        "Under-collateralized loans freeze and go to auction.")

    wait_for_enter()

    house = bank.liquidator
    print(f"Keeper found: {bank.poll_liquidations()}")
    print(f"Open auction: {house.auctions[loan_id]}")

    bank.ledger.advance_time(CONFIG.start_time + timedelta(hours=2))
    payout = bank.get_loan(loan_id).collateral_amount * 9 // 10
    house.close(loan_id, payout, "carol")
    show_loan(bank, loan_id)

    section_header("Terminal loans stay terminal")
    try:
        bank.increase_collateral("alice", loan_id, 1, attached=1)
    except LedgerError as e:
        print(f"✗ {type(e).__name__}: {e}")


def step_11_sweep(bank: CollateralBank, loan_id: int):
    """Sweep the residual to the treasury."""
    step_header(11, "Residual Collateral",
        "What the auction did not pay out is swept to the treasury by the admin.")

    wait_for_enter()

    swept = bank.sweep_collateral("admin", loan_id)
    print(f"Swept {format_amount(bank.ledger, 'ETH', swept)}")
    for receipt in bank.treasury.receipts:
        print(f"  receipt: {receipt}")


# ============================================================================
# PHASE 5: AUDIT
# ============================================================================

def step_12_audit(bank: CollateralBank, loan_id: int):
    """Check conservation and reconstruct history."""
    step_header(12, "Audit Trail",
        "Every balance sums to zero, and the log rebuilds any past state.")

    wait_for_enter()

    ledger = bank.ledger
    check = ledger.verify_double_entry()
    print(f"Double entry valid: {check['valid']}")
    print(f"ETD in circulation: {format_amount(ledger, 'ETD', ledger.circulating_supply('ETD'))}")
    print(f"Transactions:       {len(ledger.transaction_log)}")

    section_header("Before the crash")
    past = ledger.clone_at(CONFIG.start_time)
    print(f"Loan {loan_id} at {past.current_time}: {load_loan(past, loan_id).state.value}")

    section_header("Replay")
    replayed = ledger.replay()
    print(f"Replayed loan state: {load_loan(replayed, loan_id).state.value}")


def main():
    print("=" * 70)
    print("       COLLATERAL BANK TUTORIAL")
    print("=" * 70)

    ledger = step_01_assets()
    wait_for_enter()
    bank = step_02_deploy(ledger)
    wait_for_enter()
    step_03_registry(bank)
    wait_for_enter()

    step_04_minimum(bank)
    wait_for_enter()
    loan_id = step_05_issue(bank)
    wait_for_enter()
    step_06_adjust(bank, loan_id)
    wait_for_enter()

    step_07_partial_settle(bank, loan_id)
    wait_for_enter()
    step_08_token_loan(bank)
    wait_for_enter()

    step_09_price_drop(bank, loan_id)
    wait_for_enter()
    step_10_liquidate(bank, loan_id)
    wait_for_enter()
    step_11_sweep(bank, loan_id)
    wait_for_enter()

    step_12_audit(bank, loan_id)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See cdp_ledger/loans.py for the lifecycle state machine
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
