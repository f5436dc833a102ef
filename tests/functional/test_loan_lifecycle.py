"""
test_loan_lifecycle.py - End-to-end loan lifecycle scenario tests

Tests complete loan lifecycles through the bank:
- Issuance at and just below the minimum collateral
- Proportional settlement against a whole-unit token
- Liquidation payout bounds
- Issue, top-up, partial repayment, price drop, auction, sweep
- Token collateral from approval to full repayment
- Keeper polling across several borrowers
"""

import pytest
from datetime import timedelta

from cdp_ledger import (
    LoanState, create_token_unit,
    InsufficientCollateral, InvalidAmount, InvalidLoanState, SufficientCollateral,
    Unauthorized,
)
from tests.bank_setup import ETH, WBTC, START, fund, make_asset_ledger, make_bank, snapshot


MINIMUM = 75 * 10**16


class TestIssuanceBoundary:
    """Debt cap 1,000,000, ratio 1.5x, ETH at 200 with 18 decimals."""

    def test_minimum_for_100(self, bank):
        assert bank.current_config().max_loan == 1_000_000
        assert bank.minimum_collateral("ETH", 100) == 75 * 10**16

    def test_exact_minimum_accepted(self, bank):
        loan_id = bank.issue_loan("alice", 100, "ETH", MINIMUM, attached=MINIMUM)
        loan = bank.get_loan(loan_id)
        assert loan.state == LoanState.ACTIVE
        assert loan.collateral_amount == MINIMUM
        assert bank.ledger.get_balance("alice", "ETD") == 100

    def test_just_below_minimum_rejected(self, bank):
        before = snapshot(bank.ledger)
        short = 749 * 10**15
        with pytest.raises(InsufficientCollateral):
            bank.issue_loan("alice", 100, "ETH", short, attached=short)
        assert snapshot(bank.ledger) == before
        assert bank.get_loans() == []


class TestProportionalSettlement:

    @pytest.fixture
    def gem_bank(self):
        ledger = make_asset_ledger()
        ledger.register_unit(create_token_unit("GEM", "Gem", decimals=0))
        fund(ledger, "alice", "GEM", 1000)
        bank = make_bank(ledger)
        bank.register_collateral("oracle", "GEM", 1, 1)
        bank.approve("alice", "GEM", 1000)
        return bank

    def test_settle_40_of_100(self, gem_bank):
        bank = gem_bank
        assert bank.minimum_collateral("GEM", 100) == 150
        loan_id = bank.issue_loan("alice", 100, "GEM", 1000)

        bank.approve("alice", "ETD", 40)
        assert bank.settle("alice", loan_id, 40) == 400

        loan = bank.get_loan(loan_id)
        assert loan.collateral_amount == 600
        assert loan.debt_amount == 60
        assert loan.state == LoanState.ACTIVE
        assert bank.ledger.get_balance("alice", "GEM") == 400
        assert bank.ledger.get_balance("alice", "ETD") == 60

    def test_three_payments_release_everything(self, gem_bank):
        bank = gem_bank
        loan_id = bank.issue_loan("alice", 100, "GEM", 1000)
        bank.approve("alice", "ETD", 100)
        released = [bank.settle("alice", loan_id, p) for p in (33, 33, 34)]

        assert released == [330, 330, 340]
        assert bank.get_loan(loan_id).state == LoanState.SETTLED
        assert bank.ledger.get_balance("alice", "GEM") == 1000
        assert bank.ledger.circulating_supply("ETD") == 0


class TestLiquidationPayout:

    def test_overpayout_rejected(self, bank, house, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)

        with pytest.raises(InvalidAmount):
            house.close(eth_loan, MINIMUM + 1, "carol")

        assert bank.get_loan(eth_loan).state == LoanState.UNDER_LIQUIDATION
        assert bank.ledger.get_balance("carol", "ETH") == 0

    def test_full_payout_leaves_nothing_to_sweep(self, bank, house, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)
        house.close(eth_loan, MINIMUM, "carol")

        assert bank.get_loan(eth_loan).collateral_amount == 0
        with pytest.raises(InvalidAmount):
            bank.sweep_collateral("admin", eth_loan)

    def test_only_liquidator_exits(self, bank, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)
        with pytest.raises(Unauthorized):
            bank.exit_liquidation("alice", eth_loan, 0, "alice")

    def test_recipient_withdraws_residual(self, bank, house, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)
        house.close(eth_loan, 70 * 10**16, "carol")
        before = bank.ledger.get_balance("alice", "ETH")

        bank.decrease_collateral("alice", eth_loan, 5 * 10**16)

        loan = bank.get_loan(eth_loan)
        assert loan.state == LoanState.LIQUIDATED
        assert loan.collateral_amount == 0
        assert bank.ledger.get_balance("alice", "ETH") == before + 5 * 10**16
        assert bank.ledger.get_balance("bank", "ETH") == 0
        with pytest.raises(InvalidAmount):
            bank.sweep_collateral("admin", eth_loan)

    def test_residual_stays_with_recipient(self, bank, house, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)
        house.close(eth_loan, 70 * 10**16, "carol")
        with pytest.raises(Unauthorized):
            bank.decrease_collateral("carol", eth_loan, 5 * 10**16)
        with pytest.raises(InvalidAmount):
            bank.decrease_collateral("alice", eth_loan, 5 * 10**16 + 1)


class TestNativeLifecycle:

    def test_full_lifecycle(self, bank, house):
        ledger = bank.ledger

        # Day 0: borrow 100 against 1 ETH
        loan_id = bank.issue_loan("alice", 100, "ETH", ETH, attached=ETH)

        # Top up by half an ETH
        ledger.advance_time(START + timedelta(hours=1))
        bank.increase_collateral("alice", loan_id, ETH // 2, attached=ETH // 2)
        assert bank.get_loan(loan_id).collateral_amount == 3 * ETH // 2

        # Repay half the debt
        ledger.advance_time(START + timedelta(hours=2))
        bank.approve("alice", "ETD", 50)
        assert bank.settle("alice", loan_id, 50) == MINIMUM
        loan = bank.get_loan(loan_id)
        assert (loan.collateral_amount, loan.debt_amount) == (MINIMUM, 50)

        # Healthy at 200, under water at 50
        with pytest.raises(SufficientCollateral):
            bank.enter_liquidation(loan_id)
        bank.set_price("oracle", "ETH", 50)
        assert bank.loan_health(loan_id).minimum_collateral == 3 * ETH // 2

        ledger.advance_time(START + timedelta(hours=3))
        bank.enter_liquidation(loan_id)
        assert house.auctions[loan_id].collateral_amount == MINIMUM
        assert house.auctions[loan_id].debt_amount == 50

        # Auction pays carol 0.6 ETH, the rest is swept
        house.close(loan_id, 60 * 10**16, "carol")
        loan = bank.get_loan(loan_id)
        assert loan.state == LoanState.LIQUIDATED
        assert loan.debt_amount == 0
        assert loan.collateral_amount == 15 * 10**16

        assert bank.sweep_collateral("admin", loan_id) == 15 * 10**16
        assert bank.treasury.total("ETH") == 15 * 10**16

        assert ledger.get_balance("alice", "ETH") == 10 * ETH - 3 * ETH // 2 + MINIMUM
        assert ledger.get_balance("carol", "ETH") == 60 * 10**16
        assert ledger.get_balance("treasury", "ETH") == 15 * 10**16
        assert ledger.get_balance("bank", "ETH") == 0
        # Alice keeps the currency she did not repay
        assert ledger.circulating_supply("ETD") == 50
        assert ledger.verify_double_entry()['valid']

    def test_terminal_states_are_final(self, bank, house, eth_loan):
        bank.set_price("oracle", "ETH", 150)
        bank.enter_liquidation(eth_loan)
        house.close(eth_loan, 70 * 10**16, "carol")

        bank.approve("alice", "ETD", 100)
        with pytest.raises(InvalidLoanState):
            bank.settle("alice", eth_loan, 1)
        with pytest.raises(InvalidLoanState):
            bank.increase_collateral("alice", eth_loan, 1, attached=1)
        with pytest.raises(InvalidLoanState):
            bank.enter_liquidation(eth_loan)

        bank.set_price("oracle", "ETH", 200)
        second = bank.issue_loan("bob", 100, "ETH", MINIMUM, attached=MINIMUM)
        bank.approve("bob", "ETD", 100)
        bank.settle("bob", second, 100)
        with pytest.raises(InvalidAmount):
            bank.decrease_collateral("bob", second, 1)
        with pytest.raises(InvalidLoanState):
            bank.settle("bob", second, 1)
        with pytest.raises(InvalidLoanState):
            bank.enter_liquidation(second)


class TestTokenLifecycle:

    def test_approve_borrow_withdraw_repay(self, bank):
        ledger = bank.ledger
        bank.approve("alice", "WBTC", WBTC)
        loan_id = bank.issue_loan("alice", 300, "WBTC", WBTC)
        assert ledger.get_balance("bank", "WBTC") == WBTC

        # Withdraw down to the 1.5x floor
        minimum = bank.minimum_collateral("WBTC", 300)
        assert minimum == 1_500_000
        bank.decrease_collateral("alice", loan_id, WBTC - minimum)
        with pytest.raises(InsufficientCollateral):
            bank.decrease_collateral("alice", loan_id, 1)

        bank.approve("alice", "ETD", 300)
        assert bank.settle("alice", loan_id, 300) == minimum
        assert bank.get_loan(loan_id).state == LoanState.SETTLED
        assert ledger.get_balance("alice", "WBTC") == 2 * WBTC
        assert ledger.get_balance("bank", "WBTC") == 0

    def test_attached_value_rejected_for_tokens(self, bank):
        bank.approve("alice", "WBTC", WBTC)
        with pytest.raises(InvalidAmount):
            bank.issue_loan("alice", 300, "WBTC", WBTC, attached=1)

    def test_third_party_repayment(self, bank):
        bank.approve("alice", "WBTC", WBTC)
        loan_id = bank.issue_loan("alice", 300, "WBTC", WBTC)
        bank.transfer("alice", "ETD", "bob", 300)
        bank.approve("bob", "ETD", 300)
        bank.settle("bob", loan_id, 300)
        # Collateral goes to the recipient, not the payer
        assert bank.ledger.get_balance("alice", "WBTC") == 2 * WBTC
        assert bank.ledger.get_balance("bob", "WBTC") == 0


class TestKeeperPolling:

    def test_only_unhealthy_loans_handed_off(self, bank, house):
        safe = bank.issue_loan("alice", 100, "ETH", 2 * ETH, attached=2 * ETH)
        thin = bank.issue_loan("bob", 100, "ETH", MINIMUM, attached=MINIMUM)
        assert bank.poll_liquidations() == []

        bank.set_price("oracle", "ETH", 150)
        assert bank.poll_liquidations() == [thin]
        assert bank.get_loan(safe).state == LoanState.ACTIVE
        assert sorted(house.auctions) == [thin]

        # Already under liquidation, nothing new
        assert bank.poll_liquidations() == []
