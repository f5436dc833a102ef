"""
Idempotency Conformance Tests

INVARIANT: Executing the same PendingTransaction twice applies it once.
A pending transaction built against a state that has since changed is
rejected as stale rather than applied on top of the new state.

Every engine write bumps a nonce or a counter, so two separate calls with
the same arguments are always two distinct transactions.
"""

from cdp_ledger import (
    ExecuteResult, compute_issue_loan, compute_settle, compute_set_price,
    compute_approve, compute_increase_collateral,
)
from tests.bank_setup import ETH


MINIMUM = 75 * 10**16


class TestDuplicateExecution:

    def test_issue_applied_once(self, bank):
        ledger = bank.ledger
        pending = compute_issue_loan(ledger, "alice", 100, "ETH", MINIMUM, MINIMUM)
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert len(bank.get_loans()) == 1
        assert ledger.get_balance("alice", "ETD") == 100

    def test_settle_applied_once(self, bank, eth_loan):
        ledger = bank.ledger
        bank.approve("alice", "ETD", 100)
        pending = compute_settle(ledger, "alice", eth_loan, 40)
        ledger.execute(pending)
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert bank.get_loan(eth_loan).debt_amount == 60


class TestStaleState:

    def test_two_issues_from_one_snapshot(self, bank):
        ledger = bank.ledger
        first = compute_issue_loan(ledger, "alice", 100, "ETH", MINIMUM, MINIMUM)
        second = compute_issue_loan(ledger, "bob", 100, "ETH", MINIMUM, MINIMUM)
        assert ledger.execute(first) == ExecuteResult.APPLIED
        assert ledger.execute(second) == ExecuteResult.REJECTED
        assert [l.recipient for l in bank.get_loans()] == ["alice"]

    def test_settle_after_allowance_change(self, bank, eth_loan):
        ledger = bank.ledger
        bank.approve("alice", "ETD", 100)
        pending = compute_settle(ledger, "alice", eth_loan, 40)
        ledger.execute(compute_approve(ledger, "ETD", "alice", "bank", 100))
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert bank.get_loan(eth_loan).debt_amount == 100


class TestRepeatedCalls:

    def test_same_top_up_twice(self, bank, eth_loan):
        ledger = bank.ledger
        for _ in range(2):
            pending = compute_increase_collateral(ledger, "alice", eth_loan, ETH, ETH)
            assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert bank.get_loan(eth_loan).collateral_amount == MINIMUM + 2 * ETH

    def test_price_oscillation(self, bank):
        ledger = bank.ledger
        for price in (150, 200, 150, 200):
            assert ledger.execute(compute_set_price(ledger, "oracle", "ETH", price)) == ExecuteResult.APPLIED
        assert len([tx for tx in ledger.transaction_log if tx.origin.event_type == "SET_PRICE"]) == 4

    def test_same_loan_terms_twice(self, bank):
        a = bank.issue_loan("alice", 100, "ETH", MINIMUM, attached=MINIMUM)
        b = bank.issue_loan("alice", 100, "ETH", MINIMUM, attached=MINIMUM)
        assert (a, b) == (1, 2)
