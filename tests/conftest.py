"""
conftest.py - Shared pytest fixtures for cdp_ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Asset ledgers (native coin and a collateral token, funded wallets)
- A deployed bank with oracle, auction house, treasury and registered collateral
- Fake views for pure compute functions

Builders shared with hypothesis tests live in tests/bank_setup.py.
"""

import pytest

from cdp_ledger import (
    Ledger, SYSTEM_WALLET, BankConfig,
    create_native_unit,
    create_token_unit,
    create_synthetic_unit,
    create_bank_unit,
    create_registry_unit,
)

from tests.bank_setup import ETH, WBTC, START, make_asset_ledger, make_bank
from tests.fake_view import FakeView


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def asset_ledger():
    """Ledger with ETH and WBTC; alice and bob hold 10 ETH, alice 2 WBTC."""
    return make_asset_ledger()


@pytest.fixture
def bank():
    """Deployed bank with ETH at 200 and WBTC at 30000."""
    return make_bank()


@pytest.fixture
def ledger(bank):
    return bank.ledger


@pytest.fixture
def house(bank):
    return bank.liquidator


@pytest.fixture
def eth_loan(bank):
    """Loan 1: alice borrows 100 ETD against exactly the minimum 0.75 ETH."""
    loan_id = bank.issue_loan("alice", 100, "ETH", 75 * 10**16, attached=75 * 10**16)
    assert loan_id == 1
    return loan_id


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def engine_view():
    """FakeView with bank parameters, roles and an ETH/WBTC registry."""
    bank_state = create_bank_unit(BankConfig(), "admin").state
    bank_state.update({'oracle': "oracle", 'liquidator': "liquidator"})
    registry_state = create_registry_unit().state
    registry_state['assets'] = {
        "ETH": {'is_active': True, 'price': 200, 'decimals': ETH, 'symbol': "ETH"},
        "WBTC": {'is_active': False, 'price': 30000, 'decimals': WBTC, 'symbol': "WBTC"},
    }
    return FakeView(
        balances={
            "alice": {"ETH": 5 * ETH},
            SYSTEM_WALLET: {"ETH": -5 * ETH},
        },
        states={
            "BANK": bank_state,
            "COLLATERAL_REGISTRY": registry_state,
        },
        time=START,
        units={
            "ETH": create_native_unit("ETH"),
            "WBTC": create_token_unit("WBTC", "Wrapped Bitcoin", decimals=8),
            "ETD": create_synthetic_unit("ETD", "Ether Dollar", "bank"),
        },
    )
