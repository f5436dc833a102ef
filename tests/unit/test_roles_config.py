"""
test_roles_config.py - Unit tests for role holders and bank parameters

Tests:
- BankConfig defaults and validation
- BANK unit contents
- One-shot role initialization by the admin
- Oracle-only parameter updates
"""

import pytest

from cdp_ledger import (
    Ledger, BankConfig, CollateralBank, AuctionHouse,
    PRECISION, DEFAULT_COLLATERAL_RATIO,
    ROLE_ADMIN, ROLE_ORACLE, ROLE_LIQUIDATOR,
    create_bank_unit, load_config, get_role_holder, require_role,
    compute_initialize_role, compute_set_collateral_ratio,
    compute_set_liquidation_duration, compute_set_max_loan,
    UNIT_TYPE_BANK,
    AlreadyInitialized, InvalidAmount, Unauthorized,
)
from tests.bank_setup import START


class TestBankConfig:

    def test_defaults(self):
        config = BankConfig()
        assert config.currency == "ETD"
        assert config.escrow_wallet == "bank"
        assert config.collateral_ratio == DEFAULT_COLLATERAL_RATIO == 1500
        assert config.liquidation_duration == 7200
        assert config.max_loan == 1_000_000

    def test_ratio_below_one(self):
        with pytest.raises(InvalidAmount):
            BankConfig(collateral_ratio=PRECISION - 1)

    def test_ratio_of_exactly_one(self):
        assert BankConfig(collateral_ratio=PRECISION).collateral_ratio == 1000

    @pytest.mark.parametrize("field", ["liquidation_duration", "max_loan"])
    def test_non_positive(self, field):
        with pytest.raises(InvalidAmount):
            BankConfig(**{field: 0})

    def test_invalid_amount_is_a_value_error(self):
        with pytest.raises(ValueError):
            BankConfig(max_loan=-1)

    @pytest.mark.parametrize("field", ["currency", "escrow_wallet"])
    def test_empty_names(self, field):
        with pytest.raises(ValueError, match="cannot be empty"):
            BankConfig(**{field: ""})


class TestBankUnit:

    def test_contents(self):
        unit = create_bank_unit(BankConfig(max_loan=500), "root")
        assert unit.unit_type == UNIT_TYPE_BANK
        state = unit.state
        assert state['admin'] == "root"
        assert state['oracle'] is None
        assert state['liquidator'] is None
        assert state['next_loan_id'] == 1
        assert state['max_loan'] == 500

    def test_admin_required(self):
        with pytest.raises(ValueError):
            create_bank_unit(BankConfig(), "")

    def test_load_config(self, engine_view):
        assert load_config(engine_view) == BankConfig()


class TestRoles:

    def test_holders(self, engine_view):
        assert get_role_holder(engine_view, ROLE_ADMIN) == "admin"
        assert get_role_holder(engine_view, ROLE_ORACLE) == "oracle"
        assert get_role_holder(engine_view, ROLE_LIQUIDATOR) == "liquidator"

    def test_unknown_role(self, engine_view):
        with pytest.raises(ValueError, match="Unknown role"):
            get_role_holder(engine_view, "janitor")

    def test_require_role(self, engine_view):
        require_role(engine_view, ROLE_ORACLE, "oracle")
        with pytest.raises(Unauthorized):
            require_role(engine_view, ROLE_ORACLE, "admin")

    def test_initialize_once(self, engine_view):
        with pytest.raises(AlreadyInitialized):
            compute_initialize_role(engine_view, "admin", ROLE_ORACLE, "oracle2")

    def test_initialize_by_stranger(self, engine_view):
        with pytest.raises(Unauthorized):
            compute_initialize_role(engine_view, "oracle", ROLE_LIQUIDATOR, "x")

    def test_empty_holder(self, engine_view):
        with pytest.raises(ValueError):
            compute_initialize_role(engine_view, "admin", ROLE_ORACLE, " ")


class TestRolesThroughBank:

    @pytest.fixture
    def fresh_bank(self, asset_ledger):
        return CollateralBank(asset_ledger, admin="admin")

    def test_unset_role_authorizes_nobody(self, fresh_bank):
        assert fresh_bank.role_holder(ROLE_ORACLE) is None
        with pytest.raises(Unauthorized):
            fresh_bank.register_collateral("oracle", "ETH", 200, 10**18)

    def test_set_oracle(self, fresh_bank):
        fresh_bank.set_oracle("admin", "oracle")
        assert fresh_bank.role_holder(ROLE_ORACLE) == "oracle"
        with pytest.raises(AlreadyInitialized):
            fresh_bank.set_oracle("admin", "oracle")

    def test_set_oracle_by_stranger(self, fresh_bank):
        with pytest.raises(Unauthorized):
            fresh_bank.set_oracle("alice", "alice")
        assert fresh_bank.role_holder(ROLE_ORACLE) is None

    def test_set_liquidator_attaches_house(self, fresh_bank):
        house = AuctionHouse("keeper")
        fresh_bank.set_liquidator("admin", house)
        assert fresh_bank.role_holder(ROLE_LIQUIDATOR) == "keeper"
        assert fresh_bank.liquidator is house
        assert house.bank is fresh_bank

    def test_second_liquidator_rejected(self, fresh_bank):
        first = AuctionHouse("keeper")
        fresh_bank.set_liquidator("admin", first)
        with pytest.raises(AlreadyInitialized):
            fresh_bank.set_liquidator("admin", AuctionHouse("other"))
        assert fresh_bank.liquidator is first

    def test_admin_cannot_be_reassigned(self, fresh_bank):
        with pytest.raises(AlreadyInitialized):
            fresh_bank.initialize_role("admin", ROLE_ADMIN, "mallory")


class TestParameters:

    def test_compute_set_ratio(self, engine_view):
        pending = compute_set_collateral_ratio(engine_view, "oracle", 2000)
        (change,) = pending.state_changes
        assert change.changed_fields() == {'collateral_ratio': (1500, 2000), 'nonce': (0, 1)}

    def test_role_checked_before_value(self, engine_view):
        with pytest.raises(Unauthorized):
            compute_set_collateral_ratio(engine_view, "admin", 1)

    def test_ratio_below_precision(self, engine_view):
        with pytest.raises(InvalidAmount):
            compute_set_collateral_ratio(engine_view, "oracle", 999)

    def test_duration_and_cap(self, engine_view):
        assert compute_set_liquidation_duration(engine_view, "oracle", 60).state_changes[0].new_state['liquidation_duration'] == 60
        assert compute_set_max_loan(engine_view, "oracle", 10).state_changes[0].new_state['max_loan'] == 10
        with pytest.raises(InvalidAmount):
            compute_set_liquidation_duration(engine_view, "oracle", 0)
        with pytest.raises(InvalidAmount):
            compute_set_max_loan(engine_view, "oracle", 0)

    def test_bank_updates(self, bank):
        bank.set_collateral_ratio("oracle", 2000)
        bank.set_liquidation_duration("oracle", 3600)
        bank.set_max_loan("oracle", 5000)
        assert bank.current_config() == BankConfig(
            collateral_ratio=2000, liquidation_duration=3600, max_loan=5000,
        )
        # The deployment config object is left untouched
        assert bank.config == BankConfig()

    def test_same_value_twice(self, bank):
        bank.set_max_loan("oracle", 5000)
        bank.set_max_loan("oracle", 6000)
        bank.set_max_loan("oracle", 5000)
        assert bank.current_config().max_loan == 5000

    def test_custom_escrow_wallet_mints_currency(self):
        ledger = Ledger("x", START, verbose=False)
        first = CollateralBank(ledger, BankConfig(escrow_wallet="vault"), admin="admin")
        assert ledger.get_unit_state("ETD")['minter'] == "vault"
        assert first.current_config().escrow_wallet == "vault"
