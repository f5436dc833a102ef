"""
test_accounting.py - Unit tests for the fixed-point collateral math

Tests:
- Minimum collateral formula and its operation order
- Truncation (rounds down)
- Zero price guard
- Proportional payback
- Loan health report
- compute_minimum_collateral reading from a view
"""

import pytest

from cdp_ledger import (
    PRECISION,
    DEFAULT_COLLATERAL_RATIO,
    calculate_minimum_collateral,
    calculate_payback,
    calculate_health,
    compute_minimum_collateral,
    InvalidPrice,
    DivisionByZero,
    InvalidAmount,
    NotFound,
)
from tests.bank_setup import ETH


class TestMinimumCollateral:

    def test_reference_scenario(self):
        """100 debt at 1.5x, price 200, 18-digit scale needs 0.75 coin."""
        assert calculate_minimum_collateral(100, 1500, 10**18, 200) == 750 * 10**15

    def test_constants(self):
        assert PRECISION == 1000
        assert DEFAULT_COLLATERAL_RATIO == 1500

    def test_truncates_down(self):
        # 1 * 1500 * 1 // 1000 // 1 = 1 (true value 1.5)
        assert calculate_minimum_collateral(1, 1500, 1, 1) == 1
        # 7 * 1500 * 10 // 1000 = 105, // 4 = 26 (true value 26.25)
        assert calculate_minimum_collateral(7, 1500, 10, 4) == 26

    def test_division_order_matches_sequential_floor(self):
        """Dividing by PRECISION first, then price, can differ from one division."""
        debt, ratio, scale, price = 3, 1001, 1, 7
        sequential = debt * ratio * scale // PRECISION // price
        assert calculate_minimum_collateral(debt, ratio, scale, price) == sequential

    def test_zero_debt_needs_nothing(self):
        assert calculate_minimum_collateral(0, 1500, ETH, 200) == 0

    def test_zero_price_raises(self):
        with pytest.raises(InvalidPrice):
            calculate_minimum_collateral(100, 1500, ETH, 0)

    def test_zero_price_is_division_by_zero(self):
        with pytest.raises(DivisionByZero):
            calculate_minimum_collateral(100, 1500, ETH, 0)
        with pytest.raises(ZeroDivisionError):
            calculate_minimum_collateral(100, 1500, ETH, 0)

    def test_higher_price_lowers_minimum(self):
        low = calculate_minimum_collateral(1000, 1500, ETH, 100)
        high = calculate_minimum_collateral(1000, 1500, ETH, 400)
        assert high < low

    def test_large_values_stay_exact(self):
        debt = 10**30
        assert calculate_minimum_collateral(debt, 2000, 10**18, 1) == 2 * debt * 10**18


class TestPayback:

    def test_reference_scenario(self):
        assert calculate_payback(1000, 40, 100) == 400

    def test_full_payment_releases_everything(self):
        assert calculate_payback(1234567, 999, 999) == 1234567

    def test_rounds_down(self):
        # 10 * 1 // 3 = 3 (true value 3.33)
        assert calculate_payback(10, 1, 3) == 3

    def test_zero_debt_rejected(self):
        with pytest.raises(InvalidAmount):
            calculate_payback(100, 1, 0)


class TestHealth:

    def test_exact_minimum_is_not_liquidatable(self):
        health = calculate_health(750 * 10**15, 100, 1500, ETH, 200)
        assert health.minimum_collateral == 750 * 10**15
        assert health.excess == 0
        assert health.shortfall == 0
        assert health.collateralization == 1500
        assert not health.liquidatable

    def test_price_drop_creates_shortfall(self):
        health = calculate_health(750 * 10**15, 100, 1500, ETH, 150)
        assert health.minimum_collateral == ETH
        assert health.shortfall == 250 * 10**15
        assert health.excess == 0
        assert health.collateralization == 1125
        assert health.liquidatable

    def test_overcollateralized(self):
        health = calculate_health(2 * ETH, 100, 1500, ETH, 200)
        assert health.excess == 2 * ETH - 750 * 10**15
        assert health.collateralization == 4000

    def test_no_debt(self):
        health = calculate_health(5, 0, 1500, ETH, 200)
        assert health.collateralization is None
        assert not health.liquidatable


class TestComputeMinimumCollateral:

    def test_reads_price_scale_and_ratio(self, engine_view):
        assert compute_minimum_collateral(engine_view, "ETH", 100) == 750 * 10**15

    def test_inactive_asset_still_priced(self, engine_view):
        # WBTC is deregistered in the view: 100 * 1500 * 10**8 // 1000 // 30000 = 500
        assert compute_minimum_collateral(engine_view, "WBTC", 100) == 500

    def test_unknown_asset(self, engine_view):
        with pytest.raises(NotFound):
            compute_minimum_collateral(engine_view, "DOGE", 100)
