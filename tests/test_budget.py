"""
Tests for gas budget estimation.
"""

from decimal import Decimal

import pytest

from sui_volume_bot.budget import BudgetEstimator
from sui_volume_bot.models import SimulationReport
from sui_volume_bot.utils import SimulationFailed


def report(computation, storage, rebate, success=True):
    return SimulationReport(
        success=success,
        computation_cost=computation,
        storage_cost=storage,
        storage_rebate=rebate,
        error=None if success else "InsufficientGas",
    )


class TestBudgetEstimator:

    def test_sum_times_margin_rounded_up(self):
        estimator = BudgetEstimator()
        # (1_000_001 + 2_000_000 + 500_000) * 1.2 = 4_200_001.2
        assert estimator.estimate(report(1_000_001, 2_000_000, 500_000)) == 4_200_002

    def test_exact_product_not_bumped(self):
        estimator = BudgetEstimator("1.1")
        assert estimator.estimate(report(1_000_000, 0, 0)) == 1_100_000

    def test_per_call_margin_overrides_default(self):
        estimator = BudgetEstimator("1.2")
        assert estimator.estimate(report(1_000_000, 0, 0), 2) == 2_000_000

    def test_float_margin_uses_decimal_text(self):
        estimator = BudgetEstimator()
        # float 1.1 * 3 would give 3.3000000000000003 and round up to 4
        assert estimator.estimate(report(1, 1, 1), 1.1) == 4
        assert estimator.estimate(report(10, 10, 10), 1.1) == 33

    def test_large_values_keep_precision(self):
        big = 10 ** 18 + 7
        estimator = BudgetEstimator("1.2")
        expected = int((Decimal(big) * Decimal("1.2")).to_integral_value(rounding="ROUND_CEILING"))
        assert estimator.estimate(report(big, 0, 0)) == expected

    def test_failed_simulation_raises(self):
        with pytest.raises(SimulationFailed):
            BudgetEstimator().estimate(report(1, 1, 1, success=False))

    @pytest.mark.parametrize("margin", [0, -1, "0"])
    def test_rejects_non_positive_margin(self, margin):
        with pytest.raises(ValueError):
            BudgetEstimator().estimate(report(1, 1, 1), margin)

    def test_rejects_non_positive_default_margin(self):
        with pytest.raises(ValueError):
            BudgetEstimator(0)
