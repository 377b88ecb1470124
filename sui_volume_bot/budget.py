"""
Gas Budget Estimation

Turns a dry-run report into the final gas budget of a transaction.
"""

from decimal import Decimal, ROUND_CEILING
from typing import Union

from .models import SimulationReport
from .utils import logger, SimulationFailed


class BudgetEstimator:
    """
    Derives a gas budget from the simulated cost components.

    budget = ceil((computation + storage + rebate) * margin)

    The arithmetic runs on Decimal so large MIST values and fractional
    margins never lose precision.
    """

    def __init__(self, default_margin: Union[float, str, Decimal] = "1.2"):
        self.default_margin = Decimal(str(default_margin))
        if self.default_margin <= 0:
            raise ValueError("margin factor must be positive")

    def estimate(
        self,
        report: SimulationReport,
        margin_factor: Union[float, str, Decimal, None] = None,
    ) -> int:
        """
        Compute the budget for a successful simulation.

        Raises:
            SimulationFailed: the report carries a non-success status
            ValueError: non-positive margin factor
        """
        if not report.success:
            raise SimulationFailed(report.error or "simulation reported failure")

        margin = self.default_margin if margin_factor is None else Decimal(str(margin_factor))
        if margin <= 0:
            raise ValueError(f"margin factor must be positive, got {margin}")

        total = report.computation_cost + report.storage_cost + report.storage_rebate
        total = max(total, 0)

        budget = int((Decimal(total) * margin).to_integral_value(rounding=ROUND_CEILING))
        logger.debug(
            f"Gas budget {budget} from computation={report.computation_cost} "
            f"storage={report.storage_cost} rebate={report.storage_rebate} margin={margin}"
        )
        return budget
